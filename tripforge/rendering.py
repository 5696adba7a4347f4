"""PDF rendering of generated itineraries."""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import re
import time
from pathlib import Path
from typing import Protocol
from xml.sax.saxutils import escape

from pydantic import BaseModel
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .errors import RenderError
from .persistence.models import Itinerary

logger = logging.getLogger(__name__)

_BOLD = re.compile(r"\*\*(.+?)\*\*")


class RenderedDocument(BaseModel):
    filename: str
    path: str


class PdfRenderer(Protocol):
    """Turns an itinerary and its generated text into a stored document."""

    async def render(self, itinerary: Itinerary, content: str) -> RenderedDocument:
        ...

    async def delete(self, path: str) -> None:
        ...


def build_filename(itinerary: Itinerary, timestamp_ms: int | None = None) -> str:
    """``itinerary_<destination slug>_<id>_<epoch ms>.pdf``"""
    slug = re.sub(r"[^a-z0-9]", "_", itinerary.destination.lower())
    slug = re.sub(r"_+", "_", slug).strip("_")
    timestamp_ms = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    return f"itinerary_{slug}_{itinerary.id}_{timestamp_ms}.pdf"


class ReportLabPdfRenderer:
    """Render itineraries with reportlab into a storage directory."""

    def __init__(self, storage_path: str | Path = "./pdfs") -> None:
        self.storage_path = Path(storage_path)

    async def render(self, itinerary: Itinerary, content: str) -> RenderedDocument:
        """Build the PDF in a worker thread.

        A partial file from a failed build is removed. If the caller gives up
        (timeout or cancellation) the thread cannot be stopped, so whatever it
        writes is removed once it finishes.
        """
        filename = build_filename(itinerary)
        path = self.storage_path / filename
        build = asyncio.ensure_future(
            asyncio.to_thread(self._build, itinerary, content, path)
        )
        try:
            await asyncio.shield(build)
        except asyncio.CancelledError:
            build.add_done_callback(functools.partial(_discard_abandoned, path))
            raise
        except Exception as e:
            await asyncio.to_thread(_remove_quietly, path)
            raise RenderError(
                f"PDF generation failed for itinerary {itinerary.id}: {e}",
                itinerary_id=itinerary.id,
            ) from e
        logger.info(f"PDF written for itinerary_id={itinerary.id}: {path}")
        return RenderedDocument(filename=filename, path=str(path))

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(os.path.exists, path)

    async def delete(self, path: str) -> None:
        try:
            await asyncio.to_thread(os.unlink, path)
            logger.info(f"PDF file deleted: {path}")
        except FileNotFoundError:
            logger.warning(f"PDF file already gone: {path}")

    # ------------------------------------------------------------------
    def _build(self, itinerary: Itinerary, content: str, path: Path) -> None:
        self.storage_path.mkdir(parents=True, exist_ok=True)
        doc = SimpleDocTemplate(
            str(path),
            pagesize=A4,
            title=f"Travel itinerary: {itinerary.destination}",
            subject=f"Itinerary #{itinerary.id}",
        )
        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            "ItineraryTitle",
            parent=styles["Heading1"],
            fontSize=22,
            textColor=colors.HexColor("#1f6feb"),
            spaceAfter=20,
            alignment=TA_CENTER,
        )
        heading_style = ParagraphStyle(
            "ItineraryHeading",
            parent=styles["Heading2"],
            textColor=colors.HexColor("#1f6feb"),
            spaceBefore=12,
            spaceAfter=6,
        )
        body_style = styles["BodyText"]

        story = [Paragraph(escape(itinerary.destination), title_style)]

        summary = [
            ["Dates", f"{itinerary.start_date:%d %b %Y} - {itinerary.end_date:%d %b %Y}"],
            ["Duration", f"{itinerary.duration_days} day(s)"],
        ]
        if itinerary.budget:
            summary.append(["Budget", f"${itinerary.budget:,.2f} USD"])
        if itinerary.interests:
            summary.append(["Interests", ", ".join(itinerary.interests)])
        table = Table(summary, colWidths=[1.5 * inch, 4.5 * inch])
        table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (0, -1), colors.HexColor("#f0f0f0")),
                    ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                    ("FONTSIZE", (0, 0), (-1, -1), 10),
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                ]
            )
        )
        story += [table, Spacer(1, 0.3 * inch)]

        for line in content.splitlines():
            text = line.strip()
            if not text:
                story.append(Spacer(1, 6))
                continue
            if text.startswith("#"):
                story.append(Paragraph(_inline(text.lstrip("# ")), heading_style))
            elif text.startswith(("- ", "* ")):
                story.append(Paragraph(_inline(text[2:]), body_style, bulletText="•"))
            else:
                story.append(Paragraph(_inline(text), body_style))

        doc.build(story)


def _remove_quietly(path: Path) -> bool:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.error(f"Could not delete unused PDF {path}: {e}")
        return False
    return True


def _discard_abandoned(path: Path, build: asyncio.Future) -> None:
    if not build.cancelled() and build.exception() is not None:
        logger.warning(f"Abandoned PDF build failed for {path}: {build.exception()}")
    if _remove_quietly(path):
        logger.info(f"Abandoned PDF discarded: {path}")


def _inline(text: str) -> str:
    return _BOLD.sub(r"<b>\1</b>", escape(text))
