"""AI content generation for itineraries."""

from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional, Protocol

from pydantic import BaseModel, Field
from pydantic_ai import Agent

from .errors import GenerationError
from .persistence.models import Itinerary

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an experienced travel planner. Write practical, day-by-day "
    "itineraries with specific places, approximate prices and timings."
)


class GeneratedContent(BaseModel):
    content: str
    model_used: str


class GenerationRequest(BaseModel):
    """Trip parameters the prompt is built from."""

    itinerary_id: int
    destination: str
    start_date: date
    end_date: date
    budget: Optional[float] = None
    interests: List[str] = Field(default_factory=list)

    @classmethod
    def from_itinerary(cls, itinerary: Itinerary) -> "GenerationRequest":
        return cls(
            itinerary_id=itinerary.id,
            destination=itinerary.destination,
            start_date=itinerary.start_date,
            end_date=itinerary.end_date,
            budget=itinerary.budget,
            interests=list(itinerary.interests),
        )

    @property
    def duration_days(self) -> int:
        return max((self.end_date - self.start_date).days, 1)

    def to_prompt(self) -> str:
        days = self.duration_days
        lines = [
            "Create a detailed travel itinerary with the following details:",
            f"- Destination: {self.destination}",
            f"- Start date: {self.start_date:%A, %d %B %Y}",
            f"- End date: {self.end_date:%A, %d %B %Y}",
            f"- Duration: {days} day{'s' if days > 1 else ''}",
        ]
        if self.budget:
            lines.append(f"- Budget: ${self.budget:,.2f} USD")
        if self.interests:
            lines.append(f"- Interests: {', '.join(self.interests)}")
        lines += [
            "",
            "Structure the itinerary as:",
            "1. Introduction to the destination and weather for the travel dates",
            "2. Practical information (documents, currency, local transport, safety)",
            "3. Day-by-day plan (Day 1, Day 2, ...) with morning, lunch, afternoon,"
            " dinner and evening suggestions",
            "4. Three accommodation options at different price ranges",
            "5. Estimated budget by category with money-saving tips",
            "6. Extra tips (packing, useful apps, basic local phrases, souvenirs)",
            "",
            "Account for travel time between activities, adapt suggestions to the"
            " budget and include at least one free activity per day.",
        ]
        return "\n".join(lines)


class ContentGenerator(Protocol):
    """Produces itinerary text from a prompt."""

    async def generate(self, prompt: str, model: Optional[str] = None) -> GeneratedContent:
        ...


class PydanticAIContentGenerator:
    """Content generator backed by a pydantic-ai agent."""

    def __init__(self, model: str = "groq:llama3-8b-8192") -> None:
        self.default_model = model
        self._agent: Agent | None = None

    @property
    def agent(self) -> Agent:
        if self._agent is None:
            self._agent = Agent(
                self.default_model,
                system_prompt=SYSTEM_PROMPT,
                defer_model_check=True,
            )
        return self._agent

    async def generate(self, prompt: str, model: Optional[str] = None) -> GeneratedContent:
        model_name = model or self.default_model
        try:
            result = await self.agent.run(prompt, model=model_name)
        except Exception as e:
            raise GenerationError(f"AI provider error from {model_name}: {e}") from e

        content = str(result.output or "").strip()
        if not content:
            raise GenerationError(f"AI provider {model_name} returned empty content")
        logger.info(f"Generated {len(content)} characters with model={model_name}")
        return GeneratedContent(content=content, model_used=model_name)
