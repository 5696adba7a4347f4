"""Simple example submitting an itinerary and waiting for it to finish."""

import asyncio
from datetime import date, timedelta

from tripforge import ItineraryRequest, ProcessingService
from tripforge.config import load_config


async def main():
    """Create one itinerary and poll until processing settles."""
    config = load_config()
    # The pydantic-ai test model needs no API key; drop this to use the configured provider
    config.generation.model = "test"

    service = ProcessingService(config)
    await service.start()

    start = date.today() + timedelta(days=30)
    submission = await service.create_itinerary(
        client_id="guide",
        request=ItineraryRequest(
            destination="Tokyo, Japan",
            start_date=start,
            end_date=start + timedelta(days=5),
            budget=3000,
            interests=["food", "temples", "gardens"],
        ),
    )
    itinerary = submission.itinerary
    print(f"✅ Itinerary {itinerary.id} submitted via {submission.dispatch.method}")
    print(f"⏱️  Estimated completion: {submission.estimated_completion:%H:%M:%S}")

    # Outcomes are observed by polling the stored status
    while not itinerary.processing_status.is_terminal:
        await asyncio.sleep(1)
        itinerary = await service.get_itinerary(itinerary.id)
        print(f"📋 Status: {itinerary.processing_status.value}")

    if itinerary.pdf_path:
        print(f"📄 PDF: {itinerary.pdf_path}")

    await service.stop()


if __name__ == "__main__":
    asyncio.run(main())
