"""Content generation tests using the pydantic-ai test model."""

from datetime import date

import pytest

from tripforge.errors import GenerationError
from tripforge.generation import GenerationRequest, PydanticAIContentGenerator
from tripforge.persistence import Itinerary


def _itinerary(**overrides) -> Itinerary:
    data = dict(
        id=3,
        client_id="client",
        destination="Lisbon, Portugal",
        start_date=date(2026, 5, 10),
        end_date=date(2026, 5, 13),
    )
    data.update(overrides)
    return Itinerary(**data)


def test_prompt_without_optional_fields():
    request = GenerationRequest.from_itinerary(_itinerary())

    prompt = request.to_prompt()
    assert request.duration_days == 3
    assert "Destination: Lisbon, Portugal" in prompt
    assert "Duration: 3 days" in prompt
    assert "Budget:" not in prompt
    assert "Interests:" not in prompt


def test_single_day_trip():
    request = GenerationRequest.from_itinerary(
        _itinerary(end_date=date(2026, 5, 10), budget=300.0, interests=["beaches"])
    )

    prompt = request.to_prompt()
    assert request.duration_days == 1
    assert "Duration: 1 day\n" in prompt
    assert "Budget: $300.00 USD" in prompt
    assert "Interests: beaches" in prompt


@pytest.mark.asyncio
async def test_pydantic_ai_generator_with_test_model():
    generator = PydanticAIContentGenerator(model="test")

    result = await generator.generate(GenerationRequest.from_itinerary(_itinerary()).to_prompt())

    assert result.content
    assert result.model_used == "test"


@pytest.mark.asyncio
async def test_pydantic_ai_generator_wraps_provider_errors():
    generator = PydanticAIContentGenerator(model="test")

    with pytest.raises(GenerationError):
        await generator.generate("Plan a trip", model="no-such-provider:model")
