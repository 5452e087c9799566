"""Model pricing and cost estimation."""

from dataclasses import dataclass

from lorekeeper.models.llm import LLMUsage

CACHE_READ_MULTIPLIER = 0.1
CACHE_WRITE_MULTIPLIER = 1.25


@dataclass(frozen=True)
class ModelPricing:
    """USD per million tokens."""

    input_per_million: float
    output_per_million: float


MODEL_PRICING: dict[str, ModelPricing] = {
    "claude-haiku-4-5-20251001": ModelPricing(input_per_million=1.0, output_per_million=5.0),
    "claude-sonnet-4-5-20250929": ModelPricing(input_per_million=3.0, output_per_million=15.0),
}

DEFAULT_PRICING = ModelPricing(input_per_million=3.0, output_per_million=15.0)


def get_pricing(model: str) -> ModelPricing:
    return MODEL_PRICING.get(model, DEFAULT_PRICING)


def calculate_cost(model: str, usage: LLMUsage) -> float:
    """Estimate the USD cost of the usage, including prompt cache reads and writes."""
    pricing = get_pricing(model)
    input_rate = pricing.input_per_million / 1_000_000
    output_rate = pricing.output_per_million / 1_000_000

    return (
        usage.input_tokens * input_rate
        + usage.cache_read_input_tokens * input_rate * CACHE_READ_MULTIPLIER
        + usage.cache_creation_input_tokens * input_rate * CACHE_WRITE_MULTIPLIER
        + usage.output_tokens * output_rate
    )


def format_cost(cost: float) -> str:
    if cost == 0:
        return "$0.00"
    if cost < 0.01:
        return "<$0.01"
    return f"${cost:.2f}"
