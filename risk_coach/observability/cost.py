"""Cost estimates for model calls.

Pricing per 1M tokens (USD) based on OpenAI list prices.
Adjust MODEL_PRICING when rates change.
"""

from __future__ import annotations

MODEL_PRICING: dict[str, dict[str, float]] = {
    "gpt-4o": {
        "input": 2.50,
        "output": 10.00,
    },
    "gpt-4o-mini": {
        "input": 0.15,
        "output": 0.60,
    },
}

DEFAULT_MODEL = "gpt-4o-mini"


def calculate_cost(
    input_tokens: int,
    output_tokens: int,
    model: str = DEFAULT_MODEL,
) -> dict:
    """Calculate the cost of a single model call.

    Unknown models are priced as DEFAULT_MODEL.

    Returns:
        dict with input_cost_usd, output_cost_usd, total_cost_usd,
        and the model and token counts used.
    """
    pricing = MODEL_PRICING.get(model, MODEL_PRICING[DEFAULT_MODEL])

    input_cost = (input_tokens / 1_000_000) * pricing["input"]
    output_cost = (output_tokens / 1_000_000) * pricing["output"]

    return {
        "model": model,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "input_cost_usd": round(input_cost, 6),
        "output_cost_usd": round(output_cost, 6),
        "total_cost_usd": round(input_cost + output_cost, 6),
    }
