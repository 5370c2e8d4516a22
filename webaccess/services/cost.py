"""Per-call LLM cost estimates.

Prices are USD per 1M tokens and only approximate; the table is matched by
substring against the lowercased model id, first match wins, so more specific
keys must come before their prefixes.
"""

from __future__ import annotations

MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o-mini": (0.15, 0.6),
    "gpt-4o": (2.5, 10.0),
    "gpt-4-turbo": (10.0, 30.0),
    "gpt-3.5-turbo": (0.5, 1.5),
    "gpt-5-mini": (0.1, 0.4),
    "gpt-5": (2.0, 8.0),
    "claude-3-haiku": (0.25, 1.25),
    "claude-3-sonnet": (3.0, 15.0),
    "claude-3-opus": (15.0, 75.0),
}

# Flat estimate for models missing from the table
DEFAULT_COST_PER_CALL = 0.001

# A page preview plus scratchpad is roughly this size
DEFAULT_INPUT_TOKENS = 2000
DEFAULT_OUTPUT_TOKENS = 100


def estimate_cost_per_call(
    model: str,
    input_tokens: int = DEFAULT_INPUT_TOKENS,
    output_tokens: int = DEFAULT_OUTPUT_TOKENS,
) -> float:
    lowered = (model or "").lower()
    for key, (input_price, output_price) in MODEL_PRICING.items():
        if key in lowered:
            return (input_tokens / 1_000_000) * input_price + (output_tokens / 1_000_000) * output_price
    return DEFAULT_COST_PER_CALL


def estimate_operation_detection_cost(model: str) -> float:
    """Operation classification sends a tiny prompt and reads one word back."""
    return estimate_cost_per_call(model, 100, 20)


def format_cost(cost: float) -> str:
    if cost < 0.001:
        return f"${cost:.6f}"
    if cost < 0.01:
        return f"${cost:.4f}"
    return f"${cost:.3f}"
