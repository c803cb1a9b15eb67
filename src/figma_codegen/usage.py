from __future__ import annotations

from typing import Any, Mapping

# USD per 1M tokens (input, output).
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o": (5.00, 15.00),
    "gpt-4o-mini": (0.15, 0.60),
    "o3-mini": (1.25, 5.00),
}
_FALLBACK_MODEL = "gpt-4o"


def estimate_cost(model_name: str, input_tokens: int, output_tokens: int) -> float:
    input_price, output_price = MODEL_PRICING.get(model_name, MODEL_PRICING[_FALLBACK_MODEL])
    return (input_tokens / 1_000_000) * input_price + (output_tokens / 1_000_000) * output_price


def accumulate_usage(
    metadata: Mapping[str, Any] | None,
    model_name: str,
    usage: Mapping[str, int] | None,
) -> dict[str, Any]:
    """Return a metadata delta with ``tokensUsed`` and ``costEstimate`` advanced by ``usage``."""
    current = metadata or {}
    tokens = int(current.get("tokensUsed", 0))
    cost = float(current.get("costEstimate", 0.0))
    if not usage:
        return {"tokensUsed": tokens, "costEstimate": cost}
    input_tokens = int(usage.get("input_tokens", 0))
    output_tokens = int(usage.get("output_tokens", 0))
    return {
        "tokensUsed": tokens + input_tokens + output_tokens,
        "costEstimate": cost + estimate_cost(model_name, input_tokens, output_tokens),
    }


def add_usage_totals(metadata: Mapping[str, Any] | None, delta: Mapping[str, Any] | None) -> dict[str, Any]:
    """Fold a ``{tokensUsed, costEstimate}`` delta from a sub-run into running totals."""
    current = metadata or {}
    extra = delta or {}
    return {
        "tokensUsed": int(current.get("tokensUsed", 0)) + int(extra.get("tokensUsed", 0)),
        "costEstimate": float(current.get("costEstimate", 0.0)) + float(extra.get("costEstimate", 0.0)),
    }
