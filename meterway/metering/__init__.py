"""Metering: pricing, token estimation and usage recording."""

from .pricing import (
    PRICING,
    ModelPricing,
    calculate_cost,
    cost_per_million_tokens,
    estimate_tokens,
)
from .recorder import UsageRecorder, daily_usage, summarize_usage

__all__ = [
    "PRICING",
    "ModelPricing",
    "calculate_cost",
    "cost_per_million_tokens",
    "estimate_tokens",
    "UsageRecorder",
    "daily_usage",
    "summarize_usage",
]
