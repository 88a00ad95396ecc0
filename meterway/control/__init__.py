"""Control layer: admission checks that run before any provider call."""

from .quota import QuotaEnforcer, month_start

__all__ = ["QuotaEnforcer", "month_start"]
