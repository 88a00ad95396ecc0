"""Per-user token quota enforcement.

The quota check is an admission gate that runs before any provider call.
Checks for one user are serialized by a lock keyed on the user id; checks
for different users never contend.
"""

from datetime import datetime
from typing import Callable

from ..exceptions import (
    GlobalTokenLimitExceededError,
    MonthlyTokenLimitExceededError,
    UserInactiveError,
    UserNotFoundError,
)
from ..storage.base import UsageStore
from ..types import QuotaDecision, RemainingQuota, TokenLimits, UserAccount, utcnow
from ..utils.logging import StructuredLogger

UNLIMITED = -1


def month_start(now: datetime) -> datetime:
    """Start of the calendar month containing ``now``."""
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def lock_key(user_id: str) -> str:
    return f"token_limit_{user_id}"


def exceeds(current: int, limit: int, requested: int) -> bool:
    """Whether ``requested`` more tokens would pass ``limit``.

    A zero limit is unlimited and zero-token requests always pass. Reaching
    the limit exactly is allowed.
    """
    if limit == 0 or requested <= 0:
        return False
    return current + requested > limit


def remaining(current: int, limit: int) -> int:
    if limit == 0:
        return UNLIMITED
    return max(0, limit - current)


class QuotaEnforcer:
    """Checks token requests against global and monthly user quotas.

    Limits resolve per dimension: the user's own value when set, else the
    store's process-wide default. A resolved limit of zero is unlimited.

    Example:
        enforcer = QuotaEnforcer(store)
        decision = await enforcer.check_token_limit("user-1", 1200)
        decision.remaining.monthly  # tokens left this month, -1 if unlimited
    """

    def __init__(
        self,
        store: UsageStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the enforcer.

        Args:
            store: Users, default limits and usage totals.
            clock: Returns the current UTC time; the month window derives from it.
        """
        self._store = store
        self._clock = clock
        self._log = StructuredLogger("quota")

    async def resolve_limits(self, user: UserAccount) -> TokenLimits:
        """Effective limits for a user."""
        global_limit = user.token_limit_global
        monthly_limit = user.token_limit_monthly
        if global_limit is None or monthly_limit is None:
            defaults = await self._store.get_global_defaults()
            if global_limit is None:
                global_limit = defaults.global_limit
            if monthly_limit is None:
                monthly_limit = defaults.monthly_limit
        return TokenLimits(global_limit=global_limit, monthly_limit=monthly_limit)

    async def check_token_limit(self, user_id: str, tokens_requested: int) -> QuotaDecision:
        """Admit or deny a request for ``tokens_requested`` tokens.

        Args:
            user_id: Requesting user.
            tokens_requested: Estimated tokens of the request.

        Returns:
            The decision, always with ``allowed=True``.

        Raises:
            UserNotFoundError: If the user does not exist.
            UserInactiveError: If the user is deactivated.
            GlobalTokenLimitExceededError: If the all-time quota would be passed.
            MonthlyTokenLimitExceededError: If this month's quota would be passed.
        """
        user = await self._store.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        if not user.is_active:
            raise UserInactiveError(user_id)

        limits = await self.resolve_limits(user)
        log = self._log.with_context(user_id=user_id, tokens_requested=tokens_requested)

        async with self._store.locked_transaction(lock_key(user_id)) as tx:
            usage = await tx.get_usage(user_id, month_start(self._clock()))

            if exceeds(usage.total_tokens, limits.global_limit, tokens_requested):
                log.warning(
                    "Global token limit exceeded",
                    current_usage=usage.total_tokens,
                    limit=limits.global_limit,
                )
                raise GlobalTokenLimitExceededError(
                    usage.total_tokens, limits.global_limit, tokens_requested
                )

            if exceeds(usage.monthly_tokens, limits.monthly_limit, tokens_requested):
                log.warning(
                    "Monthly token limit exceeded",
                    current_usage=usage.monthly_tokens,
                    limit=limits.monthly_limit,
                )
                raise MonthlyTokenLimitExceededError(
                    usage.monthly_tokens, limits.monthly_limit, tokens_requested
                )

        log.debug(
            "Token limit check passed",
            total_tokens=usage.total_tokens,
            monthly_tokens=usage.monthly_tokens,
        )
        return QuotaDecision(
            allowed=True,
            current_usage=usage,
            limits=limits,
            remaining=RemainingQuota(
                global_=remaining(usage.total_tokens, limits.global_limit),
                monthly=remaining(usage.monthly_tokens, limits.monthly_limit),
            ),
        )
