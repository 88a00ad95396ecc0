"""Usage store interface.

The store is the only shared mutable resource of the gateway. Quota checks
read it under a per-key lock; the usage recorder appends to it.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncContextManager

from ..types import TokenLimits, TokenUsageRecord, UsageTotals, UserAccount


class UsageTransaction(ABC):
    """Reads performed while holding a store lock."""

    @abstractmethod
    async def get_usage(self, user_id: str, month_start: datetime) -> UsageTotals:
        """Return all-time tokens and tokens since ``month_start``."""


class UsageStore(ABC):
    """Abstract base class for usage/limits stores."""

    @abstractmethod
    async def get_user(self, user_id: str) -> UserAccount | None:
        """Return the user, or None if it does not exist."""

    @abstractmethod
    async def get_global_defaults(self) -> TokenLimits:
        """Return the process-wide default limits."""

    @abstractmethod
    def locked_transaction(self, key: str) -> AsyncContextManager[UsageTransaction]:
        """Open a transaction holding the mutual-exclusion lock for ``key``.

        Scopes with the same key are strictly ordered; different keys never
        contend. The transaction commits on normal exit, rolls back when the
        block raises, and releases the lock on every path.
        """

    @abstractmethod
    async def append_usage(self, record: TokenUsageRecord) -> None:
        """Persist a usage record. Records are never updated."""

    @abstractmethod
    async def list_usage(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        project_id: str | None = None,
        agent_id: str | None = None,
        conversation_id: str | None = None,
    ) -> list[TokenUsageRecord]:
        """Return a user's records in chronological order.

        ``start`` and ``end`` are inclusive. Each id given narrows the result
        to records carrying that id.
        """
