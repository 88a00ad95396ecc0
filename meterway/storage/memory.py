"""In-process usage store."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

from ..types import TokenLimits, TokenUsageRecord, UsageTotals, UserAccount
from .base import UsageStore, UsageTransaction
from .locks import KeyedLock


class _MemoryTransaction(UsageTransaction):
    def __init__(self, store: "InMemoryUsageStore"):
        self._store = store

    async def get_usage(self, user_id: str, month_start: datetime) -> UsageTotals:
        total = 0
        monthly = 0
        for record in self._store._records:
            if record.user_id != user_id:
                continue
            total += record.total_tokens
            if record.created_at >= month_start:
                monthly += record.total_tokens
        return UsageTotals(total_tokens=total, monthly_tokens=monthly)


class InMemoryUsageStore(UsageStore):
    """Usage store held in process memory.

    Suitable for tests and single-process deployments. Commit and rollback
    counters make transaction outcomes observable.

    Example:
        store = InMemoryUsageStore(defaults=TokenLimits(global_limit=1_000_000))
        store.add_user(UserAccount(id="user-1"))
    """

    def __init__(
        self,
        defaults: TokenLimits | None = None,
        users: list[UserAccount] | None = None,
    ):
        self._defaults = defaults or TokenLimits()
        self._users: dict[str, UserAccount] = {u.id: u for u in users or []}
        self._records: list[TokenUsageRecord] = []
        self._locks = KeyedLock()
        self.commits = 0
        self.rollbacks = 0

    def add_user(self, user: UserAccount) -> None:
        self._users[user.id] = user

    def set_global_defaults(self, defaults: TokenLimits) -> None:
        self._defaults = defaults

    @property
    def records(self) -> list[TokenUsageRecord]:
        return list(self._records)

    def is_locked(self, key: str) -> bool:
        return self._locks.locked(key)

    async def get_user(self, user_id: str) -> UserAccount | None:
        return self._users.get(user_id)

    async def get_global_defaults(self) -> TokenLimits:
        return self._defaults

    @asynccontextmanager
    async def locked_transaction(self, key: str) -> AsyncIterator[UsageTransaction]:
        async with self._locks.hold(key):
            try:
                yield _MemoryTransaction(self)
            except BaseException:
                self.rollbacks += 1
                raise
            else:
                self.commits += 1

    async def append_usage(self, record: TokenUsageRecord) -> None:
        self._records.append(record)

    async def list_usage(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        project_id: str | None = None,
        agent_id: str | None = None,
        conversation_id: str | None = None,
    ) -> list[TokenUsageRecord]:
        records = [
            r
            for r in self._records
            if r.user_id == user_id
            and (start is None or r.created_at >= start)
            and (end is None or r.created_at <= end)
            and (project_id is None or r.project_id == project_id)
            and (agent_id is None or r.agent_id == agent_id)
            and (conversation_id is None or r.conversation_id == conversation_id)
        ]
        return sorted(records, key=lambda r: r.created_at)
