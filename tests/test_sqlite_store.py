"""Tests for the SQLite usage store."""

import asyncio
import sqlite3
import threading
from datetime import datetime, timedelta, timezone

import pytest

from meterway.control.quota import QuotaEnforcer
from meterway.exceptions import GlobalTokenLimitExceededError
from meterway.storage.sqlite import SQLiteUsageStore
from meterway.types import (
    LLMProvider,
    RequestType,
    TokenLimits,
    TokenUsageRecord,
    UsageTotals,
    UserAccount,
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
MONTH_START = datetime(2026, 10, 1, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    store = SQLiteUsageStore(str(tmp_path / "usage.db"))
    store.initialize(TokenLimits(global_limit=1_000_000, monthly_limit=100_000))
    store.add_user(UserAccount(id="u1", token_limit_global=10_000))
    return store


def usage(tokens, created_at=NOW, user_id="u1", request_type=RequestType.CHAT):
    return TokenUsageRecord(
        user_id=user_id,
        project_id="p1",
        provider=LLMProvider.ANTHROPIC,
        model="claude-sonnet-4-20250514",
        prompt_tokens=tokens,
        completion_tokens=0,
        total_tokens=tokens,
        estimated_cost=0.01,
        request_type=request_type,
        created_at=created_at,
    )


class TestUsersAndDefaults:
    """Tests for users and default limits."""

    @pytest.mark.asyncio
    async def test_get_user(self, store):
        user = await store.get_user("u1")
        assert user == UserAccount(id="u1", is_active=True, token_limit_global=10_000)

    @pytest.mark.asyncio
    async def test_missing_user(self, store):
        assert await store.get_user("ghost") is None

    @pytest.mark.asyncio
    async def test_add_user_upserts(self, store):
        store.add_user(UserAccount(id="u1", is_active=False, token_limit_monthly=5))

        user = await store.get_user("u1")

        assert not user.is_active
        assert user.token_limit_global is None
        assert user.token_limit_monthly == 5

    @pytest.mark.asyncio
    async def test_defaults(self, store):
        assert await store.get_global_defaults() == TokenLimits(
            global_limit=1_000_000, monthly_limit=100_000
        )
        store.set_global_defaults(TokenLimits(global_limit=5, monthly_limit=6))
        assert await store.get_global_defaults() == TokenLimits(global_limit=5, monthly_limit=6)

    @pytest.mark.asyncio
    async def test_no_defaults_means_unlimited(self, tmp_path):
        store = SQLiteUsageStore(str(tmp_path / "empty.db"))
        store.initialize()
        assert await store.get_global_defaults() == TokenLimits(global_limit=0, monthly_limit=0)


class TestUsageLedger:
    """Tests for appending and reading usage."""

    @pytest.mark.asyncio
    async def test_append_and_list_round_trip(self, store):
        written = usage(300, request_type=RequestType.CHAT_STREAM_PARTIAL)
        await store.append_usage(written)

        records = await store.list_usage("u1")

        assert records == [written]

    @pytest.mark.asyncio
    async def test_list_is_chronological_and_windowed(self, store):
        await store.append_usage(usage(3, created_at=NOW))
        await store.append_usage(usage(1, created_at=NOW - timedelta(days=40)))
        await store.append_usage(usage(2, created_at=NOW - timedelta(days=1)))
        await store.append_usage(usage(9, user_id="u2"))

        everything = await store.list_usage("u1")
        recent = await store.list_usage("u1", start=MONTH_START)
        older = await store.list_usage("u1", end=MONTH_START)

        assert [r.total_tokens for r in everything] == [1, 2, 3]
        assert [r.total_tokens for r in recent] == [2, 3]
        assert [r.total_tokens for r in older] == [1]

    @pytest.mark.asyncio
    async def test_transaction_reads_totals(self, store):
        await store.append_usage(usage(100, created_at=MONTH_START - timedelta(seconds=1)))
        await store.append_usage(usage(40, created_at=MONTH_START))
        await store.append_usage(usage(2, created_at=NOW))
        await store.append_usage(usage(1000, user_id="u2"))

        async with store.locked_transaction("token_limit_u1") as tx:
            totals = await tx.get_usage("u1", MONTH_START)

        assert totals == UsageTotals(total_tokens=142, monthly_tokens=42)

    @pytest.mark.asyncio
    async def test_transaction_for_user_without_usage(self, store):
        async with store.locked_transaction("token_limit_u1") as tx:
            assert await tx.get_usage("u1", MONTH_START) == UsageTotals()


class TestLockedTransactions:
    """Tests for locking and cleanup."""

    @pytest.mark.asyncio
    async def test_error_releases_lock(self, store):
        with pytest.raises(RuntimeError):
            async with store.locked_transaction("token_limit_u1"):
                raise RuntimeError("boom")

        assert not store._locks.locked("token_limit_u1")
        async with store.locked_transaction("token_limit_u1") as tx:
            await tx.get_usage("u1", MONTH_START)

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self, store):
        events = []

        async def check(name):
            async with store.locked_transaction("token_limit_u1") as tx:
                events.append(f"{name}-enter")
                await tx.get_usage("u1", MONTH_START)
                await asyncio.sleep(0.01)
                events.append(f"{name}-exit")

        await asyncio.gather(check("a"), check("b"))

        assert events in (
            ["a-enter", "a-exit", "b-enter", "b-exit"],
            ["b-enter", "b-exit", "a-enter", "a-exit"],
        )

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self, store):
        store.add_user(UserAccount(id="u2"))
        entered = asyncio.Event()
        release = asyncio.Event()

        async def hold():
            async with store.locked_transaction("token_limit_u1") as tx:
                await tx.get_usage("u1", MONTH_START)
                entered.set()
                await release.wait()

        holder = asyncio.create_task(hold())
        await entered.wait()
        try:
            decision = await asyncio.wait_for(
                QuotaEnforcer(store, clock=lambda: NOW).check_token_limit("u2", 10),
                timeout=2.0,
            )
            assert decision.allowed
        finally:
            release.set()
            await holder


class TestQuotaOverSQLite:
    """The quota enforcer against the persistent store."""

    @pytest.mark.asyncio
    async def test_denial_scenario(self, store):
        await store.append_usage(usage(9500))
        enforcer = QuotaEnforcer(store, clock=lambda: NOW)

        with pytest.raises(GlobalTokenLimitExceededError) as exc_info:
            await enforcer.check_token_limit("u1", 1000)
        assert exc_info.value.remaining == 500

        decision = await enforcer.check_token_limit("u1", 500)
        assert decision.remaining.global_ == 500
        assert decision.limits.monthly_limit == 100_000


class SlowBeginStore(SQLiteUsageStore):
    """Holds BEGIN in the worker thread until released."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.release = threading.Event()
        self.opened = []

    def _begin(self):
        self.release.wait(timeout=5)
        conn = super()._begin()
        self.opened.append(conn)
        return conn


def is_closed(conn):
    try:
        conn.execute("SELECT 1")
    except sqlite3.ProgrammingError:
        return True
    return False


class TestScopedListing:
    """Tests for project, agent and conversation filters."""

    @pytest.mark.asyncio
    async def test_filters_narrow_results(self, store):
        def scoped(tokens, **ids):
            return usage(tokens).model_copy(update=ids)

        await store.append_usage(scoped(1, agent_id="a1", conversation_id="c1"))
        await store.append_usage(scoped(2, agent_id="a2", conversation_id="c2"))
        await store.append_usage(scoped(4, project_id="p2", agent_id="a2"))
        await store.append_usage(usage(8, user_id="u2"))

        by_project = await store.list_usage("u1", project_id="p1")
        by_agent = await store.list_usage("u1", agent_id="a2")
        by_conversation = await store.list_usage("u1", conversation_id="c1")
        combined = await store.list_usage("u1", project_id="p1", agent_id="a2")

        assert [r.total_tokens for r in by_project] == [1, 2]
        assert [r.total_tokens for r in by_agent] == [2, 4]
        assert [r.total_tokens for r in by_conversation] == [1]
        assert [r.total_tokens for r in combined] == [2]
        assert await store.list_usage("u2", project_id="p2") == []


class TestCancelledBegin:
    """A transaction cancelled while BEGIN runs leaves nothing open."""

    @pytest.mark.asyncio
    async def test_connection_is_closed_and_lock_released(self, tmp_path):
        store = SlowBeginStore(str(tmp_path / "slow.db"))
        store.initialize()

        async def enter():
            async with store.locked_transaction("token_limit_u1"):
                pass

        task = asyncio.create_task(enter())
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not store._locks.locked("token_limit_u1")

        store.release.set()
        for _ in range(200):
            await asyncio.sleep(0.01)
            if store.opened and is_closed(store.opened[0]):
                break

        assert is_closed(store.opened[0])
