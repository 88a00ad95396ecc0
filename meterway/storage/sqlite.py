"""SQLite-backed usage store.

Provides a persistent store for users, default limits and the append-only
token usage ledger. Blocking sqlite3 calls run in worker threads.
"""

import asyncio
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator

from ..types import (
    LLMProvider,
    RequestType,
    TokenLimits,
    TokenUsageRecord,
    UsageTotals,
    UserAccount,
)
from .base import UsageStore, UsageTransaction
from .locks import KeyedLock

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    is_active INTEGER NOT NULL DEFAULT 1,
    token_limit_global INTEGER,
    token_limit_monthly INTEGER
);

CREATE TABLE IF NOT EXISTS global_token_limits (
    limit_type TEXT PRIMARY KEY CHECK (limit_type IN ('global', 'monthly')),
    limit_value INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS token_usage (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    project_id TEXT,
    agent_id TEXT,
    conversation_id TEXT,
    provider TEXT NOT NULL,
    model TEXT NOT NULL,
    prompt_tokens INTEGER NOT NULL,
    completion_tokens INTEGER NOT NULL,
    total_tokens INTEGER NOT NULL,
    estimated_cost REAL NOT NULL,
    request_type TEXT,
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_token_usage_user_created
    ON token_usage (user_id, created_at);

CREATE INDEX IF NOT EXISTS idx_token_usage_project
    ON token_usage (project_id, user_id);

CREATE INDEX IF NOT EXISTS idx_token_usage_agent
    ON token_usage (agent_id, user_id);

CREATE INDEX IF NOT EXISTS idx_token_usage_conversation
    ON token_usage (conversation_id, user_id);
"""


def get_connection(db_path: str) -> sqlite3.Connection:
    """Open a connection in autocommit mode; transactions are explicit.

    The connection may be used from whichever worker thread runs the call.
    """
    conn = sqlite3.connect(str(Path(db_path)), check_same_thread=False, isolation_level=None)
    conn.execute("PRAGMA busy_timeout = 30000")
    return conn


def _row_to_record(row: tuple) -> TokenUsageRecord:
    return TokenUsageRecord(
        user_id=row[0],
        project_id=row[1],
        agent_id=row[2],
        conversation_id=row[3],
        provider=LLMProvider(row[4]),
        model=row[5],
        prompt_tokens=row[6],
        completion_tokens=row[7],
        total_tokens=row[8],
        estimated_cost=row[9],
        request_type=RequestType(row[10]) if row[10] else RequestType.CHAT,
        created_at=datetime.fromtimestamp(row[11], timezone.utc),
    )


def _close_abandoned(begin: "asyncio.Future[sqlite3.Connection]") -> None:
    if begin.cancelled() or begin.exception() is not None:
        return
    begin.result().close()


class _SQLiteTransaction(UsageTransaction):
    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def _get_usage(self, user_id: str, month_start: datetime) -> UsageTotals:
        row = self._conn.execute(
            """
            SELECT
                COALESCE(SUM(total_tokens), 0) AS total_tokens,
                COALESCE(SUM(CASE WHEN created_at >= ? THEN total_tokens ELSE 0 END), 0)
                    AS monthly_tokens
            FROM token_usage
            WHERE user_id = ?
            """,
            (month_start.timestamp(), user_id),
        ).fetchone()
        return UsageTotals(total_tokens=int(row[0]), monthly_tokens=int(row[1]))

    async def get_usage(self, user_id: str, month_start: datetime) -> UsageTotals:
        return await asyncio.to_thread(self._get_usage, user_id, month_start)


class SQLiteUsageStore(UsageStore):
    """Usage store persisted to a SQLite file.

    Quota transactions take a per-key asyncio lock and read inside a
    deferred transaction. The database runs in WAL mode, so readers for
    different users never wait on each other or on appends. ``:memory:``
    is not supported because every operation opens its own connection.

    Example:
        store = SQLiteUsageStore("usage.db")
        store.initialize()
        store.add_user(UserAccount(id="user-1", token_limit_monthly=50_000))
    """

    def __init__(self, db_path: str = "meterway.db"):
        self.db_path = db_path
        self._locks = KeyedLock()

    # =========================================================================
    # SETUP
    # =========================================================================

    def initialize(self, defaults: TokenLimits | None = None) -> None:
        """Create tables and, if given, store the default limits."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA)
            if defaults is not None:
                self._write_defaults(conn, defaults)
        finally:
            conn.close()

    def set_global_defaults(self, defaults: TokenLimits) -> None:
        conn = get_connection(self.db_path)
        try:
            self._write_defaults(conn, defaults)
        finally:
            conn.close()

    @staticmethod
    def _write_defaults(conn: sqlite3.Connection, defaults: TokenLimits) -> None:
        conn.executemany(
            """
            INSERT INTO global_token_limits (limit_type, limit_value) VALUES (?, ?)
            ON CONFLICT(limit_type) DO UPDATE SET limit_value = excluded.limit_value
            """,
            [("global", defaults.global_limit), ("monthly", defaults.monthly_limit)],
        )

    def add_user(self, user: UserAccount) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO users (id, is_active, token_limit_global, token_limit_monthly)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    is_active = excluded.is_active,
                    token_limit_global = excluded.token_limit_global,
                    token_limit_monthly = excluded.token_limit_monthly
                """,
                (user.id, int(user.is_active), user.token_limit_global, user.token_limit_monthly),
            )
        finally:
            conn.close()

    # =========================================================================
    # READS
    # =========================================================================

    def _get_user(self, user_id: str) -> UserAccount | None:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, is_active, token_limit_global, token_limit_monthly "
                "FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return UserAccount(
            id=row[0],
            is_active=bool(row[1]),
            token_limit_global=row[2],
            token_limit_monthly=row[3],
        )

    async def get_user(self, user_id: str) -> UserAccount | None:
        return await asyncio.to_thread(self._get_user, user_id)

    def _get_global_defaults(self) -> TokenLimits:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT limit_type, limit_value FROM global_token_limits"
            ).fetchall()
        finally:
            conn.close()
        values = dict(rows)
        return TokenLimits(
            global_limit=values.get("global", 0),
            monthly_limit=values.get("monthly", 0),
        )

    async def get_global_defaults(self) -> TokenLimits:
        return await asyncio.to_thread(self._get_global_defaults)

    def _list_usage(
        self,
        user_id: str,
        start: datetime | None,
        end: datetime | None,
        filters: dict[str, str],
    ) -> list[TokenUsageRecord]:
        query = """
            SELECT user_id, project_id, agent_id, conversation_id, provider, model,
                   prompt_tokens, completion_tokens, total_tokens, estimated_cost,
                   request_type, created_at
            FROM token_usage
            WHERE user_id = ?
        """
        params: list = [user_id]
        if start is not None:
            query += " AND created_at >= ?"
            params.append(start.timestamp())
        if end is not None:
            query += " AND created_at <= ?"
            params.append(end.timestamp())
        for column, value in filters.items():
            query += f" AND {column} = ?"
            params.append(value)
        query += " ORDER BY created_at, id"

        conn = get_connection(self.db_path)
        try:
            return [_row_to_record(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    async def list_usage(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        project_id: str | None = None,
        agent_id: str | None = None,
        conversation_id: str | None = None,
    ) -> list[TokenUsageRecord]:
        filters = {
            column: value
            for column, value in (
                ("project_id", project_id),
                ("agent_id", agent_id),
                ("conversation_id", conversation_id),
            )
            if value is not None
        }
        return await asyncio.to_thread(self._list_usage, user_id, start, end, filters)

    # =========================================================================
    # WRITES
    # =========================================================================

    def _append_usage(self, record: TokenUsageRecord) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO token_usage (
                    user_id, project_id, agent_id, conversation_id, provider, model,
                    prompt_tokens, completion_tokens, total_tokens, estimated_cost,
                    request_type, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.user_id,
                    record.project_id,
                    record.agent_id,
                    record.conversation_id,
                    record.provider.value,
                    record.model,
                    record.prompt_tokens,
                    record.completion_tokens,
                    record.total_tokens,
                    record.estimated_cost,
                    record.request_type.value,
                    record.created_at.timestamp(),
                ),
            )
        finally:
            conn.close()

    async def append_usage(self, record: TokenUsageRecord) -> None:
        await asyncio.to_thread(self._append_usage, record)

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def _begin(self) -> sqlite3.Connection:
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN")
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    @staticmethod
    def _finish(conn: sqlite3.Connection, commit: bool) -> None:
        try:
            conn.execute("COMMIT" if commit else "ROLLBACK")
        finally:
            conn.close()

    @asynccontextmanager
    async def locked_transaction(self, key: str) -> AsyncIterator[UsageTransaction]:
        async with self._locks.hold(key):
            begin = asyncio.ensure_future(asyncio.to_thread(self._begin))
            try:
                conn = await asyncio.shield(begin)
            except asyncio.CancelledError:
                # The worker thread still finishes BEGIN; close what it opens.
                begin.add_done_callback(_close_abandoned)
                raise
            try:
                yield _SQLiteTransaction(conn)
            except BaseException:
                await asyncio.to_thread(self._finish, conn, False)
                raise
            else:
                await asyncio.to_thread(self._finish, conn, True)
