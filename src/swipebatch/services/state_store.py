"""State Store Service - Async SQLite persistence layer.

This service:
- Acts as the authoritative market store (lookup, active listing)
- Persists confirmed prediction records and per-user positions
- Records spend approvals used by the allowance gate
- Keeps a submission history for reconciliation
- Retries writes that hit SQLite lock contention

Amounts are stored as decimal strings so stakes never pass through float.
"""

import asyncio
import sqlite3
import time
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
import uuid

import aiosqlite
import structlog

from swipebatch.core.config import ConfigManager
from swipebatch.core.retry import retry_transient, wrap_external_error
from swipebatch.domain.intent import Side
from swipebatch.domain.market import Approval, Market, Position, PredictionRecord
from swipebatch.domain.submission import SubmissionRecord

log = structlog.get_logger()

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS markets (
    market_id TEXT PRIMARY KEY,
    question TEXT NOT NULL,
    category TEXT NOT NULL DEFAULT 'crypto',
    contract_address TEXT,
    end_time TEXT,
    resolved INTEGER NOT NULL DEFAULT 0,
    outcome INTEGER,
    yes_pool TEXT NOT NULL DEFAULT '0',
    no_pool TEXT NOT NULL DEFAULT '0',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS predictions (
    prediction_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    market_id TEXT NOT NULL,
    side TEXT NOT NULL,
    amount TEXT NOT NULL,
    receipt_id TEXT NOT NULL,
    batch_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (user_id, market_id, receipt_id)
);

CREATE TABLE IF NOT EXISTS positions (
    user_id TEXT NOT NULL,
    market_id TEXT NOT NULL,
    yes_stake TEXT NOT NULL DEFAULT '0',
    no_stake TEXT NOT NULL DEFAULT '0',
    total_invested TEXT NOT NULL DEFAULT '0',
    updated_at TEXT NOT NULL,
    PRIMARY KEY (user_id, market_id)
);

CREATE TABLE IF NOT EXISTS approvals (
    user_id TEXT PRIMARY KEY,
    amount TEXT NOT NULL,
    approved INTEGER NOT NULL DEFAULT 1,
    transaction_hash TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS submissions (
    batch_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    intent_count INTEGER NOT NULL,
    total_stake TEXT NOT NULL,
    state TEXT NOT NULL,
    receipt_id TEXT,
    reason TEXT,
    submitted_at TEXT NOT NULL,
    resolved_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_markets_active ON markets(resolved, end_time);
CREATE INDEX IF NOT EXISTS idx_predictions_user ON predictions(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_predictions_market ON predictions(market_id);
CREATE INDEX IF NOT EXISTS idx_submissions_user ON submissions(user_id, state);

CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);
INSERT OR IGNORE INTO schema_version (version) VALUES (1);
"""


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


class ConnectionPool:
    """Single aiosqlite connection guarded by a lock.

    SQLite serializes writers anyway; WAL mode lets reads proceed while a
    write is in progress.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._connected = False

    async def connect(self) -> None:
        """Connect to the database."""
        async with self._lock:
            if self._connected:
                return

            if self._db_path != ":memory:":
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

            self._connection = await aiosqlite.connect(self._db_path)
            self._connection.row_factory = aiosqlite.Row

            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")
            await self._connection.execute("PRAGMA busy_timeout=5000")

            self._connected = True

    async def close(self) -> None:
        """Close the connection."""
        async with self._lock:
            if self._connection:
                await self._connection.close()
                self._connection = None
            self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def acquire(self) -> aiosqlite.Connection:
        """Return the shared connection.

        Raises:
            RuntimeError: If pool is not connected.
        """
        if not self._connected or not self._connection:
            raise RuntimeError("Connection pool not connected")
        return self._connection

    @property
    def lock(self) -> asyncio.Lock:
        """Lock held for write operations."""
        return self._lock


class StateStore:
    """SQLite-backed market store and durable prediction storage."""

    def __init__(
        self,
        db_path: Optional[str] = None,
        config: Optional[ConfigManager] = None,
    ):
        """Initialize the state store.

        Args:
            db_path: Direct path to database file (takes precedence).
            config: Configuration manager for default settings.
        """
        self._config = config
        self._log = log.bind(component="state_store")

        if db_path:
            self._db_path = db_path
        elif config:
            self._db_path = config.get("database.path", "./data/swipebatch.db")
        else:
            self._db_path = "./data/swipebatch.db"

        self._pool = ConnectionPool(self._db_path)
        self._start_time: Optional[float] = None

    @property
    def is_connected(self) -> bool:
        return self._pool.is_connected

    async def connect(self) -> None:
        """Connect to database and apply the schema."""
        self._start_time = time.time()
        self._log.info("connecting_state_store", db_path=str(self._db_path))

        await self._pool.connect()

        conn = await self._pool.acquire()
        async with self._pool.lock:
            await conn.executescript(SCHEMA_SQL)
            await conn.commit()

        self._log.info("state_store_connected")

    async def close(self) -> None:
        """Close database connection."""
        await self._pool.close()
        self._log.info("state_store_closed")

    @retry_transient(log_context={"component": "state_store"})
    async def _write(self, sql: str, params: tuple[Any, ...]) -> int:
        """Execute one write statement and return the affected row count."""
        conn = await self._pool.acquire()
        try:
            async with self._pool.lock:
                cursor = await conn.execute(sql, params)
                await conn.commit()
                return cursor.rowcount
        except sqlite3.OperationalError as e:
            raise wrap_external_error(e, "state store write failed") from e

    async def _fetchone(self, sql: str, params: tuple[Any, ...]) -> Optional[aiosqlite.Row]:
        conn = await self._pool.acquire()
        async with conn.execute(sql, params) as cursor:
            return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: tuple[Any, ...]) -> list[aiosqlite.Row]:
        conn = await self._pool.acquire()
        rows = []
        async with conn.execute(sql, params) as cursor:
            async for row in cursor:
                rows.append(row)
        return rows

    # ============ Market Operations ============

    async def save_market(self, market: Market) -> None:
        """Insert or replace a market."""
        await self._write(
            """
            INSERT OR REPLACE INTO markets
            (market_id, question, category, contract_address, end_time,
             resolved, outcome, yes_pool, no_pool, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                market.market_id,
                market.question,
                market.category,
                market.contract_address,
                _iso(market.end_time),
                int(market.resolved),
                None if market.outcome is None else int(market.outcome),
                str(market.yes_pool),
                str(market.no_pool),
                _iso(market.created_at),
            ),
        )
        self._log.debug("market_saved", market_id=market.market_id)

    async def get_market(self, market_id: str) -> Optional[Market]:
        """Get a market by ID (always read from the database, never cached)."""
        row = await self._fetchone("SELECT * FROM markets WHERE market_id = ?", (market_id,))
        if row is None:
            return None
        return self._row_to_market(row)

    async def list_active_markets(self, now: Optional[datetime] = None) -> list[Market]:
        """Markets that are unresolved, deployed, and not past their end time."""
        now = now or datetime.now(timezone.utc)
        rows = await self._fetchall(
            """
            SELECT * FROM markets
            WHERE resolved = 0 AND contract_address IS NOT NULL
            ORDER BY created_at DESC
            """,
            (),
        )
        markets = [self._row_to_market(row) for row in rows]
        return [m for m in markets if not m.has_ended(now)]

    async def mark_market_resolved(self, market_id: str, outcome: Optional[bool] = None) -> bool:
        """Mark a market resolved. Returns False if the market does not exist."""
        count = await self._write(
            "UPDATE markets SET resolved = 1, outcome = ? WHERE market_id = ?",
            (None if outcome is None else int(outcome), market_id),
        )
        return count > 0

    def _row_to_market(self, row: aiosqlite.Row) -> Market:
        return Market(
            market_id=row["market_id"],
            question=row["question"],
            category=row["category"],
            contract_address=row["contract_address"],
            end_time=_parse_dt(row["end_time"]),
            resolved=bool(row["resolved"]),
            outcome=None if row["outcome"] is None else bool(row["outcome"]),
            yes_pool=Decimal(row["yes_pool"]),
            no_pool=Decimal(row["no_pool"]),
            created_at=_parse_dt(row["created_at"]) or datetime.now(timezone.utc),
        )

    # ============ Prediction Operations ============

    async def has_prediction(self, user_id: str, market_id: str, receipt_id: str) -> bool:
        """Check whether a prediction exists for the (user, market, receipt) triple."""
        row = await self._fetchone(
            """
            SELECT 1 FROM predictions
            WHERE user_id = ? AND market_id = ? AND receipt_id = ?
            """,
            (user_id, market_id, receipt_id),
        )
        return row is not None

    async def create_prediction_record(
        self,
        user_id: str,
        market_id: str,
        side: Side,
        amount: Decimal,
        receipt_id: str,
        batch_id: str,
    ) -> bool:
        """Insert a prediction record.

        Returns:
            True if a row was written, False if the triple already existed.
        """
        count = await self._write(
            """
            INSERT OR IGNORE INTO predictions
            (prediction_id, user_id, market_id, side, amount, receipt_id, batch_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                f"pred_{uuid.uuid4().hex[:16]}",
                user_id,
                market_id,
                Side(side).value,
                str(amount),
                receipt_id,
                batch_id,
                _iso(datetime.now(timezone.utc)),
            ),
        )
        return count > 0

    async def get_predictions(self, user_id: str, limit: int = 100) -> list[PredictionRecord]:
        """A user's predictions, newest first."""
        rows = await self._fetchall(
            "SELECT * FROM predictions WHERE user_id = ? ORDER BY created_at DESC LIMIT ?",
            (user_id, limit),
        )
        return [
            PredictionRecord(
                prediction_id=row["prediction_id"],
                user_id=row["user_id"],
                market_id=row["market_id"],
                side=Side(row["side"]),
                amount=Decimal(row["amount"]),
                receipt_id=row["receipt_id"],
                batch_id=row["batch_id"],
                created_at=_parse_dt(row["created_at"]) or datetime.now(timezone.utc),
            )
            for row in rows
        ]

    async def get_stake_since(self, user_id: str, since: datetime) -> Decimal:
        """Total stake a user has had confirmed since ``since``."""
        rows = await self._fetchall(
            "SELECT amount FROM predictions WHERE user_id = ? AND created_at >= ?",
            (user_id, _iso(since)),
        )
        return sum((Decimal(row["amount"]) for row in rows), Decimal("0"))

    # ============ Position Operations ============

    async def get_position(self, user_id: str, market_id: str) -> Optional[Position]:
        """Get the position for (user, market), or None if none was written yet."""
        row = await self._fetchone(
            "SELECT * FROM positions WHERE user_id = ? AND market_id = ?",
            (user_id, market_id),
        )
        if row is None:
            return None
        return self._row_to_position(row)

    async def get_positions(self, user_id: str) -> list[Position]:
        """All positions for a user, most recently updated first."""
        rows = await self._fetchall(
            "SELECT * FROM positions WHERE user_id = ? ORDER BY updated_at DESC",
            (user_id,),
        )
        return [self._row_to_position(row) for row in rows]

    async def upsert_position(self, position: Position) -> None:
        """Write a merged position (last writer wins per (user, market))."""
        await self._write(
            """
            INSERT INTO positions
            (user_id, market_id, yes_stake, no_stake, total_invested, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, market_id) DO UPDATE SET
                yes_stake = excluded.yes_stake,
                no_stake = excluded.no_stake,
                total_invested = excluded.total_invested,
                updated_at = excluded.updated_at
            """,
            (
                position.user_id,
                position.market_id,
                str(position.yes_stake),
                str(position.no_stake),
                str(position.total_invested),
                _iso(position.updated_at),
            ),
        )

    def _row_to_position(self, row: aiosqlite.Row) -> Position:
        return Position(
            user_id=row["user_id"],
            market_id=row["market_id"],
            yes_stake=Decimal(row["yes_stake"]),
            no_stake=Decimal(row["no_stake"]),
            total_invested=Decimal(row["total_invested"]),
            updated_at=_parse_dt(row["updated_at"]) or datetime.now(timezone.utc),
        )

    # ============ Approval Operations ============

    async def record_approval(self, approval: Approval) -> None:
        """Record (or replace) a user's spend approval."""
        await self._write(
            """
            INSERT OR REPLACE INTO approvals
            (user_id, amount, approved, transaction_hash, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                approval.user_id,
                str(approval.amount),
                int(approval.approved),
                approval.transaction_hash,
                _iso(approval.updated_at),
            ),
        )
        self._log.info(
            "approval_recorded",
            user_id=approval.user_id,
            amount=str(approval.amount),
        )

    async def get_approval(self, user_id: str) -> Optional[Approval]:
        row = await self._fetchone("SELECT * FROM approvals WHERE user_id = ?", (user_id,))
        if row is None:
            return None
        return Approval(
            user_id=row["user_id"],
            amount=Decimal(row["amount"]),
            approved=bool(row["approved"]),
            transaction_hash=row["transaction_hash"],
            updated_at=_parse_dt(row["updated_at"]) or datetime.now(timezone.utc),
        )

    # ============ Submission History ============

    async def record_submission(self, record: SubmissionRecord) -> None:
        """Insert or update the history row for a submission record."""
        await self._write(
            """
            INSERT INTO submissions
            (batch_id, user_id, intent_count, total_stake, state, receipt_id,
             reason, submitted_at, resolved_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(batch_id) DO UPDATE SET
                intent_count = excluded.intent_count,
                total_stake = excluded.total_stake,
                state = excluded.state,
                receipt_id = excluded.receipt_id,
                reason = excluded.reason,
                resolved_at = excluded.resolved_at
            """,
            (
                record.batch_id,
                record.user_id,
                len(record.batch),
                str(record.batch.total_stake),
                record.state.value,
                record.receipt_id,
                record.reason,
                _iso(record.submitted_at),
                _iso(record.resolved_at),
            ),
        )

    async def get_submissions(
        self,
        user_id: Optional[str] = None,
        state: Optional[str] = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Submission history rows, newest first."""
        query = "SELECT * FROM submissions WHERE 1=1"
        params: list[Any] = []

        if user_id:
            query += " AND user_id = ?"
            params.append(user_id)

        if state:
            query += " AND state = ?"
            params.append(state)

        query += " ORDER BY submitted_at DESC LIMIT ?"
        params.append(limit)

        rows = await self._fetchall(query, tuple(params))
        return [dict(row) for row in rows]

    # ============ Statistics ============

    async def get_market_stats(self, market_id: str) -> dict[str, Any]:
        """YES/NO stake totals and percentages for a market."""
        rows = await self._fetchall(
            "SELECT side, amount FROM predictions WHERE market_id = ?",
            (market_id,),
        )
        yes_total = sum(
            (Decimal(r["amount"]) for r in rows if r["side"] == Side.YES.value), Decimal("0")
        )
        no_total = sum(
            (Decimal(r["amount"]) for r in rows if r["side"] == Side.NO.value), Decimal("0")
        )
        total = yes_total + no_total
        if total > 0:
            yes_pct = yes_total / total * 100
            no_pct = no_total / total * 100
        else:
            yes_pct = no_pct = Decimal("50")

        return {
            "yes_total": yes_total,
            "no_total": no_total,
            "total": total,
            "yes_percentage": yes_pct,
            "no_percentage": no_pct,
            "total_predictions": len(rows),
        }

    async def get_user_stats(self, user_id: str) -> dict[str, Any]:
        """Total invested and prediction count for a user."""
        rows = await self._fetchall(
            "SELECT amount FROM predictions WHERE user_id = ?",
            (user_id,),
        )
        return {
            "total_invested": sum((Decimal(r["amount"]) for r in rows), Decimal("0")),
            "total_predictions": len(rows),
        }

    async def health_check(self) -> dict[str, Any]:
        """Connection status and table row counts."""
        if not self.is_connected:
            return {"status": "unhealthy", "connected": False}

        counts = {}
        for table in ("markets", "predictions", "positions", "submissions"):
            row = await self._fetchone(f"SELECT COUNT(*) AS n FROM {table}", ())
            counts[table] = row["n"] if row else 0

        return {
            "status": "healthy",
            "connected": True,
            "db_path": str(self._db_path),
            "uptime_seconds": time.time() - self._start_time if self._start_time else 0.0,
            **counts,
        }
