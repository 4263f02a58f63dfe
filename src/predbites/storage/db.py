"""DuckDB connection, schema init and write transactions."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import duckdb
import structlog

from predbites.errors import ConcurrentUpdate

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

log = structlog.get_logger(__name__)

SCHEMA_SQL = """
-- Predictions (one row per bite)
CREATE TABLE IF NOT EXISTS predictions (
    id                  VARCHAR PRIMARY KEY,
    title               VARCHAR NOT NULL,
    creator_id          VARCHAR NOT NULL,
    sport_category      VARCHAR,
    match_reference     VARCHAR,
    locks_at            BIGINT NOT NULL,
    status              VARCHAR NOT NULL,
    winning_outcome_id  VARCHAR,
    void_reason         VARCHAR,
    total_pool          DECIMAL(12, 3) NOT NULL DEFAULT 0,
    platform_cut        DECIMAL(12, 3) NOT NULL DEFAULT 0,
    burned_amount       DECIMAL(12, 3) NOT NULL DEFAULT 0,
    reward_pool_amount  DECIMAL(12, 3) NOT NULL DEFAULT 0,
    created_at          BIGINT NOT NULL,
    settled_at          BIGINT,
    settled_by          VARCHAR
);

-- Outcomes (created with their prediction)
CREATE TABLE IF NOT EXISTS prediction_outcomes (
    id              VARCHAR PRIMARY KEY,
    prediction_id   VARCHAR NOT NULL,
    position        INTEGER NOT NULL,
    label           VARCHAR NOT NULL,
    total_staked    DECIMAL(12, 3) NOT NULL DEFAULT 0,
    backer_count    INTEGER NOT NULL DEFAULT 0,
    is_winner       BOOLEAN NOT NULL DEFAULT FALSE
);

-- Stakes (append-only, top-ups are additional rows)
CREATE TABLE IF NOT EXISTS prediction_stakes (
    id              VARCHAR PRIMARY KEY,
    prediction_id   VARCHAR NOT NULL,
    outcome_id      VARCHAR NOT NULL,
    staker_id       VARCHAR NOT NULL,
    amount          DECIMAL(12, 3) NOT NULL,
    payout          DECIMAL(12, 3),
    created_at      BIGINT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_outcomes_prediction ON prediction_outcomes (prediction_id);
CREATE INDEX IF NOT EXISTS idx_stakes_prediction ON prediction_stakes (prediction_id)
"""


def get_connection(db_path: str | Path, read_only: bool = False) -> DuckDBPyConnection:
    """Return a DuckDB connection. Caller must close or use as context manager."""
    if str(db_path) == ":memory:":
        return duckdb.connect(":memory:")
    path = Path(db_path)
    if not read_only:
        path.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(path), read_only=read_only)


def init_schema(conn: DuckDBPyConnection) -> None:
    """Create tables and indexes if they do not exist."""
    sql = "\n".join(line for line in SCHEMA_SQL.splitlines() if not line.lstrip().startswith("--"))
    for stmt in sql.split(";"):
        stmt = stmt.strip()
        if stmt:
            try:
                conn.execute(stmt)
            except duckdb.Error as e:
                if "already exists" not in str(e).lower():
                    raise


class Database:
    """Owns the root DuckDB connection and hands out per-operation cursors.

    DuckDB allows a single writing process, so write transactions are serialized
    in-process with a lock. Reads run on their own cursors without it.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        self._conn = get_connection(db_path)
        init_schema(self._conn)
        self._write_lock = threading.Lock()

    @contextmanager
    def cursor(self) -> Iterator[DuckDBPyConnection]:
        cur = self._conn.cursor()
        try:
            yield cur
        finally:
            cur.close()

    @contextmanager
    def transaction(self) -> Iterator[DuckDBPyConnection]:
        """All-or-nothing write unit. Any exception rolls every statement back."""
        with self._write_lock, self.cursor() as cur:
            cur.begin()
            try:
                yield cur
            except duckdb.TransactionException as e:
                _rollback(cur)
                log.warning("transaction_conflict", error=str(e))
                raise ConcurrentUpdate("Concurrent update detected, retry the request") from e
            except BaseException:
                _rollback(cur)
                raise
            else:
                try:
                    cur.commit()
                except duckdb.TransactionException as e:
                    log.warning("commit_conflict", error=str(e))
                    raise ConcurrentUpdate("Concurrent update detected, retry the request") from e

    def close(self) -> None:
        self._conn.close()


def _rollback(cur: DuckDBPyConnection) -> None:
    try:
        cur.rollback()
    except duckdb.TransactionException as e:
        # Failed statements can leave no active transaction to roll back
        log.debug("rollback_skipped", error=str(e))
