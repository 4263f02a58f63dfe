"""Prediction, outcome and stake persistence."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

from predbites.models import Outcome, Prediction, PredictionStatus, Stake

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

PREDICTION_COLUMNS = [
    "id", "title", "creator_id", "sport_category", "match_reference", "locks_at", "status",
    "winning_outcome_id", "void_reason", "total_pool", "platform_cut", "burned_amount",
    "reward_pool_amount", "created_at", "settled_at", "settled_by",
]
OUTCOME_COLUMNS = ["id", "prediction_id", "position", "label", "total_staked", "backer_count", "is_winner"]
STAKE_COLUMNS = ["id", "prediction_id", "outcome_id", "staker_id", "amount", "payout", "created_at"]

_PREDICTION_SELECT = ", ".join(f"p.{c}" for c in PREDICTION_COLUMNS)


def _dec(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _row_to_outcome(row: tuple) -> Outcome:
    d = dict(zip(OUTCOME_COLUMNS, row))
    return Outcome(
        id=d["id"],
        prediction_id=d["prediction_id"],
        position=d["position"],
        label=d["label"],
        pool=_dec(d["total_staked"]),
        backer_count=d["backer_count"],
        is_winner=bool(d["is_winner"]),
    )


def _row_to_stake(row: tuple) -> Stake:
    d = dict(zip(STAKE_COLUMNS, row))
    return Stake(
        id=d["id"],
        prediction_id=d["prediction_id"],
        outcome_id=d["outcome_id"],
        staker_id=d["staker_id"],
        amount=_dec(d["amount"]),
        payout=_dec(d["payout"]) if d["payout"] is not None else None,
        created_at=d["created_at"],
    )


def _row_to_prediction(row: tuple, stake_count: int, outcomes: list[Outcome]) -> Prediction:
    d = dict(zip(PREDICTION_COLUMNS, row))
    for col in ("total_pool", "platform_cut", "burned_amount", "reward_pool_amount"):
        d[col] = _dec(d[col])
    d["status"] = PredictionStatus(d["status"])
    return Prediction(**d, stake_count=stake_count, outcomes=outcomes)


def insert_prediction(conn: DuckDBPyConnection, prediction: Prediction) -> None:
    """Insert a prediction row and its outcomes."""
    conn.execute(
        """
        INSERT INTO predictions (id, title, creator_id, sport_category, match_reference, locks_at,
                                 status, total_pool, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?)
        """,
        [
            prediction.id,
            prediction.title,
            prediction.creator_id,
            prediction.sport_category,
            prediction.match_reference,
            prediction.locks_at,
            prediction.status.value,
            prediction.created_at,
        ],
    )
    insert_outcomes(conn, prediction.outcomes)


def insert_outcomes(conn: DuckDBPyConnection, outcomes: list[Outcome]) -> None:
    conn.executemany(
        "INSERT INTO prediction_outcomes (id, prediction_id, position, label) VALUES (?, ?, ?, ?)",
        [[o.id, o.prediction_id, o.position, o.label] for o in outcomes],
    )


def get_outcomes(conn: DuckDBPyConnection, prediction_id: str) -> list[Outcome]:
    rows = conn.execute(
        f"SELECT {', '.join(OUTCOME_COLUMNS)} FROM prediction_outcomes WHERE prediction_id = ? ORDER BY position",
        [prediction_id],
    ).fetchall()
    return [_row_to_outcome(r) for r in rows]


def get_prediction(conn: DuckDBPyConnection, prediction_id: str) -> Prediction | None:
    """Load one prediction with its outcomes, or None."""
    row = conn.execute(
        f"""
        SELECT {_PREDICTION_SELECT},
               (SELECT COUNT(*) FROM prediction_stakes s WHERE s.prediction_id = p.id) AS stake_count
        FROM predictions p WHERE p.id = ?
        """,
        [prediction_id],
    ).fetchone()
    if not row:
        return None
    return _row_to_prediction(row[:-1], int(row[-1]), get_outcomes(conn, prediction_id))


def list_predictions(
    conn: DuckDBPyConnection,
    *,
    status: PredictionStatus | None = None,
    sport: str | None = None,
    creator: str | None = None,
    cursor: tuple[int, str] | None = None,
    limit: int = 20,
) -> list[Prediction]:
    """
    Page through predictions. SETTLED listings run newest-created first (keyed on created_at),
    everything else soonest-locking first (keyed on locks_at). Ties on the key are broken by id,
    so the cursor is the (key, id) pair of the previous page's last row. Fetches limit + 1 rows
    so the caller can tell whether another page exists.
    """
    by_locks_at = status != PredictionStatus.SETTLED
    conditions = ["1=1"]
    params: list[Any] = []
    if status is not None:
        conditions.append("p.status = ?")
        params.append(status.value)
    if sport:
        conditions.append("p.sport_category = ?")
        params.append(sport)
    if creator:
        conditions.append("p.creator_id = ?")
        params.append(creator)
    if cursor is not None:
        key, last_id = cursor
        if by_locks_at:
            conditions.append("(p.locks_at > ? OR (p.locks_at = ? AND p.id > ?))")
        else:
            conditions.append("(p.created_at < ? OR (p.created_at = ? AND p.id > ?))")
        params.extend([key, key, last_id])
    order = "p.locks_at ASC, p.id ASC" if by_locks_at else "p.created_at DESC, p.id ASC"
    params.append(limit + 1)
    rows = conn.execute(
        f"""
        SELECT {_PREDICTION_SELECT},
               (SELECT COUNT(*) FROM prediction_stakes s WHERE s.prediction_id = p.id) AS stake_count
        FROM predictions p
        WHERE {" AND ".join(conditions)}
        ORDER BY {order}
        LIMIT ?
        """,
        params,
    ).fetchall()
    return [_row_to_prediction(r[:-1], int(r[-1]), get_outcomes(conn, r[0])) for r in rows]


def count_created_since(conn: DuckDBPyConnection, creator_id: str, since_ms: int) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM predictions WHERE creator_id = ? AND created_at >= ?",
        [creator_id, since_ms],
    ).fetchone()
    return int(row[0])


def update_prediction_fields(conn: DuckDBPyConnection, prediction_id: str, **fields: Any) -> None:
    """Update editable/bookkeeping columns on one prediction."""
    if not fields:
        return
    unknown = set(fields) - set(PREDICTION_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown prediction columns: {sorted(unknown)}")
    assignments = ", ".join(f"{col} = ?" for col in fields)
    values = [v.value if isinstance(v, PredictionStatus) else v for v in fields.values()]
    conn.execute(f"UPDATE predictions SET {assignments} WHERE id = ?", values + [prediction_id])


def replace_outcomes(conn: DuckDBPyConnection, prediction_id: str, outcomes: list[Outcome]) -> None:
    conn.execute("DELETE FROM prediction_outcomes WHERE prediction_id = ?", [prediction_id])
    insert_outcomes(conn, outcomes)


def relabel_outcome(conn: DuckDBPyConnection, outcome_id: str, label: str) -> None:
    conn.execute("UPDATE prediction_outcomes SET label = ? WHERE id = ?", [label, outcome_id])


def delete_prediction(conn: DuckDBPyConnection, prediction_id: str) -> None:
    """Delete a prediction with its outcomes and stakes."""
    conn.execute("DELETE FROM prediction_stakes WHERE prediction_id = ?", [prediction_id])
    conn.execute("DELETE FROM prediction_outcomes WHERE prediction_id = ?", [prediction_id])
    conn.execute("DELETE FROM predictions WHERE id = ?", [prediction_id])


def insert_stake(conn: DuckDBPyConnection, stake: Stake) -> None:
    conn.execute(
        """
        INSERT INTO prediction_stakes (id, prediction_id, outcome_id, staker_id, amount, payout, created_at)
        VALUES (?, ?, ?, ?, ?, NULL, ?)
        """,
        [stake.id, stake.prediction_id, stake.outcome_id, stake.staker_id, stake.amount, stake.created_at],
    )


def get_stakes(
    conn: DuckDBPyConnection,
    prediction_id: str,
    *,
    staker_id: str | None = None,
    outcome_id: str | None = None,
) -> list[Stake]:
    """Stakes for a prediction in placement order, optionally filtered by staker and outcome."""
    conditions = ["prediction_id = ?"]
    params: list[Any] = [prediction_id]
    if staker_id is not None:
        conditions.append("staker_id = ?")
        params.append(staker_id)
    if outcome_id is not None:
        conditions.append("outcome_id = ?")
        params.append(outcome_id)
    rows = conn.execute(
        f"""
        SELECT {', '.join(STAKE_COLUMNS)} FROM prediction_stakes
        WHERE {" AND ".join(conditions)}
        ORDER BY created_at, id
        """,
        params,
    ).fetchall()
    return [_row_to_stake(r) for r in rows]


def set_stake_payouts(conn: DuckDBPyConnection, payouts: list[tuple[str, Decimal]]) -> None:
    """Write payout per stake. Only stakes whose payout is still NULL are touched."""
    for stake_id, payout in payouts:
        conn.execute(
            "UPDATE prediction_stakes SET payout = ? WHERE id = ? AND payout IS NULL",
            [payout, stake_id],
        )


def increment_pools(
    conn: DuckDBPyConnection, prediction_id: str, outcome_id: str, amount: Decimal, new_backer: bool
) -> None:
    """Add amount to an outcome pool and the prediction total in the caller's transaction."""
    conn.execute(
        """
        UPDATE prediction_outcomes
        SET total_staked = total_staked + CAST(? AS DECIMAL(12, 3)),
            backer_count = backer_count + ?
        WHERE id = ? AND prediction_id = ?
        """,
        [amount, 1 if new_backer else 0, outcome_id, prediction_id],
    )
    conn.execute(
        "UPDATE predictions SET total_pool = total_pool + CAST(? AS DECIMAL(12, 3)) WHERE id = ?",
        [amount, prediction_id],
    )


def mark_winner(conn: DuckDBPyConnection, outcome_id: str) -> None:
    conn.execute("UPDATE prediction_outcomes SET is_winner = TRUE WHERE id = ?", [outcome_id])


def compare_and_set_status(
    conn: DuckDBPyConnection,
    prediction_id: str,
    expected: PredictionStatus,
    target: PredictionStatus,
) -> bool:
    """Atomically move status from expected to target. Returns False if status was not expected."""
    rows = conn.execute(
        "UPDATE predictions SET status = ? WHERE id = ? AND status = ? RETURNING id",
        [target.value, prediction_id, expected.value],
    ).fetchall()
    return len(rows) == 1


def lock_expired(conn: DuckDBPyConnection, now_ms: int) -> list[str]:
    """Persist OPEN -> LOCKED for every prediction whose lock time has passed."""
    rows = conn.execute(
        "UPDATE predictions SET status = ? WHERE status = ? AND locks_at <= ? RETURNING id",
        [PredictionStatus.LOCKED.value, PredictionStatus.OPEN.value, now_ms],
    ).fetchall()
    return [r[0] for r in rows]


def pool_totals(conn: DuckDBPyConnection, prediction_id: str) -> dict[str, Decimal]:
    """Total pool, sum of outcome pools and sum of stake amounts for one prediction."""
    row = conn.execute(
        """
        SELECT
            (SELECT total_pool FROM predictions WHERE id = ?),
            (SELECT COALESCE(SUM(total_staked), 0) FROM prediction_outcomes WHERE prediction_id = ?),
            (SELECT COALESCE(SUM(amount), 0) FROM prediction_stakes WHERE prediction_id = ?)
        """,
        [prediction_id, prediction_id, prediction_id],
    ).fetchone()
    return {
        "total_pool": _dec(row[0]),
        "outcome_pools": _dec(row[1]),
        "stakes": _dec(row[2]),
    }
