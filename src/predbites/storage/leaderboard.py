"""Leaderboard aggregates over settled predictions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from predbites.models import PredictionStatus

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

SORT_COLUMNS = {
    "profit": "profit DESC, wins DESC",
    "wins": "wins DESC, profit DESC",
    "staked": "total_staked DESC, profit DESC",
}


def prediction_leaderboard(
    conn: DuckDBPyConnection,
    *,
    since_ms: int | None = None,
    sort: str = "profit",
    limit: int = 20,
) -> list[dict[str, Any]]:
    """
    Per-staker totals across SETTLED predictions (optionally settled since since_ms).
    A win is a settled prediction on which the staker received a non-zero payout.
    """
    if sort not in SORT_COLUMNS:
        raise ValueError(f"Unknown leaderboard sort: {sort}")
    params: list[Any] = [PredictionStatus.SETTLED.value]
    window = ""
    if since_ms is not None:
        window = "AND p.settled_at >= ?"
        params.append(since_ms)
    params.append(limit)
    rows = conn.execute(
        f"""
        WITH per_prediction AS (
            SELECT s.staker_id, s.prediction_id,
                   SUM(s.amount) AS staked,
                   SUM(COALESCE(s.payout, 0)) AS paid
            FROM prediction_stakes s
            JOIN predictions p ON p.id = s.prediction_id
            WHERE p.status = ? {window}
            GROUP BY s.staker_id, s.prediction_id
        )
        SELECT staker_id,
               COUNT(*) AS predictions,
               SUM(CASE WHEN paid > 0 THEN 1 ELSE 0 END) AS wins,
               SUM(staked) AS total_staked,
               SUM(paid) AS total_payout,
               SUM(paid) - SUM(staked) AS profit
        FROM per_prediction
        GROUP BY staker_id
        ORDER BY {SORT_COLUMNS[sort]}, staker_id
        LIMIT ?
        """,
        params,
    ).fetchall()
    cols = ["staker_id", "predictions", "wins", "total_staked", "total_payout", "profit"]
    return [dict(zip(cols, r)) for r in rows]
