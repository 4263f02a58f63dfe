"""Pool ledger and pool arithmetic."""

from predbites.ledger.odds import (
    TOKEN_QUANTUM,
    calculate_odds,
    calculate_payout,
    calculate_refund,
    calculate_settlement,
    to_amount,
)
from predbites.ledger.pool import PoolLedger, odds_for

__all__ = [
    "TOKEN_QUANTUM",
    "PoolLedger",
    "calculate_odds",
    "calculate_payout",
    "calculate_refund",
    "calculate_settlement",
    "odds_for",
    "to_amount",
]
