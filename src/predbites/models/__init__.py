"""Canonical schema (Pydantic) - Prediction, Outcome, Stake, settlement results."""

from predbites.models.match import MatchResult
from predbites.models.prediction import (
    Outcome,
    Prediction,
    PredictionStatus,
    Stake,
)
from predbites.models.settlement import (
    Countdown,
    OutcomeOdds,
    SettlementPayout,
    SettlementResult,
    StakeReceipt,
)

__all__ = [
    "Prediction",
    "PredictionStatus",
    "Outcome",
    "Stake",
    "MatchResult",
    "OutcomeOdds",
    "SettlementPayout",
    "SettlementResult",
    "StakeReceipt",
    "Countdown",
]
