"""Pydantic schemas for API request/response consistency and OpenAPI docs."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from predbites.models import OutcomeOdds
from predbites.serialize import PredictionView


# --- Health ---
class HealthResponse(BaseModel):
    status: str = "ok"


# --- Error (consistent shape for 4xx/5xx) ---
class ErrorBody(BaseModel):
    code: str = Field(..., description="Machine-readable code, e.g. not_found, prediction_locked")
    message: str = Field(..., description="Human-readable message")
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: ErrorBody


# --- Requests ---
# Amounts stay loosely typed so the ledger's own parser reports invalid_amount.
class CreatorStakeRequest(BaseModel):
    outcome_index: int
    amount: str | int | float


class CreatePredictionRequest(BaseModel):
    title: str
    outcomes: list[str]
    locks_at: int = Field(..., description="Lock time, ms since epoch")
    sport_category: str | None = None
    match_reference: str | None = None
    creator_stake: CreatorStakeRequest | None = None


class EditPredictionRequest(BaseModel):
    title: str | None = None
    outcomes: list[str] | None = None
    locks_at: int | None = None
    sport_category: str | None = None
    match_reference: str | None = None


class PlaceStakeRequest(BaseModel):
    outcome_id: str
    amount: str | int | float


class SettleRequest(BaseModel):
    winning_outcome_id: str
    confirm: bool = False


class VoidRequest(BaseModel):
    reason: str
    confirm: bool = False


class AutoSettleRequest(BaseModel):
    home_team: str
    away_team: str
    home_score: int | None = None
    away_score: int | None = None
    status: str = "finished"
    event_id: str | None = None


# --- Responses ---
class PredictionsListResponse(BaseModel):
    predictions: list[PredictionView]
    next_cursor: str | None = None


class OddsResponse(BaseModel):
    prediction_id: str
    outcomes: list[OutcomeOdds]


class LeaderboardEntry(BaseModel):
    staker_id: str
    predictions: int
    wins: int
    total_staked: Decimal
    total_payout: Decimal
    profit: Decimal


class LeaderboardResponse(BaseModel):
    sort: str
    period: str
    entries: list[LeaderboardEntry]
