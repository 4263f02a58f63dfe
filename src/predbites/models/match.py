"""MatchResult - finished fixture used for auto-settlement."""

from pydantic import BaseModel


class MatchResult(BaseModel):
    """Final (or in-progress) state of the fixture a prediction references."""

    home_team: str
    away_team: str
    home_score: int | None = None
    away_score: int | None = None
    status: str = "finished"
    event_id: str | None = None
