"""Resolve a winning outcome from a finished match by matching outcome labels."""

from __future__ import annotations

import re

from predbites.models import MatchResult, Outcome

HOME_WIN = "home_win"
AWAY_WIN = "away_win"
DRAW = "draw"

_WIN_SUFFIX = re.compile(r"\s+(to\s+)?wins?$", re.IGNORECASE)


def match_result(match: MatchResult) -> str | None:
    """home_win / away_win / draw for a finished match with scores, else None."""
    if match.status.lower() not in ("finished", "final", "ft"):
        return None
    if match.home_score is None or match.away_score is None:
        return None
    if match.home_score > match.away_score:
        return HOME_WIN
    if match.away_score > match.home_score:
        return AWAY_WIN
    return DRAW


def team_name_matches(label: str, team: str) -> bool:
    """
    "Wolves", "Wolves Win" and "Wolves to Win" all reference "Wolves"; a label also matches a
    team when either contains the other (3+ chars) or the label is one 4+ char word of a
    multi-word team name ("Villa" for "Aston Villa").
    """
    stripped = _WIN_SUFFIX.sub("", label.lower().strip()).strip()
    team = team.lower().strip()
    if not stripped or not team:
        return False
    if stripped == team:
        return True
    if stripped in team and len(stripped) >= 3:
        return True
    if team in stripped and len(team) >= 3:
        return True
    words = team.split()
    if len(words) > 1:
        return any(len(w) >= 4 and stripped == w for w in words)
    return False


def label_matches_result(label: str, result: str, home_team: str, away_team: str) -> bool:
    norm = label.lower().strip()
    if result == DRAW and norm in ("draw", "tie", "draws"):
        return True
    if result == HOME_WIN and norm in ("home win", "home"):
        return True
    if result == AWAY_WIN and norm in ("away win", "away"):
        return True
    winner = home_team if result == HOME_WIN else away_team if result == AWAY_WIN else None
    return winner is not None and team_name_matches(norm, winner)


def resolve_winning_outcome(match: MatchResult, outcomes: list[Outcome]) -> str | None:
    """Winning outcome id, or None when unfinished or when zero/several labels match."""
    result = match_result(match)
    if result is None:
        return None
    matched = [o.id for o in outcomes if label_matches_result(o.label, result, match.home_team, match.away_team)]
    return matched[0] if len(matched) == 1 else None
