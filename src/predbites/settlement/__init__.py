"""Settlement engine and automatic result resolution."""

from predbites.settlement.auto_settle import resolve_winning_outcome
from predbites.settlement.engine import SettlementEngine

__all__ = ["SettlementEngine", "resolve_winning_outcome"]
