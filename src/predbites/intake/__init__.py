"""Stake intake service."""

from predbites.intake.stakes import StakeIntakeService

__all__ = ["StakeIntakeService"]
