"""Prediction Bites - staking, lifecycle and settlement for sports predictions."""

__version__ = "0.1.0"
