"""Outbound collaborators: balance lookups and authorization."""

from predbites.collaborators.auth import AllowListAuthorizer, Authorizer
from predbites.collaborators.balance import (
    BalanceProvider,
    HiveEngineBalanceClient,
    StaticBalanceProvider,
    build_balance_provider,
)

__all__ = [
    "AllowListAuthorizer",
    "Authorizer",
    "BalanceProvider",
    "HiveEngineBalanceClient",
    "StaticBalanceProvider",
    "build_balance_provider",
]
