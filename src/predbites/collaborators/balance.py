"""Balance collaborator - read-only MEDALS balance lookups.

The core never moves tokens. It only asks how much a staker holds before
accepting a stake.
"""

from __future__ import annotations

import time
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import httpx
import structlog

from predbites.collaborators.rate_limit import TokenBucket, backoff_delay
from predbites.errors import UpstreamError

log = structlog.get_logger(__name__)

CONTRACTS_PATH = "/contracts"


class BalanceProvider(Protocol):
    def get_balance(self, user_id: str) -> Decimal: ...


class StaticBalanceProvider:
    """Balances from a fixed table (config [balances.static] or tests). Unknown users hold 0."""

    def __init__(self, balances: dict[str, Decimal] | None = None) -> None:
        self.balances = {k: Decimal(str(v)) for k, v in (balances or {}).items()}

    def get_balance(self, user_id: str) -> Decimal:
        return self.balances.get(user_id, Decimal("0"))

    def set_balance(self, user_id: str, amount: Decimal | int | str) -> None:
        self.balances[user_id] = Decimal(str(amount))


def parse_quantity(value: Any) -> Decimal:
    """Hive Engine returns quantities as strings ("123.456"). Missing or junk -> 0."""
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


class HiveEngineBalanceClient:
    """Liquid token balance via Hive Engine JSON-RPC (tokens/balances findOne), with node failover."""

    def __init__(
        self,
        nodes: list[str],
        symbol: str = "MEDALS",
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay_sec: float = 1.0,
        requests_per_sec: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not nodes:
            raise ValueError("At least one Hive Engine node is required")
        self.nodes = [n.rstrip("/") for n in nodes]
        self.symbol = symbol
        self.max_retries = max(1, max_retries)
        self.retry_delay_sec = retry_delay_sec
        self._bucket = TokenBucket(rate=requests_per_sec)
        self._client = client or httpx.Client(timeout=timeout)
        self._request_id = 0

    def _find_one(self, node: str, query: dict[str, Any]) -> dict[str, Any] | None:
        self._request_id += 1
        body = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "findOne",
            "params": {"contract": "tokens", "table": "balances", "query": query},
        }
        self._bucket.wait_for_token()
        resp = self._client.post(node + CONTRACTS_PATH, json=body)
        resp.raise_for_status()
        data = resp.json()
        if data.get("error"):
            message = data["error"].get("message", "Unknown RPC error")
            raise httpx.HTTPError(f"RPC error: {message}")
        return data.get("result")

    def get_balance(self, user_id: str) -> Decimal:
        query = {"account": user_id, "symbol": self.symbol}
        last_error: Exception | None = None
        for attempt in range(self.max_retries):
            node = self.nodes[attempt % len(self.nodes)]
            try:
                result = self._find_one(node, query)
                return parse_quantity(result.get("balance")) if result else Decimal("0")
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                log.warning("balance_lookup_failed", node=node, user_id=user_id, attempt=attempt, error=str(e))
                if attempt < self.max_retries - 1:
                    time.sleep(backoff_delay(attempt, self.retry_delay_sec))
        raise UpstreamError(
            "Balance service unavailable, try again shortly",
            {"user_id": user_id, "reason": str(last_error)},
        )

    def close(self) -> None:
        self._client.close()


def build_balance_provider(settings: Any) -> BalanceProvider:
    """Pick the balance collaborator named in config."""
    if settings.balance_provider == "hive_engine":
        return HiveEngineBalanceClient(
            nodes=settings.hive_engine_nodes,
            symbol=settings.token_symbol,
            timeout=settings.hive_engine_timeout_sec,
            max_retries=settings.hive_engine_max_retries,
            retry_delay_sec=settings.hive_engine_retry_delay_sec,
            requests_per_sec=settings.hive_engine_requests_per_sec,
        )
    if settings.balance_provider == "static":
        return StaticBalanceProvider(settings.static_balances)
    raise ValueError(f"Unknown balance provider: {settings.balance_provider}")
