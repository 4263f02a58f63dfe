"""TOML config loading and profiles."""

from __future__ import annotations

import logging
import tomllib
from decimal import Decimal
from pathlib import Path
from typing import Any

# Default config search path (project root or cwd)
_CONFIG_DIR = Path(__file__).resolve().parent.parent.parent.parent / "config"
_CWD_CONFIG = Path.cwd() / "config"

DEFAULT_HIVE_ENGINE_NODES = [
    "https://api.hive-engine.com/rpc",
    "https://engine.rishipanthee.com",
    "https://herpc.dtools.dev",
]


def _load_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base. Override values take precedence."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _find_config_dir(config_dir: Path | None = None) -> Path:
    if config_dir is not None:
        return config_dir
    if _CWD_CONFIG.exists():
        return _CWD_CONFIG
    return _CONFIG_DIR


def load_config(profile: str | None = None, config_dir: Path | None = None) -> dict[str, Any]:
    """Load merged config from default.toml and optional profile overlay."""
    config_dir = _find_config_dir(config_dir)
    default_path = config_dir / "default.toml"
    if not default_path.exists():
        return {}
    base = _load_toml(default_path)
    if profile:
        profile_path = config_dir / f"{profile}.toml"
        if profile_path.exists():
            overlay = _load_toml(profile_path)
            base = _deep_merge(base, overlay)
    return base


def get_settings(profile: str | None = None, config_dir: Path | None = None) -> Settings:
    """Return Settings instance from merged config."""
    raw = load_config(profile, config_dir)
    return Settings.from_dict(raw)


class Settings:
    """Application settings from TOML config."""

    def __init__(
        self,
        *,
        storage: dict[str, Any] | None = None,
        stakes: dict[str, Any] | None = None,
        predictions: dict[str, Any] | None = None,
        fees: dict[str, Any] | None = None,
        auth: dict[str, Any] | None = None,
        balances: dict[str, Any] | None = None,
        hive_engine: dict[str, Any] | None = None,
        logging: dict[str, Any] | None = None,
    ):
        self.storage = storage or {}
        self.stakes = stakes or {}
        self.predictions = predictions or {}
        self.fees = fees or {}
        self.auth = auth or {}
        self.balances = balances or {}
        self.hive_engine = hive_engine or {}
        self.logging = logging or {}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Settings:
        return cls(
            storage=raw.get("storage"),
            stakes=raw.get("stakes"),
            predictions=raw.get("predictions"),
            fees=raw.get("fees"),
            auth=raw.get("auth"),
            balances=raw.get("balances"),
            hive_engine=raw.get("hive_engine"),
            logging=raw.get("logging"),
        )

    # Convenience accessors with defaults
    @property
    def db_path(self) -> str:
        return self.storage.get("db_path", "data/predbites.duckdb")

    @property
    def min_stake(self) -> Decimal:
        return Decimal(str(self.stakes.get("min_stake", 10)))

    @property
    def max_stake(self) -> Decimal:
        return Decimal(str(self.stakes.get("max_stake", 1000)))

    @property
    def min_creator_stake(self) -> Decimal:
        return Decimal(str(self.stakes.get("min_creator_stake", self.stakes.get("min_stake", 10))))

    @property
    def min_outcomes(self) -> int:
        return int(self.predictions.get("min_outcomes", 2))

    @property
    def max_outcomes(self) -> int:
        return int(self.predictions.get("max_outcomes", 4))

    @property
    def max_title_length(self) -> int:
        return int(self.predictions.get("max_title_length", 200))

    @property
    def max_outcome_label_length(self) -> int:
        return int(self.predictions.get("max_outcome_label_length", 50))

    @property
    def min_lock_minutes(self) -> int:
        return int(self.predictions.get("min_lock_minutes", 15))

    @property
    def max_lock_days(self) -> int:
        return int(self.predictions.get("max_lock_days", 30))

    @property
    def max_predictions_per_day(self) -> int:
        return int(self.predictions.get("max_predictions_per_day", 5))

    @property
    def odds_fallback(self) -> float:
        return float(self.predictions.get("odds_fallback", 1.0))

    @property
    def zero_pool_policy(self) -> str:
        policy = str(self.predictions.get("zero_pool_policy", "refund")).lower()
        if policy not in ("refund", "reject"):
            raise ValueError(f"Unknown zero_pool_policy: {policy}")
        return policy

    @property
    def platform_fee_pct(self) -> Decimal:
        return Decimal(str(self.fees.get("platform_fee_pct", 0)))

    @property
    def burn_split(self) -> Decimal:
        return Decimal(str(self.fees.get("burn_split", 0.5)))

    @property
    def reward_split(self) -> Decimal:
        return Decimal(str(self.fees.get("reward_split", 0.5)))

    @property
    def admin_accounts(self) -> list[str]:
        return list(self.auth.get("admin_accounts") or [])

    @property
    def balance_provider(self) -> str:
        return self.balances.get("provider", "static")

    @property
    def static_balances(self) -> dict[str, Decimal]:
        return {k: Decimal(str(v)) for k, v in (self.balances.get("static") or {}).items()}

    @property
    def hive_engine_nodes(self) -> list[str]:
        return list(self.hive_engine.get("nodes") or DEFAULT_HIVE_ENGINE_NODES)

    @property
    def token_symbol(self) -> str:
        return self.hive_engine.get("symbol", "MEDALS")

    @property
    def hive_engine_timeout_sec(self) -> float:
        return float(self.hive_engine.get("timeout_sec", 10.0))

    @property
    def hive_engine_max_retries(self) -> int:
        return int(self.hive_engine.get("max_retries", 3))

    @property
    def hive_engine_retry_delay_sec(self) -> float:
        return float(self.hive_engine.get("retry_delay_sec", 1.0))

    @property
    def hive_engine_requests_per_sec(self) -> float:
        return float(self.hive_engine.get("requests_per_sec", 10.0))

    @property
    def logging_level(self) -> str:
        return self.logging.get("level", "INFO").upper()

    @property
    def logging_format(self) -> str:
        return self.logging.get("format", "console")

    @property
    def logging_level_num(self) -> int:
        return getattr(logging, self.logging_level, logging.INFO)


def configure_logging(settings: Settings) -> None:
    """Configure structlog with settings. Call once at application entry."""
    import structlog

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.logging_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(settings.logging_level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
