"""
Typed configuration: single source of truth for all hedge-manager settings.

SRP: This module's sole responsibility is loading and validating configuration.
All env-var reads are consolidated here; no other module should call os.getenv().
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

from errors import ConfigurationError

load_dotenv()


def _env(key: str, default: str = "") -> str:
    return os.getenv(key, default)


def _env_bool(key: str, default: str = "false") -> bool:
    return _env(key, default).lower() == "true"


def _env_int(key: str, default: str) -> int:
    return int(_env(key, default))


def _env_float(key: str, default: str) -> float:
    return float(_env(key, default))


# ── Chain ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EthereumConfig:
    """RPC endpoint, contract addresses and deposit-watch timing."""
    rpc_url: str = field(default_factory=lambda: _env("ETH_RPC_URL"))
    private_key: str = field(default_factory=lambda: _env("PRIVATE_KEY"))
    krww_contract_address: str = field(default_factory=lambda: _env("KRWW_CONTRACT_ADDRESS"))
    deposit_contract_address: str = field(default_factory=lambda: _env("DEPOSIT_CONTRACT_ADDRESS"))
    poll_interval_sec: float = field(default_factory=lambda: _env_float("CHAIN_POLL_INTERVAL_SEC", "4"))
    reconcile_interval_sec: float = field(default_factory=lambda: _env_float("RECONCILE_INTERVAL_SEC", "30"))
    backfill_blocks: int = field(default_factory=lambda: _env_int("BACKFILL_BLOCKS", "100"))
    max_log_range: int = field(default_factory=lambda: _env_int("LOG_QUERY_MAX_BLOCKS", "2000"))


# ── Venue credentials ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BinanceConfig:
    api_key: str = field(default_factory=lambda: _env("BINANCE_API_KEY"))
    secret_key: str = field(default_factory=lambda: _env("BINANCE_SECRET_KEY"))
    testnet: bool = field(default_factory=lambda: _env_bool("BINANCE_TESTNET"))


@dataclass(frozen=True)
class BybitConfig:
    api_key: str = field(default_factory=lambda: _env("BYBIT_API_KEY"))
    secret_key: str = field(default_factory=lambda: _env("BYBIT_SECRET_KEY"))
    testnet: bool = field(default_factory=lambda: _env_bool("BYBIT_TESTNET"))


@dataclass(frozen=True)
class CMEConfig:
    api_key: str = field(default_factory=lambda: _env("CME_API_KEY"))
    secret_key: str = field(default_factory=lambda: _env("CME_SECRET_KEY"))
    environment: str = field(default_factory=lambda: _env("CME_ENVIRONMENT", "production"))


@dataclass(frozen=True)
class HyperliquidConfig:
    private_key: str = field(default_factory=lambda: _env("HYPERLIQUID_PRIVATE_KEY"))
    wallet_address: str = field(default_factory=lambda: _env("HYPERLIQUID_WALLET_ADDRESS"))
    testnet: bool = field(default_factory=lambda: _env_bool("HYPERLIQUID_TESTNET"))


# ── Infrastructure ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RedisConfig:
    """Redis connection settings."""
    url: str = field(default_factory=lambda: _env("REDIS_URL", "redis://localhost:6379"))


@dataclass(frozen=True)
class ServerConfig:
    host: str = field(default_factory=lambda: _env("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("PORT", "3000"))


@dataclass(frozen=True)
class HedgeConfig:
    """Consumer loop timing and record retention."""
    queue_pop_timeout_sec: int = field(default_factory=lambda: _env_int("HEDGE_QUEUE_TIMEOUT_SEC", "5"))
    error_backoff_sec: float = field(default_factory=lambda: _env_float("HEDGE_ERROR_BACKOFF_SEC", "1"))
    claim_ttl_sec: int = field(default_factory=lambda: _env_int("HEDGE_CLAIM_TTL_SEC", "300"))
    deposit_retention_days: int = 7
    position_retention_days: int = 30


@dataclass(frozen=True)
class LoggingConfig:
    level: str = field(default_factory=lambda: _env("LOG_LEVEL", "INFO").upper())


# ── Top-level aggregate ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class AppConfig:
    """
    Root configuration object: compose all sub-configs.

    Usage:
        cfg = AppConfig()              # loads from env
        print(cfg.ethereum.rpc_url)
        print(cfg.hedge.claim_ttl_sec)
    """
    ethereum: EthereumConfig = field(default_factory=EthereumConfig)
    binance: BinanceConfig = field(default_factory=BinanceConfig)
    bybit: BybitConfig = field(default_factory=BybitConfig)
    cme: CMEConfig = field(default_factory=CMEConfig)
    hyperliquid: HyperliquidConfig = field(default_factory=HyperliquidConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    hedge: HedgeConfig = field(default_factory=HedgeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


REQUIRED_FIELDS = (
    "ethereum.rpc_url",
    "ethereum.private_key",
    "ethereum.deposit_contract_address",
    "binance.api_key",
    "binance.secret_key",
    "hyperliquid.private_key",
    "hyperliquid.wallet_address",
    "bybit.api_key",
    "bybit.secret_key",
)


def validate_config(cfg: AppConfig) -> None:
    """Raise ConfigurationError for the first missing required field."""
    for path in REQUIRED_FIELDS:
        value = cfg
        for part in path.split("."):
            value = getattr(value, part)
        if not value:
            raise ConfigurationError(f"Missing required configuration field: {path}")


# Module-level singleton (immutable, safe to share)
_cfg: AppConfig | None = None


def get_config() -> AppConfig:
    """Get the global immutable config. Created once, never mutated."""
    global _cfg
    if _cfg is None:
        _cfg = AppConfig()
    return _cfg
