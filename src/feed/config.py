"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class ChainSettings(BaseSettings):
    """Solana RPC connection settings."""

    model_config = SettingsConfigDict(env_prefix="CHAIN_")

    rpc_url: str = "https://api.devnet.solana.com"
    program_address: str = "ip6SLxttjbSrQggmM2SH5RZXhWKq3onmkzj3kExoceN"
    commitment: Literal["processed", "confirmed", "finalized"] = "confirmed"
    request_timeout: float = 60.0  # seconds, per RPC request


class FetchSettings(BaseSettings):
    """Retry and batching parameters for remote calls."""

    model_config = SettingsConfigDict(env_prefix="FETCH_")

    max_retries: int = 3  # total attempts for a rate-limited call
    retry_base_delay: float = 1.0  # seconds; doubles per attempt
    batch_delay: float = 0.2  # seconds between transaction batches


class IngestionSettings(BaseSettings):
    """Refresh cadence, retrieval ceilings and trade decoding parameters.

    Pool subjects walk a long history (1000 signatures, first 100 scanned in
    batches of 10). The global program feed walks a short one (50
    signatures, first 20 scanned in batches of 5).
    All fields configurable via INGEST_ environment variable prefix.
    """

    model_config = SettingsConfigDict(env_prefix="INGEST_")

    refresh_interval: float = 30.0  # seconds between scheduled refreshes
    subjects: list[str] = []  # token mints / pool addresses tracked at startup
    track_feed: bool = True

    # Pool subject retrieval profile
    pool_signature_limit: int = 1000
    pool_scan_limit: int = 100
    pool_batch_size: int = 10

    # Global feed retrieval profile
    feed_signature_limit: int = 50
    feed_scan_limit: int = 20
    feed_batch_size: int = 5

    # Aggregation and retention
    candle_width_seconds: int = 3600
    max_trades: int = 50  # trades kept in a snapshot, newest first

    # Heuristic amount decoding
    token_decimals: int = 6
    estimate_multiplier: Decimal = Decimal("1000000")


class PoolSettings(BaseSettings):
    """Pool discovery behaviour."""

    model_config = SettingsConfigDict(env_prefix="POOLS_")

    verify_discriminator: bool = False  # reject records whose first 8 bytes differ
    check_balances: bool = True  # read base vault balance to derive is_active
    balance_batch_size: int = 5


class CacheSettings(BaseSettings):
    """TTL cache for derived views."""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    enabled: bool = True
    default_ttl: float = 300.0  # 5 minutes
    pools_ttl: float = 60.0
    snapshot_ttl: float = 120.0


class ApiSettings(BaseSettings):
    """Read API server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = "0.0.0.0"
    port: int = 8080
    enabled: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    chain: ChainSettings = ChainSettings()
    fetch: FetchSettings = FetchSettings()
    ingestion: IngestionSettings = IngestionSettings()
    pools: PoolSettings = PoolSettings()
    cache: CacheSettings = CacheSettings()
    api: ApiSettings = ApiSettings()
