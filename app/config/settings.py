"""
Application settings.

Loads configuration from environment variables using pydantic-settings.
"""

from loguru import logger
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.config.constants import (
    BLOCKCHAIN_RPC_TIMEOUT,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CHAIN_ID,
    DRAIN_POLL_INTERVAL_SECONDS,
    DRAIN_TIMEOUT_SECONDS,
    RECOVERY_GRACE_SECONDS,
)
from app.config.contracts import TrackedContract, default_contracts


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str
    database_echo: bool = False

    # Redis (for Dramatiq and cancellation cutoffs)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    redis_db: int = 0

    # Ledger RPC
    rpc_url: str = "https://polygon-rpc.com"
    chain_id: int = Field(default=DEFAULT_CHAIN_ID, gt=0)
    rpc_timeout: int = Field(
        default=BLOCKCHAIN_RPC_TIMEOUT, ge=1, description="RPC HTTP timeout in seconds"
    )
    batch_size: int = Field(
        default=DEFAULT_BATCH_SIZE,
        ge=1,
        description="Maximum blocks per eth_getLogs range query",
    )

    # Tracked contracts (JSON list in INDEXED_CONTRACTS)
    indexed_contracts: list[TrackedContract] = Field(
        default_factory=default_contracts
    )

    # Sync cadence
    rearm_delay_seconds: int = Field(
        default=30, ge=1, description="Delay before the next catch-up run"
    )
    monitor_interval_seconds: int = Field(
        default=60, ge=1, description="Poll period once a contract is caught up"
    )
    block_range_max_attempts: int = Field(default=3, ge=1)
    block_range_backoff_seconds: int = Field(default=5, ge=1)
    max_ranges_per_run: int = Field(
        default=100, ge=1, description="Sub-ranges outstanding above the cursor"
    )

    # Lifecycle
    recovery_grace_seconds: float = Field(default=RECOVERY_GRACE_SECONDS, ge=0)
    drain_timeout_seconds: float = Field(default=DRAIN_TIMEOUT_SECONDS, gt=0)
    drain_poll_interval_seconds: float = Field(
        default=DRAIN_POLL_INTERVAL_SECONDS, gt=0
    )

    # Health thresholds
    health_max_sync_lag: int = Field(
        default=1000, ge=0, description="Blocks behind before status is degraded"
    )
    health_max_failed_events: int = Field(
        default=100, ge=0, description="Unresolved failures before status is degraded"
    )

    # Failed event retry pass
    failed_event_max_retries: int = Field(default=5, ge=1)
    failed_event_retry_interval_seconds: int = Field(
        default=600, ge=10, description="Period of the scheduled retry pass"
    )

    # Application
    environment: str = "production"
    log_level: str = "INFO"
    health_check_port: int = Field(
        default=8080, ge=1, le=65535, description="Health check HTTP server port"
    )
    worker_threads: int = Field(default=8, ge=1)

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL."""
        if not v.startswith(("postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError(
                "DATABASE_URL must start with postgresql+asyncpg:// "
                "or sqlite+aiosqlite://"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize log level name."""
        level = v.upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_cadence(self) -> "Settings":
        """Caught-up polling must be slower than the active catch-up cadence."""
        if self.monitor_interval_seconds <= self.rearm_delay_seconds:
            raise ValueError(
                "MONITOR_INTERVAL_SECONDS must be greater than REARM_DELAY_SECONDS"
            )
        return self

    @model_validator(mode="after")
    def validate_contract_chains(self) -> "Settings":
        """Warn about tracked contracts that live on another chain."""
        for contract in self.indexed_contracts:
            if contract.chain_id != self.chain_id:
                logger.warning(
                    f"Tracked contract {contract.address} is configured for chain "
                    f"{contract.chain_id} but the ledger RPC serves chain "
                    f"{self.chain_id}; starting it will be rejected"
                )
        return self


# Global settings instance
settings = Settings()
