# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for splitting budgets, posting cadence, storage
retention, query failover and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_QUERY_NODES = (
    "https://api.hive.blog,"
    "https://api.openhive.network,"
    "https://hive-api.arcange.eu,"
    "https://rpc.ausbit.dev,"
    "https://api.hivekings.com,"
    "https://anyx.io,"
    "https://rpc.ecency.com,"
    "https://api.deathwing.me,"
    "https://hive.roelandp.nl"
)


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Splitting ===
    ledger_body_limit_bytes: int = 64 * 1024
    safe_chunk_size_bytes: int = 58 * 1024
    metadata_overhead_bytes: int = 2 * 1024
    min_chunk_size_bytes: int = 10 * 1024
    max_parts: int = 100
    size_overhead_percent: int = 3
    boundary_algorithm: str = "paragraph-aware-v1"

    # === Posting ===
    retry_max_attempts: int = 3
    retry_backoff_delays: str = "1,3,9"
    cooldown_units: int = 20
    time_unit_s: float = 1.0
    posting_lock_expiry_s: int = 300
    identity_tag: str = "archivedcontenthaf"
    app_name: str = "archive/1.0"
    default_parent_tag: str = "archive"

    # === Storage ===
    storage_backend: Literal["json", "sqlite", "tiered"] = "tiered"
    storage_root: Path = Path("~/.partledger/state")
    storage_tier_threshold_bytes: int = 64 * 1024
    storage_capacity_bytes: int = 50 * 1024 * 1024
    retention_incomplete_days: int = 14
    retention_completed_days: int = 7
    retention_failed_days: int = 30
    quota_warning_ratio: float = 0.8
    quota_critical_ratio: float = 0.95
    emergency_incomplete_days: int = 7

    # === Query / failover ===
    query_nodes: str = DEFAULT_QUERY_NODES
    query_max_retries: int = 2
    query_timeout_s: float = 5.0
    query_retry_base_s: float = 0.1
    query_retry_max_s: float = 1.0
    query_max_items: int = 1000
    query_page_limit: int = 20
    query_max_pages: int = 5

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path = Path("~/.partledger/logs/partledger.log")
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("retry_max_attempts", "cooldown_units", "max_parts")
    @classmethod
    def validate_positive(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("time_unit_s", "query_timeout_s")
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:  # noqa: N805
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.metadata_overhead_bytes >= self.safe_chunk_size_bytes:
            errors.append(
                "METADATA_OVERHEAD_BYTES must be < SAFE_CHUNK_SIZE_BYTES"
            )
        elif self.min_chunk_size_bytes >= self.usable_chunk_bytes:
            errors.append(
                "MIN_CHUNK_SIZE_BYTES must be < usable chunk budget"
            )

        if self.safe_chunk_size_bytes > self.ledger_body_limit_bytes:
            errors.append(
                "SAFE_CHUNK_SIZE_BYTES must not exceed LEDGER_BODY_LIMIT_BYTES"
            )

        try:
            delays = self.retry_backoff_delays_list
        except ValueError:
            errors.append("RETRY_BACKOFF_DELAYS must be comma-separated numbers")
        else:
            if not delays:
                errors.append("RETRY_BACKOFF_DELAYS must not be empty")
            elif any(d < 0 for d in delays):
                errors.append("RETRY_BACKOFF_DELAYS must be non-negative")

        if not 0 < self.quota_warning_ratio < self.quota_critical_ratio <= 1:
            errors.append(
                "QUOTA ratios must satisfy 0 < WARNING < CRITICAL <= 1"
            )

        if not self.query_nodes_list:
            errors.append("QUERY_NODES must list at least one node")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def usable_chunk_bytes(self) -> int:
        """Per-part budget once the metadata allowance is reserved."""
        return self.safe_chunk_size_bytes - self.metadata_overhead_bytes

    @property
    def retry_backoff_delays_list(self) -> list[float]:
        """Parse comma-separated backoff delays (in time units)."""
        return [
            float(d.strip()) for d in self.retry_backoff_delays.split(",") if d.strip()
        ]

    @property
    def query_nodes_list(self) -> list[str]:
        """Parse comma-separated query node URLs."""
        return [n.strip() for n in self.query_nodes.split(",") if n.strip()]


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-series config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
