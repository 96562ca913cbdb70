"""
Configuration for legacymigrate.

Two layers:
- MigrationSettings: process-level settings read from the environment
  (prefix ``LEGACY_MIGRATE_``) and an optional ``.env`` file.
- MigrationConfig / PlannerConfig: immutable run parameters handed to the
  orchestrator and the partition planner.

Example:
    >>> settings = MigrationSettings(environment="staging")
    >>> settings.table_name("upload")
    'staging-w3infra-upload'
    >>> config = settings.to_migration_config()
    >>> config.checkpoint_interval
    10
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class EnvironmentPreset:
    """Per-environment defaults for regions, table prefixes and services."""

    region: str
    table_prefix: str
    location_base_url: str
    indexing_service: str
    content_claims: str
    upload_service: str


ENVIRONMENTS: dict[str, EnvironmentPreset] = {
    "production": EnvironmentPreset(
        region="us-west-2",
        table_prefix="prod-w3infra",
        location_base_url="https://carpark-prod-0.r2.w3s.link",
        indexing_service="https://indexer.storacha.network",
        content_claims="https://claims.web3.storage",
        upload_service="https://up.storacha.network",
    ),
    "staging": EnvironmentPreset(
        region="us-east-2",
        table_prefix="staging-w3infra",
        location_base_url="https://carpark-prod-0.r2.w3s.link",
        indexing_service="https://staging.indexer.storacha.network",
        content_claims="https://staging.claims.web3.storage",
        upload_service="https://staging.up.storacha.network",
    ),
}

TABLE_SUFFIXES = {
    "upload": "upload",
    "blob_registry": "blob-registry",
    "store": "store",
    "allocations": "allocation",
    "consumer": "consumer",
    "subscription": "subscription",
    "delegation": "delegation",
}

DEFAULT_SKIP_LIST: tuple[str, ...] = (
    "did:mailto:mailslurp.biz",
    "did:mailto:mailslurp.com",
    "did:mailto:mailslurp.net",
    "did:mailto:weatherxm.com:weatherxmdev",
    "did:mailto:textile.io:ops+basin",
)


@dataclass(frozen=True)
class MigrationConfig:
    """
    Run parameters for the orchestrator and the step machine.

    Attributes:
        checkpoint_interval: Uploads between space progress checkpoints.
        upload_delay_s: Pause between consecutive uploads of one instance.
        default_sample_limit: Upload limit when no customer/space filter is given.
        instance_id: Instance recorded on new space progress rows.
        worker_id: Worker recorded on new space progress rows.
        gateway_auth_required: Whether GATEWAY_AUTH is part of the pipeline.
        accept_missing_delegation: Treat a gateway skip for a space without a
            delegation chain as acceptable during VERIFY.
        location_base_url: Public URL prefix for shard location claims.
        stuck_after: Staleness threshold for in-progress records.
        results_dir: Directory for per-run results files.

    Example:
        >>> config = MigrationConfig(checkpoint_interval=25)
        >>> config.location_for("bagbaiera")
        'https://carpark-prod-0.r2.w3s.link/bagbaiera/bagbaiera.car'
    """

    checkpoint_interval: int = 10
    upload_delay_s: float = 0.1
    default_sample_limit: int = 10
    instance_id: str = "local"
    worker_id: str = "1"
    gateway_auth_required: bool = True
    accept_missing_delegation: bool = False
    location_base_url: str = ENVIRONMENTS["production"].location_base_url
    stuck_after: timedelta = timedelta(hours=1)
    results_dir: Path = Path("logs")

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.checkpoint_interval < 1:
            raise ValueError(f"checkpoint_interval must be >= 1, got {self.checkpoint_interval}")
        if self.upload_delay_s < 0:
            raise ValueError(f"upload_delay_s must be >= 0, got {self.upload_delay_s}")
        if self.default_sample_limit < 1:
            raise ValueError(
                f"default_sample_limit must be >= 1, got {self.default_sample_limit}"
            )

    def location_for(self, shard: str) -> str:
        """Location URL of a shard in the legacy bucket."""
        return f"{self.location_base_url.rstrip('/')}/{shard}/{shard}.car"

    def to_dict(self) -> dict[str, Any]:
        return {
            "checkpoint_interval": self.checkpoint_interval,
            "upload_delay_s": self.upload_delay_s,
            "default_sample_limit": self.default_sample_limit,
            "instance_id": self.instance_id,
            "worker_id": self.worker_id,
            "gateway_auth_required": self.gateway_auth_required,
            "accept_missing_delegation": self.accept_missing_delegation,
            "location_base_url": self.location_base_url,
            "stuck_after_s": self.stuck_after.total_seconds(),
            "results_dir": str(self.results_dir),
        }


@dataclass(frozen=True)
class PlannerConfig:
    """
    Parameters for the partition planner.

    Attributes:
        segments: Parallel scan segments over the ownership mapping (1-10).
        customer_concurrency: Customers counted concurrently per batch.
        checkpoint_every_batches: Counting batches between checkpoint saves.
        min_uploads: Customers with fewer uploads are dropped.
        skip_list: Customer identifiers (or prefixes) never planned.
        include: Customer identifiers (or prefixes) to restrict planning to.
        assign_batch_size: Customer rows written per progress store batch.
        uploads_per_min_per_worker: Throughput used for time estimates.
        state_dir: Directory for checkpoint and assignment files.
    """

    segments: int = 4
    customer_concurrency: int = 20
    checkpoint_every_batches: int = 10
    min_uploads: int = 0
    skip_list: tuple[str, ...] = DEFAULT_SKIP_LIST
    include: tuple[str, ...] = ()
    assign_batch_size: int = 25
    uploads_per_min_per_worker: int = 27
    state_dir: Path = field(default=Path("migration-state"))

    def __post_init__(self) -> None:
        """Clamp segments and validate the rest."""
        object.__setattr__(self, "segments", max(1, min(10, self.segments)))
        if self.customer_concurrency < 1:
            raise ValueError(
                f"customer_concurrency must be >= 1, got {self.customer_concurrency}"
            )
        if self.checkpoint_every_batches < 1:
            raise ValueError(
                f"checkpoint_every_batches must be >= 1, got {self.checkpoint_every_batches}"
            )
        if self.min_uploads < 0:
            raise ValueError(f"min_uploads must be >= 0, got {self.min_uploads}")

    @property
    def checkpoint_path(self) -> Path:
        return self.state_dir / "counting-checkpoint.json"


class MigrationSettings(BaseSettings):
    """Process settings loaded from ``LEGACY_MIGRATE_*`` environment variables."""

    environment: Literal["production", "staging"] = "production"
    database_url: str = "sqlite+aiosqlite:///migration-progress.db"
    collaborators: str | None = None
    log_level: str = "INFO"
    log_format: str = "%(message)s"
    enable_tracing: bool = True

    instance_id: str = "local"
    worker_id: str = "1"
    checkpoint_interval: int = 10
    upload_delay_s: float = 0.1
    gateway_auth_required: bool = True
    accept_missing_delegation: bool = False
    location_base_url: str | None = None

    results_dir: Path = Path("logs")
    state_dir: Path = Path("migration-state")
    table_prefix: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="LEGACY_MIGRATE_",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def preset(self) -> EnvironmentPreset:
        return ENVIRONMENTS[self.environment]

    def table_name(self, kind: str) -> str:
        """
        Name of a legacy table for the configured environment.

        Args:
            kind: One of the TABLE_SUFFIXES keys.

        Raises:
            KeyError: If kind is not a known table.
        """
        prefix = self.table_prefix or self.preset.table_prefix
        return f"{prefix}-{TABLE_SUFFIXES[kind]}"

    def to_migration_config(self) -> MigrationConfig:
        return MigrationConfig(
            checkpoint_interval=self.checkpoint_interval,
            upload_delay_s=self.upload_delay_s,
            instance_id=self.instance_id,
            worker_id=self.worker_id,
            gateway_auth_required=self.gateway_auth_required,
            accept_missing_delegation=self.accept_missing_delegation,
            location_base_url=self.location_base_url or self.preset.location_base_url,
            results_dir=self.results_dir,
        )


__all__ = [
    "DEFAULT_SKIP_LIST",
    "ENVIRONMENTS",
    "EnvironmentPreset",
    "MigrationConfig",
    "MigrationSettings",
    "PlannerConfig",
    "TABLE_SUFFIXES",
]
