"""
Unit tests for run configuration and environment settings.
"""

from datetime import timedelta
from pathlib import Path

import pytest

from legacymigrate.config import (
    DEFAULT_SKIP_LIST,
    ENVIRONMENTS,
    MigrationConfig,
    MigrationSettings,
    PlannerConfig,
)


class TestMigrationConfig:
    """Tests for MigrationConfig."""

    def test_defaults(self) -> None:
        config = MigrationConfig()

        assert config.checkpoint_interval == 10
        assert config.default_sample_limit == 10
        assert config.gateway_auth_required is True
        assert config.accept_missing_delegation is False
        assert config.stuck_after == timedelta(hours=1)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"checkpoint_interval": 0},
            {"upload_delay_s": -1},
            {"default_sample_limit": 0},
        ],
    )
    def test_validation(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            MigrationConfig(**kwargs)

    def test_location_for(self) -> None:
        config = MigrationConfig(location_base_url="https://bucket.example/")

        assert config.location_for("bagshard") == "https://bucket.example/bagshard/bagshard.car"

    def test_to_dict(self) -> None:
        data = MigrationConfig(results_dir=Path("out")).to_dict()

        assert data["stuck_after_s"] == 3600.0
        assert data["results_dir"] == "out"

    def test_frozen(self) -> None:
        config = MigrationConfig()
        with pytest.raises(AttributeError):
            config.checkpoint_interval = 5  # type: ignore[misc]


class TestPlannerConfig:
    """Tests for PlannerConfig."""

    def test_defaults(self) -> None:
        config = PlannerConfig()

        assert config.skip_list == DEFAULT_SKIP_LIST
        assert config.include == ()
        assert config.checkpoint_path == Path("migration-state") / "counting-checkpoint.json"

    @pytest.mark.parametrize(("requested", "actual"), [(0, 1), (4, 4), (25, 10)])
    def test_segments_are_clamped(self, requested: int, actual: int) -> None:
        assert PlannerConfig(segments=requested).segments == actual

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"customer_concurrency": 0},
            {"checkpoint_every_batches": 0},
            {"min_uploads": -1},
        ],
    )
    def test_validation(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            PlannerConfig(**kwargs)


class TestMigrationSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self) -> None:
        settings = MigrationSettings(_env_file=None)

        assert settings.environment == "production"
        assert settings.database_url.startswith("sqlite+aiosqlite://")
        assert settings.preset is ENVIRONMENTS["production"]

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LEGACY_MIGRATE_ENVIRONMENT", "staging")
        monkeypatch.setenv("LEGACY_MIGRATE_CHECKPOINT_INTERVAL", "25")
        monkeypatch.setenv("LEGACY_MIGRATE_ACCEPT_MISSING_DELEGATION", "true")

        settings = MigrationSettings(_env_file=None)

        assert settings.environment == "staging"
        assert settings.checkpoint_interval == 25
        assert settings.accept_missing_delegation is True

    def test_table_names(self) -> None:
        settings = MigrationSettings(_env_file=None, environment="staging")

        assert settings.table_name("upload") == "staging-w3infra-upload"
        assert settings.table_name("blob_registry") == "staging-w3infra-blob-registry"
        with pytest.raises(KeyError):
            settings.table_name("unknown")

    def test_table_prefix_override(self) -> None:
        settings = MigrationSettings(_env_file=None, table_prefix="test")

        assert settings.table_name("store") == "test-store"

    def test_to_migration_config(self) -> None:
        settings = MigrationSettings(
            _env_file=None,
            environment="staging",
            instance_id="3",
            worker_id="7",
            checkpoint_interval=5,
        )

        config = settings.to_migration_config()

        assert config.instance_id == "3"
        assert config.worker_id == "7"
        assert config.checkpoint_interval == 5
        assert config.location_base_url == ENVIRONMENTS["staging"].location_base_url

    def test_location_override(self) -> None:
        settings = MigrationSettings(_env_file=None, location_base_url="https://mirror.example")

        assert settings.to_migration_config().location_base_url == "https://mirror.example"
