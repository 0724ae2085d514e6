"""
Configuration for the migrator.

All settings live in explicit Pydantic models that are handed to each
component's constructor; nothing is looked up from global state.
"""
import re
from pydantic import BaseModel, Field, field_validator, model_validator

# SQLite's signed 64-bit maximum, used as "no limit" for the id enumeration.
MAX_LIMIT = 2**63 - 1

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_identifier(value: str) -> str:
    if not _IDENTIFIER_RE.match(value):
        raise ValueError(f"'{value}' is not a valid table name")
    return value


class DatabaseConfig(BaseModel):
    db_path: str
    pool_size: int = Field(default=4, ge=1)
    cache_size_kib: int = -16384
    busy_timeout_ms: int = Field(default=5000, ge=0)


class SourceConfig(DatabaseConfig):
    journal_table: str = "journal"
    legacy_snapshot_table: str = "legacy_snapshot"

    @field_validator("journal_table", "legacy_snapshot_table")
    @classmethod
    def _valid_table(cls, value: str) -> str:
        return _check_identifier(value)


class TargetConfig(DatabaseConfig):
    snapshot_table: str = "snapshot"
    progress_table: str = "snapshot_migration_progress"
    create_schema: bool = True

    @field_validator("snapshot_table", "progress_table")
    @classmethod
    def _valid_table(cls, value: str) -> str:
        return _check_identifier(value)


class MigratorConfig(BaseModel):
    source: SourceConfig
    target: TargetConfig
    parallelism: int = Field(default=1, ge=1)
    page_size: int = Field(default=1000, ge=1)
    enumerate_limit: int = Field(default=MAX_LIMIT, ge=1, le=MAX_LIMIT)
    # Full-history runs insert strictly unless the deployment opts into upserts.
    full_history_overwrite: bool = False

    @model_validator(mode="after")
    def _pool_fits_parallelism(self) -> "MigratorConfig":
        # The id enumeration keeps one source connection busy for the whole run.
        if self.source.pool_size < self.parallelism + 1:
            raise ValueError(
                f"source.pool_size ({self.source.pool_size}) must be at least "
                f"parallelism + 1 ({self.parallelism + 1})"
            )
        return self
