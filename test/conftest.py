import pytest

from snapshot_migrator import MigratorConfig


@pytest.fixture
def legacy_path(tmp_path):
    return str(tmp_path / "legacy.db")


@pytest.fixture
def target_path(tmp_path):
    return str(tmp_path / "target.db")


@pytest.fixture
def config(legacy_path, target_path) -> MigratorConfig:
    return MigratorConfig(source={"db_path": legacy_path}, target={"db_path": target_path})
