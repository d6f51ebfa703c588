"""Shared fixtures."""

import os

import pytest

from schemarunner.config.settings import MigrationConfig


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep MSR_* variables and stray .env files out of every test."""
    for key in list(os.environ):
        if key.upper().startswith("MSR_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def migrations_dir(tmp_path):
    folder = tmp_path / "migrations"
    folder.mkdir()
    return folder


@pytest.fixture
def make_config(migrations_dir):
    """Build a MigrationConfig with zero delays and no console table."""

    def factory(**overrides):
        transaction = {"retry_delay": 0, **overrides.pop("transaction", {})}
        locking = {"retry_delay": 0, **overrides.pop("locking", {})}
        values = {
            "folder": migrations_dir,
            "show_status": False,
            "transaction": transaction,
            "locking": locking,
        }
        values.update(overrides)
        return MigrationConfig(**values)

    return factory
