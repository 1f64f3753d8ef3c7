import pytest

import stepweave.persistence as persistence


@pytest.fixture(autouse=True)
def _reset_repository(monkeypatch, tmp_path):
    """Isolate the cached repository and configuration for every test."""
    monkeypatch.setattr(persistence, "_repository_instance", None)
    monkeypatch.delenv("STEPWEAVE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("STEPWEAVE_CONFIG", str(tmp_path / "missing-config.yaml"))
