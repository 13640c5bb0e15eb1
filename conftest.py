"""Pytest configuration shared by every test directory."""
import os
import sys

import pytest

# Ensure project root and src/ are importable without an editable install
ROOT = os.path.dirname(os.path.abspath(__file__))
for p in (ROOT, os.path.join(ROOT, "src")):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture(autouse=True)
def _isolated_runtime(tmp_path, monkeypatch):
    """Keep telemetry out of the repo and start every test with default tuning."""
    monkeypatch.setenv("CTXHUB_TELEMETRY_DIR", str(tmp_path / "telemetry"))
    monkeypatch.delenv("CTXHUB_DISABLE_TELEMETRY", raising=False)
    monkeypatch.delenv("CTXHUB_STORAGE_PATH", raising=False)
    monkeypatch.delenv("CTXHUB_AGGREGATOR_MAX_WORKERS", raising=False)
    monkeypatch.delenv("CTXHUB_DESCRIBE_CACHE_SIZE", raising=False)
    yield
