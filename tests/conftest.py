import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep tests away from a developer's .env (real Mongo, real Ollama)."""
    for key in ("DB_MODE", "WEATHERVIS_LOG_STORE_IMPL", "MONGO_URL", "ATLAS_URI", "OLLAMA_BASE_URL", "OLLAMA_MODEL"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def log_store():
    from src.weathervis.infrastructure.log_store import InMemoryLogStore

    return InMemoryLogStore()
