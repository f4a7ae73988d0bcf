"""Pytest configuration and shared fixtures"""

import json
import tempfile
from pathlib import Path

import pytest

from taskmaster.config.config import KEY_MAP


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep real API keys and base URLs out of every test"""
    for name in set(KEY_MAP.values()):
        monkeypatch.delenv(name, raising=False)
    for name in ("OLLAMA_BASE_URL", "OPENAI_BASE_URL", "ANTHROPIC_BASE_URL"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def project(temp_dir):
    """A project root holding a .taskmaster directory"""
    (temp_dir / ".taskmaster").mkdir()
    return temp_dir


def write_config(root: Path, data: dict) -> Path:
    path = root / ".taskmaster" / "config.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
    return path


@pytest.fixture
def write_project_config():
    return write_config
