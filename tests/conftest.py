import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

import config  # noqa: E402


@pytest.fixture
def log_file(tmp_path, monkeypatch):
    """Point the move log at a temporary file for the duration of a test."""
    path = tmp_path / "moves.txt"
    monkeypatch.setattr(config, "LOG_FILE", path)
    return path
