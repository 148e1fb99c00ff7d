from __future__ import annotations

from pathlib import Path

import pytest

from pagewatch.store import StateStore


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    return StateStore(tmp_path / "state.json")
