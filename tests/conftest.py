"""
Shared fixtures: events go to a per-test JSONL file instead of the data dir.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from field_nodes.utils import events


@pytest.fixture(autouse=True)
def event_log(tmp_path, monkeypatch):
    path = tmp_path / "events.jsonl"
    monkeypatch.setattr(events, "EVENT_LOG_PATH", path)
    return path
