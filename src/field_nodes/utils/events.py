"""
Event Logging Utilities

Debug output goes to stderr (stdout belongs to the terminal UI).
Domain events use an append-only JSONL file.
"""

import json
import sys
from datetime import datetime, timezone
from typing import Dict, Any
from ..config import settings

# Event Log Path
EVENT_LOG_PATH = settings.EVENT_LOG_PATH


def log_debug(message: str):
    """Logs diagnostic messages to stderr to keep the terminal screen clean."""
    print(message, file=sys.stderr)


def log_event(event_type: str, data: Dict[str, Any]) -> None:
    """
    Logs an event to append-only JSONL file.

    Args:
        event_type: Type of event (e.g., "NODE_CREATED", "STAGE_CHANGED")
        data: Event data dictionary
    """
    if not settings.EVENT_LOG_ENABLED:
        return

    # Ensure log directory exists
    EVENT_LOG_PATH.parent.mkdir(parents=True, exist_ok=True)

    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event_type,
        "data": data
    }

    try:
        with open(EVENT_LOG_PATH, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False) + "\n")
    except OSError as e:
        log_debug(f"Event logging error: {e}")


def read_events(event_type: str = None) -> list:
    """Reads logged events back, optionally filtered by type. Skips broken lines."""
    if not EVENT_LOG_PATH.exists():
        return []
    events = []
    with open(EVENT_LOG_PATH, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue
            if event_type is None or event.get("event") == event_type:
                events.append(event)
    return events
