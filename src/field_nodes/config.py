"""
Configuration for the Field Nodes terminal
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file
load_dotenv()

class Config:
    # Paths - resolved from the file location, not cwd
    _config_file = Path(__file__).resolve()
    BASE_DIR = _config_file.parent.parent.parent  # src/field_nodes/config.py -> project root
    DATA_DIR = Path(os.getenv("FIELD_NODES_DATA_DIR", str(BASE_DIR / "data")))
    STORE_PATH = DATA_DIR / "store.json"
    LOCK_FILE = DATA_DIR / "store.lock"
    EVENT_LOG_PATH = DATA_DIR / "events.jsonl"
    EVENT_LOG_ENABLED = os.getenv("EVENT_LOG_ENABLED", "true").lower() == "true"

    # Persisted key names
    APP_PREFIX = "fieldnodes"
    TYPEWRITER_SEEN_KEY = f"{APP_PREFIX}-typewriter-seen"
    LAST_HELP_KEY = f"{APP_PREFIX}-last-help"
    NODE_DRAFT_KEY = "rawNodeDraft"

    # Storage backend selection
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local").lower()  # "local" or "remote"

    # Backend-as-a-service settings (remote variant)
    SUPABASE_URL = os.getenv("SUPABASE_URL", "")
    SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
    REMOTE_TIMEOUT = float(os.getenv("REMOTE_TIMEOUT", "15"))

    # Typewriter cadence (milliseconds)
    TYPEWRITER_START_DELAY_MS = int(os.getenv("TYPEWRITER_START_DELAY_MS", "300"))
    TYPEWRITER_CHAR_DELAY_MS = int(os.getenv("TYPEWRITER_CHAR_DELAY_MS", "20"))
    TYPEWRITER_SPACE_DELAY_MS = int(os.getenv("TYPEWRITER_SPACE_DELAY_MS", "30"))
    TYPEWRITER_EMPTY_LINE_DELAY_MS = int(os.getenv("TYPEWRITER_EMPTY_LINE_DELAY_MS", "50"))
    TYPEWRITER_LINE_PAUSE_MS = int(os.getenv("TYPEWRITER_LINE_PAUSE_MS", "100"))
    TYPEWRITER_JITTER_MS = float(os.getenv("TYPEWRITER_JITTER_MS", "2"))
    TYPEWRITER_REMEMBER_SEEN = os.getenv("TYPEWRITER_REMEMBER_SEEN", "true").lower() == "true"

    # Validation thresholds
    MIN_NAME_LENGTH = 2
    MIN_PASSWORD_LENGTH = 4
    MIN_DRAFT_LENGTH = 10
    BROWSE_PAGE_SIZE = 10

    @property
    def remote_enabled(self) -> bool:
        """True when the backend-as-a-service variant is selected and configured."""
        return self.STORAGE_BACKEND == "remote" and bool(self.SUPABASE_URL)

    def __init__(self):
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)

settings = Config()
