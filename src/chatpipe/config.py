"""Central configuration for endpoints, paths and constants."""

import os
from pathlib import Path

# Service endpoint, override with CHATPIPE_BASE_URL
BASE_URL = os.environ.get("CHATPIPE_BASE_URL", "http://localhost:5000")

# Data directory for client-local state, override with CHATPIPE_DATA_DIR
DATA_DIR = Path(os.environ.get("CHATPIPE_DATA_DIR", str(Path.home() / ".chatpipe")))
PREFERENCES_PATH = DATA_DIR / "preferences.json"
SQLITE_PATH = DATA_DIR / "chat.db"

# Seconds before a request (or a silent stream) is treated as failed
REQUEST_TIMEOUT = float(os.environ.get("CHATPIPE_TIMEOUT", "60"))

# Quiet window for notes autosave, in seconds
NOTES_DELAY = float(os.environ.get("CHATPIPE_NOTES_DELAY", "1.0"))

LOG_LEVEL = os.environ.get("CHATPIPE_LOG_LEVEL", "WARNING").upper()

# Wire protocol
FRAME_PREFIX = "data: "
CHAT_PATH = "/api/assistant/chat"
NOTES_PATH = "/api/assistant/notes"

# Pagination
PAGE_SIZE = 50
MAX_HISTORY_PAGES = 10_000  # Hard stop for the export walk

MAX_MESSAGE_CHARS = 10_000

# Page-1 refreshes a completed entry may stay unconfirmed before it is
# reported as a reconciliation miss
MISS_THRESHOLD = 3
