"""
Runtime configuration.

Values are module-level constants that can be overridden through environment
variables, so the backend, the MCP server and tests all read the same knobs.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


# Persistence
STORAGE_KEY = "sankey-diagram-state"
DATA_DIR = Path(os.environ.get(
    "SANKEY_STUDIO_DATA_DIR",
    str(Path.home() / ".sankey-studio")
))
SAVE_DELAY = _env_float("SANKEY_STUDIO_SAVE_DELAY", 1.0)  # seconds

# History
UNDO_STACK_LIMIT = _env_int("SANKEY_STUDIO_UNDO_LIMIT", 50)

# Interaction
DRAG_THRESHOLD = 5.0  # pixels; shorter movements are clicks
MIN_ZOOM = 0.1
MAX_ZOOM = 5.0

# Server
HOST = os.environ.get("SANKEY_STUDIO_HOST", "127.0.0.1")
PORT = _env_int("SANKEY_STUDIO_PORT", 8765)
API_BASE = os.environ.get("SANKEY_STUDIO_API", f"http://{HOST}:{PORT}/api")
CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
]
