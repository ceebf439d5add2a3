"""
Versioned serialization of durable diagram state.

Two payload shapes share one schema:
- the persisted state (what autosave writes under the storage key)
- the export document (persisted state plus `title` and `exportedAt`),
  written to and read from diagram files

Incoming payloads are parsed, migrated to the current schema version and then
validated as a whole. A payload that fails any check is rejected entirely;
nothing is ever partially applied.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import StrictStr, ValidationError, model_validator

from .models import DurableState

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"

# version -> function upgrading a payload dict to the next version
MIGRATIONS: dict[str, Callable[[dict], dict]] = {}

_REQUIRED_KEYS = (
    ("version", "version"),
    ("flows", "flows"),
    ("nodeCustomizations", "node_customizations"),
    ("labelCustomizations", "label_customizations"),
    ("settings", "settings"),
)
_REQUIRED_FLOW_KEYS = ("id", "source", "target", "value")
_REQUIRED_SETTINGS_KEYS = ("title", "width", "height")


def _has_key(data: dict, alias: str, name: str) -> bool:
    return alias in data or name in data


def migrate_payload(data: dict) -> dict:
    """Upgrade a payload dict to SCHEMA_VERSION, one version step at a time."""
    version = data.get("version")
    while version != SCHEMA_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise ValueError(f"unsupported schema version: {version!r}")
        data = step(data)
        version = data.get("version")
    return data


class PersistedDiagram(DurableState):
    """Wire form of DurableState: the same fields plus a schema version."""
    version: StrictStr = SCHEMA_VERSION

    @model_validator(mode="before")
    @classmethod
    def check_structure(cls, data: Any) -> Any:
        """Require every top-level section and the key flow/settings fields, then migrate."""
        if not isinstance(data, dict):
            return data  # rejected by normal model validation

        for alias, name in _REQUIRED_KEYS:
            if not _has_key(data, alias, name):
                raise ValueError(f"missing required field: {alias}")
        if not isinstance(data.get("version"), str):
            raise ValueError("version must be a string")

        data = migrate_payload(dict(data))

        flows = data.get("flows")
        if isinstance(flows, list):
            for index, flow in enumerate(flows):
                if not isinstance(flow, dict):
                    continue  # rejected by normal model validation
                for key in _REQUIRED_FLOW_KEYS:
                    if key not in flow:
                        raise ValueError(f"flow {index} is missing {key}")

        settings = data.get("settings")
        if isinstance(settings, dict):
            for key in _REQUIRED_SETTINGS_KEYS:
                if key not in settings:
                    raise ValueError(f"settings is missing {key}")

        return data

    def to_state(self) -> DurableState:
        return DurableState(
            flows=self.flows,
            node_customizations=self.node_customizations,
            label_customizations=self.label_customizations,
            settings=self.settings,
        )


def _parse(payload: Any) -> DurableState:
    """Parse and validate; raises ValueError/TypeError (ValidationError is a ValueError)."""
    if not isinstance(payload, (str, bytes, bytearray)):
        raise TypeError(f"payload must be text, not {type(payload).__name__}")
    data = json.loads(payload)
    return PersistedDiagram.model_validate(data).to_state()


# --- Persisted State ---

def serialize(state: DurableState) -> str:
    """Serialize durable state to JSON text tagged with the schema version."""
    return json.dumps({"version": SCHEMA_VERSION, **state.to_payload()})


def deserialize(payload: Any) -> Optional[DurableState]:
    """
    Parse persisted JSON text back into durable state.

    Returns None when the text is not valid JSON, does not match the schema,
    or carries an unsupported version. Never raises.
    """
    try:
        return _parse(payload)
    except ValidationError as e:
        logger.warning("Invalid persisted state schema (%d errors)", e.error_count())
    except (ValueError, TypeError, RecursionError) as e:
        logger.warning("Failed to deserialize state: %s", e)
    return None


# --- Export / Import ---

@dataclass
class ImportResult:
    """Outcome of importing an export document."""
    success: bool
    state: Optional[DurableState] = None
    error: Optional[str] = None


def export_document(state: DurableState, exported_at: Optional[datetime] = None) -> str:
    """Render durable state as a human-readable export document."""
    exported_at = exported_at or datetime.now(timezone.utc)
    document = {
        "version": SCHEMA_VERSION,
        "title": state.settings.title,
        **state.to_payload(),
        "exportedAt": exported_at.isoformat(),
    }
    return json.dumps(document, indent=2)


def import_document(text: Any) -> ImportResult:
    """Parse and validate an export document, with a user-facing error on failure."""
    try:
        return ImportResult(success=True, state=_parse(text))
    except ValidationError:
        return ImportResult(
            success=False,
            error="Invalid diagram format. The file may be corrupted or from an incompatible version.",
        )
    except (ValueError, TypeError, RecursionError):
        return ImportResult(
            success=False,
            error="Invalid JSON format. Please check the file contents.",
        )


def write_document(path: str | Path, state: DurableState) -> Path:
    """Write an export document to disk, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(export_document(state), encoding="utf-8")
    return path


def read_document(path: str | Path) -> ImportResult:
    """Read an export document from disk. Raises FileNotFoundError if it does not exist."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Diagram file not found: {path}")
    return import_document(path.read_text(encoding="utf-8"))
