"""
State file persistence — atomic read/write for HostState.

State is stored as JSON in .state/current.json. Writes are atomic
(write to temp file, then rename) to prevent corruption if the
process crashes mid-write.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path

from hostprov.core.models.state import HostState

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
DEFAULT_STATE_FILE = "current.json"


def state_dir_for(config_path: Path | None, override: str | None = None) -> Path:
    """Resolve the state directory.

    ``override`` (settings.state_dir) wins; relative overrides are taken
    from the config file's directory. Without a config file the state
    lives in ``./.state``.
    """
    base = config_path.parent.resolve() if config_path else Path.cwd()
    if override:
        path = Path(override).expanduser()
        return path if path.is_absolute() else base / path
    return base / DEFAULT_STATE_DIR


def load_state(path: Path) -> HostState:
    """Load host state from a JSON file.

    Returns a fresh HostState if the file is missing or unreadable.
    """
    if not path.is_file():
        logger.debug("No state file at %s — starting fresh", path)
        return HostState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = HostState.model_validate(data)
        logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
        return state
    except json.JSONDecodeError as e:
        logger.warning("Corrupt state file %s: %s — starting fresh", path, e)
        return HostState()
    except Exception as e:
        logger.warning("Cannot load state from %s: %s — starting fresh", path, e)
        return HostState()


def save_state(state: HostState, path: Path) -> None:
    """Save host state to a JSON file (atomic write)."""
    state.touch()

    path.parent.mkdir(parents=True, exist_ok=True)

    data = state.model_dump(mode="json")
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

    try:
        fd, tmp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=".state_",
            suffix=".tmp",
        )
        tmp = Path(tmp_path)
        try:
            with open(fd, "w", encoding="utf-8") as f:
                f.write(content)
            tmp.replace(path)
            logger.debug("State saved to %s", path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise
    except Exception as e:
        logger.error("Failed to save state to %s: %s", path, e)
        raise
