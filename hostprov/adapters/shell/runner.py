"""
Core subprocess runner.

The SINGLE PLACE where ``subprocess.run`` is called for mutating
operations. Logging, environment and error handling are centralised
here; adapters turn the returned dict into a Receipt.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from typing import Any

logger = logging.getLogger(__name__)

# Keep receipts readable: apt output can run to megabytes
_OUTPUT_LIMIT = 4000


def run_command(
    cmd: list[str],
    *,
    timeout: int = 300,
    env_overrides: dict[str, str] | None = None,
    input_text: str | None = None,
) -> dict[str, Any]:
    """Run a command and capture its outcome.

    Args:
        cmd: Command list for ``subprocess.run()``.
        timeout: Seconds before ``TimeoutExpired``.
        env_overrides: Extra env vars (e.g. DEBIAN_FRONTEND).
        input_text: Optional stdin payload.

    Returns:
        ``{"ok": True, "stdout": "...", "stderr": "...", "elapsed_ms": N}``
        on success, ``{"ok": False, "error": "...", ...}`` on failure.
        ``unavailable`` is set when the binary itself is missing.
    """
    env = os.environ.copy()
    if env_overrides:
        env.update(env_overrides)

    logger.debug("Running: %s", " ".join(cmd))
    start = time.monotonic()
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input_text,
            env=env,
        )
    except FileNotFoundError:
        return {
            "ok": False,
            "unavailable": True,
            "command": cmd,
            "error": f"'{cmd[0]}' not found on PATH",
        }
    except subprocess.TimeoutExpired:
        return {"ok": False, "command": cmd, "error": f"Command timed out ({timeout}s)"}
    except OSError as e:
        logger.exception("Subprocess error: %s", cmd)
        return {"ok": False, "command": cmd, "error": str(e)}

    elapsed_ms = int((time.monotonic() - start) * 1000)
    stdout = result.stdout[-_OUTPUT_LIMIT:] if result.stdout else ""
    stderr = result.stderr[-_OUTPUT_LIMIT:] if result.stderr else ""

    if result.returncode == 0:
        return {
            "ok": True,
            "command": cmd,
            "stdout": stdout,
            "stderr": stderr,
            "elapsed_ms": elapsed_ms,
        }

    return {
        "ok": False,
        "command": cmd,
        "error": f"Command failed (exit {result.returncode})",
        "return_code": result.returncode,
        "stdout": stdout,
        "stderr": stderr,
        "elapsed_ms": elapsed_ms,
    }
