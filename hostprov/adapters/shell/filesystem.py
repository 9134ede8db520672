"""
Filesystem adapter — config file writes, edits, backups and restores.

Backups are scoped to a run. The first time a run edits a file, the
file's content at that moment is recorded (and copied to
``<path>.hostprov.bak`` for the operator); later edits in the same run
start from that content, so repeated edits never compound. ``restore``
puts back exactly what the file held before this run, or removes it
if this run created it. A later run takes a fresh backup, so a
rollback never discards changes made between runs.

Storage is pluggable (``LocalFiles`` for the real host, an in-memory
store for tests) so the edit semantics live in one place.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.adapters.shell.runner import run_command
from hostprov.core.models.action import Receipt
from hostprov.core.services.config_text import apply_directives

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".hostprov.bak"


class FileStore(Protocol):
    """Minimal storage interface the filesystem adapter needs."""

    def read(self, path: str) -> str | None: ...

    def write(self, path: str, content: str, mode: int | None = None) -> None: ...

    def remove(self, path: str) -> bool: ...

    def fetch(self, url: str, path: str, dearmor: bool) -> dict[str, Any]: ...

    def check(self, argv: list[str]) -> dict[str, Any]: ...


class LocalFiles:
    """FileStore on the real filesystem. Writes are atomic (temp + rename)."""

    def read(self, path: str) -> str | None:
        try:
            return Path(path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def write(self, path: str, content: str, mode: int | None = None) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        if mode is None and target.exists():
            mode = target.stat().st_mode & 0o7777
        fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        tmp = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            tmp.chmod(mode if mode is not None else 0o644)
            tmp.replace(target)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise

    def remove(self, path: str) -> bool:
        target = Path(path)
        if not target.exists():
            return False
        target.unlink()
        return True

    def fetch(self, url: str, path: str, dearmor: bool) -> dict[str, Any]:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="hostprov-") as tmpdir:
            download = str(Path(tmpdir) / "download")
            result = run_command(["curl", "-fsSL", "-o", download, url], timeout=120)
            if not result["ok"]:
                return result
            if dearmor:
                return run_command(
                    ["gpg", "--batch", "--yes", "--dearmor", "-o", str(target), download],
                    timeout=60,
                )
            target.write_bytes(Path(download).read_bytes())
            target.chmod(0o644)
            return {"ok": True, "stdout": f"Fetched {url} → {target}"}

    def check(self, argv: list[str]) -> dict[str, Any]:
        """Run a config validator (e.g. ``sshd -t -f <path>``)."""
        return run_command(argv, timeout=60)


class FilesystemAdapter(Adapter):
    """File operations with receipts.

    Operations:
        write:          path, content [, mode, backup=True]
        set_directives: path, directives [, validate] — sshd-style keyword
                        overrides; a failing validator argv puts the
                        previous content back
        restore:        path — undo this run's write/set_directives
        remove:         path [, tolerate_absent]
        fetch:          url, path [, dearmor=True]
    """

    operations = {
        "write": ("path", "content"),
        "set_directives": ("path", "directives"),
        "restore": ("path",),
        "remove": ("path",),
        "fetch": ("url", "path"),
    }

    def __init__(self, files: FileStore | None = None):
        self._files = files or LocalFiles()
        # path -> (run_id, content before that run first edited it)
        self._before: dict[str, tuple[str | None, str | None]] = {}

    @property
    def name(self) -> str:
        return "filesystem"

    def is_available(self) -> bool:
        return True

    def execute(self, context: ExecutionContext) -> Receipt:
        op = context.operation
        path = context.params.get("path", "")
        try:
            if op == "write":
                return self._write(context, path)
            if op == "set_directives":
                return self._set_directives(context, path)
            if op == "restore":
                return self._restore(context, path)
            if op == "remove":
                return self._remove(context, path)
            if op == "fetch":
                return self._fetch(context, path)
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Unknown operation: {op}",
            )
        except (OSError, UnicodeDecodeError) as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Filesystem error: {e}",
                metadata={"operation": op, "path": path},
            )

    def _begin_edit(self, ctx: ExecutionContext, path: str) -> str | None:
        """Content of ``path`` before this run first edited it.

        Recorded on the run's first edit of the file and refreshed by
        every later run.
        """
        recorded = self._before.get(path)
        if recorded is not None and recorded[0] == ctx.run_id:
            return recorded[1]

        current = self._files.read(path)
        self._before[path] = (ctx.run_id, current)
        backup = path + BACKUP_SUFFIX
        if current is not None:
            self._files.write(backup, current)
            logger.info("Backed up %s → %s", path, backup)
        else:
            self._files.remove(backup)
        return current

    def _write(self, ctx: ExecutionContext, path: str) -> Receipt:
        content = ctx.params["content"]
        if ctx.params.get("backup", True):
            self._begin_edit(ctx, path)
        self._files.write(path, content, ctx.params.get("mode"))
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=f"Written {len(content)} bytes to {path}",
            metadata={"path": path, "size": len(content)},
        )

    def _set_directives(self, ctx: ExecutionContext, path: str) -> Receipt:
        base = self._begin_edit(ctx, path)
        if base is None:
            return Receipt.failure(
                adapter=self.name,
                action_id=ctx.action.id,
                error=f"File not found: {path}",
            )
        directives = ctx.params["directives"]
        previous = self._files.read(path)
        self._files.write(path, apply_directives(base, directives))

        validator = ctx.params.get("validate")
        if validator:
            result = self._files.check(list(validator))
            if not result["ok"]:
                if previous is not None:
                    self._files.write(path, previous)
                logger.warning("Validator rejected %s; previous content put back", path)
                return self.receipt_from_run(ctx, result, metadata={"path": path, "reverted": True})

        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=f"Set {', '.join(f'{k} {v}' for k, v in directives.items())} in {path}",
            metadata={"path": path, "directives": directives},
        )

    def _restore(self, ctx: ExecutionContext, path: str) -> Receipt:
        recorded = self._before.get(path)
        if recorded is None or recorded[0] != ctx.run_id:
            return Receipt.skip(
                adapter=self.name,
                action_id=ctx.action.id,
                reason=f"{path} was not edited in this run",
            )
        before = recorded[1]
        if before is None:
            removed = self._files.remove(path)
            return Receipt.success(
                adapter=self.name,
                action_id=ctx.action.id,
                output=f"Removed {path} (created in this run)" if removed else f"{path} already absent",
                metadata={"path": path, "removed": removed},
            )
        self._files.write(path, before)
        return Receipt.success(
            adapter=self.name,
            action_id=ctx.action.id,
            output=f"Restored {path} to its content before this run",
            metadata={"path": path, "backup": path + BACKUP_SUFFIX},
        )

    def _remove(self, ctx: ExecutionContext, path: str) -> Receipt:
        if self._files.remove(path):
            return Receipt.success(
                adapter=self.name,
                action_id=ctx.action.id,
                output=f"Removed {path}",
            )
        if ctx.action.tolerate_absent:
            return Receipt.skip(
                adapter=self.name,
                action_id=ctx.action.id,
                reason=f"{path} already absent",
            )
        return Receipt.failure(
            adapter=self.name,
            action_id=ctx.action.id,
            error=f"File not found: {path}",
        )

    def _fetch(self, ctx: ExecutionContext, path: str) -> Receipt:
        url = ctx.params["url"]
        result = self._files.fetch(url, path, bool(ctx.params.get("dearmor", True)))
        return self.receipt_from_run(ctx, result, metadata={"url": url, "path": path})
