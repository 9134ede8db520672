"""
Action and Receipt models — the execution contract.

Actions represent requested host mutations. Receipts represent results.
This is the I/O contract between the engine and adapters: the engine
sends Actions, adapters return Receipts. Never exceptions.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Action(BaseModel):
    """A requested operation to be executed by an adapter.

    Actions are declarative: ``adapter`` picks the tool binding,
    ``operation`` picks what it does, ``params`` carry the arguments.
    They are frozen so a Step that owns them stays immutable.
    """

    model_config = ConfigDict(frozen=True)

    id: str                         # unique action identifier
    adapter: str                    # which adapter handles this
    operation: str                  # adapter-specific verb (install, restart, ...)
    params: dict[str, Any] = Field(default_factory=dict)
    description: str = ""

    @property
    def tolerate_absent(self) -> bool:
        """Whether "already absent" counts as success for this action."""
        return bool(self.params.get("tolerate_absent", False))


class Receipt(BaseModel):
    """Result of an adapter execution.

    Receipts capture the full outcome of an action. The adapter
    NEVER raises exceptions — failures are captured here.

    ``error_kind`` classifies failures the engine reacts to:
    ``busy`` (lock held, retry later) and ``unavailable`` (tool missing).
    """

    adapter: str
    action_id: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    stderr: str = ""
    error: str | None = None
    error_kind: Literal["busy", "unavailable"] | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the action succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the action failed."""
        return self.status == "failed"

    @property
    def busy(self) -> bool:
        """Whether the action failed because a shared resource was locked."""
        return self.failed and self.error_kind == "busy"

    @classmethod
    def success(
        cls,
        adapter: str,
        action_id: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="ok",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        adapter: str,
        action_id: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="failed",
            error=error,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        adapter: str,
        action_id: str,
        reason: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a skip receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="skipped",
            output=reason,
            **kwargs,
        )
