"""
Adapter base — the protocol contract between engine and host tools.

This defines the abstract interface that every adapter must implement.
The engine only talks to adapters through this protocol (via the
registry), never directly to apt, systemctl or ufw.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from hostprov.core.models.action import Action, Receipt


class ExecutionContext(BaseModel):
    """Everything an adapter needs to execute an action."""

    action: Action
    dry_run: bool = False
    run_id: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def operation(self) -> str:
        return self.action.operation


class Adapter(ABC):
    """Abstract base class for all adapters.

    Adapters perform host side effects and return receipts.
    They NEVER raise exceptions — failures are captured in the Receipt.

    To create a new adapter:
        1. Subclass Adapter
        2. Implement name, operations, is_available, execute
        3. Register it in the AdapterRegistry
    """

    #: Operations this adapter understands, with their required params.
    operations: dict[str, tuple[str, ...]] = {}

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'apt', 'systemd', 'ufw')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this adapter's underlying tool is available.

        Should be fast and never raise.
        """

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the action can be executed.

        The default checks the operation name and its required params
        against ``operations``.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """
        op = context.operation
        if op not in self.operations:
            valid = ", ".join(sorted(self.operations))
            return False, f"Unknown operation '{op}'. Valid: {valid}"
        for param in self.operations[op]:
            if param not in context.params or context.params[param] in (None, "", [], {}):
                return False, f"Missing required param: '{param}'"
        return True, ""

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Execute the action and return a receipt.

        MUST never raise exceptions. All failures are captured
        in the Receipt with status='failed'.
        """

    def receipt_from_run(
        self,
        context: ExecutionContext,
        result: dict[str, Any],
        *,
        busy_markers: tuple[str, ...] = (),
        metadata: dict[str, Any] | None = None,
    ) -> Receipt:
        """Turn a ``run_command`` result dict into a Receipt."""
        meta = {"operation": context.operation, **(metadata or {})}
        if "command" in result:
            meta["command"] = result["command"]

        if result["ok"]:
            return Receipt.success(
                adapter=self.name,
                action_id=context.action.id,
                output=result.get("stdout", "").strip(),
                stderr=result.get("stderr", "").strip(),
                duration_ms=result.get("elapsed_ms", 0),
                metadata=meta,
            )

        stderr = result.get("stderr", "")
        error_kind = None
        if result.get("unavailable"):
            error_kind = "unavailable"
        elif any(marker in stderr for marker in busy_markers):
            error_kind = "busy"

        error = result.get("error", "Command failed")
        if stderr.strip():
            error = f"{error}: {stderr.strip().splitlines()[-1]}"

        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=error,
            error_kind=error_kind,
            output=result.get("stdout", "").strip(),
            stderr=stderr.strip(),
            duration_ms=result.get("elapsed_ms", 0),
            metadata={**meta, "return_code": result.get("return_code")},
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
