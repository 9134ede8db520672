"""
Adapter registry — central dispatch for all adapter operations.

The engine never talks to adapters directly: every apply and rollback
action goes through ``execute_action``, which resolves the adapter by
name, validates the action, honours dry-run and turns anything an
adapter raises into a failed Receipt.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Adapters by name, plus the single action entry point.

    The real host and the in-memory test host differ only in which
    adapters are registered here.
    """

    def __init__(self) -> None:
        self._adapters: dict[str, Adapter] = {}

    def register(self, adapter: Adapter) -> None:
        name = adapter.name
        if name in self._adapters:
            logger.warning("Replacing adapter: %s", name)
        self._adapters[name] = adapter
        logger.debug("Registered adapter: %s (%s)", name, adapter.__class__.__name__)

    def register_all(self, adapters: list[Adapter]) -> None:
        for adapter in adapters:
            self.register(adapter)

    def get(self, name: str) -> Adapter | None:
        return self._adapters.get(name)

    def list_adapters(self) -> list[str]:
        return list(self._adapters)

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Availability and operations of every registered adapter."""
        status = {}
        for name, adapter in self._adapters.items():
            try:
                available = adapter.is_available()
            except Exception as e:
                logger.debug("Availability check for %s raised: %s", name, e)
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "type": adapter.__class__.__name__,
                "operations": sorted(adapter.operations),
            }
        return status

    def execute_action(
        self,
        action: Action,
        dry_run: bool = False,
        run_id: str | None = None,
    ) -> Receipt:
        """Run ``action`` through its adapter. Never raises.

        A missing adapter yields an ``unavailable`` failure; a dry run
        stops after validation with a skipped receipt.
        """
        adapter = self._adapters.get(action.adapter)
        if adapter is None:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"No adapter registered for '{action.adapter}'",
                error_kind="unavailable",
            )

        context = ExecutionContext(
            action=action, dry_run=dry_run, run_id=run_id, params=action.params
        )

        try:
            is_valid, error_msg = adapter.validate(context)
        except Exception as e:
            is_valid, error_msg = False, f"validator raised: {e}"
        if not is_valid:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Validation failed: {error_msg}",
            )

        if dry_run:
            return Receipt.skip(
                adapter=action.adapter,
                action_id=action.id,
                reason=f"[dry-run] Would run {action.adapter}:{action.operation}",
                metadata={"dry_run": True},
            )

        start = time.monotonic()
        try:
            receipt = adapter.execute(context)
        except Exception as e:
            logger.error("Adapter %s raised on %s: %s", action.adapter, action.id, e)
            receipt = Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Unexpected error: {e}",
            )

        receipt.duration_ms = max(receipt.duration_ms, int((time.monotonic() - start) * 1000))
        return receipt
