"""
Action dispatch — send one action through the registry, retrying busy locks.

Turns receipts into exceptions at the step boundary:

    busy receipt, attempts left  → wait (backoff + jitter), try again
    busy receipt, exhausted      → ApplyError caused by ResourceBusyError
    any other failed receipt     → ApplyError
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from hostprov.adapters.registry import AdapterRegistry
from hostprov.core.errors import ApplyError, ResourceBusyError
from hostprov.core.models.action import Action, Receipt
from hostprov.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)


def dispatch(
    action: Action,
    registry: AdapterRegistry,
    retry: RetryPolicy,
    sleep: Callable[[float], None],
    receipts: list[Receipt],
    run_id: str | None = None,
) -> Receipt:
    """Execute ``action``; every receipt produced is appended to ``receipts``.

    ``run_id`` is handed to the adapter so edits and restores are scoped
    to the run that made them.

    Raises:
        ApplyError: The action failed, or its resource stayed busy for
            every attempt (the ResourceBusyError is chained as the cause).
    """
    attempt = 0
    while True:
        attempt += 1
        receipt = registry.execute_action(action, run_id=run_id)
        receipts.append(receipt)

        if not receipt.failed:
            return receipt

        if not receipt.busy:
            raise ApplyError(
                f"{action.adapter}:{action.operation} failed: {receipt.error}",
                action_id=action.id,
            )

        if not retry.should_retry(attempt):
            busy = ResourceBusyError(
                action.id,
                attempt,
                f"{action.adapter}:{action.operation} still busy after "
                f"{attempt} attempt(s): {receipt.error}",
            )
            raise ApplyError(str(busy), action_id=action.id) from busy

        delay = retry.delay(attempt)
        logger.warning(
            "%s busy (attempt %d/%d), retrying in %.1fs: %s",
            action.id,
            attempt,
            retry.max_attempts,
            delay,
            receipt.error,
        )
        sleep(delay)
