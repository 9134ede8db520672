"""
systemd adapter — service unit lifecycle via systemctl.
"""

from __future__ import annotations

import shutil

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.adapters.shell.runner import run_command
from hostprov.core.models.action import Receipt

# stderr fragments systemctl prints for units that do not exist
ABSENT_MARKERS = ("not loaded", "does not exist", "not found", "No such file")


class SystemdAdapter(Adapter):
    """Enable, start, stop and restart services.

    Operations (all take ``unit``):
        enable, disable, start, stop, restart, reload

    With ``tolerate_absent`` a missing unit is a skip, not a failure.
    """

    operations = {
        "enable": ("unit",),
        "disable": ("unit",),
        "start": ("unit",),
        "stop": ("unit",),
        "restart": ("unit",),
        "reload": ("unit",),
    }

    @property
    def name(self) -> str:
        return "systemd"

    def is_available(self) -> bool:
        return shutil.which("systemctl") is not None

    def execute(self, context: ExecutionContext) -> Receipt:
        unit = context.params["unit"]
        result = run_command(
            ["systemctl", context.operation, unit],
            timeout=context.params.get("timeout", 120),
        )

        if (
            not result["ok"]
            and context.action.tolerate_absent
            and any(m in result.get("stderr", "") for m in ABSENT_MARKERS)
        ):
            return Receipt.skip(
                adapter=self.name,
                action_id=context.action.id,
                reason=f"Unit {unit} not present",
            )

        return self.receipt_from_run(context, result, metadata={"unit": unit})
