"""
ufw adapter — firewall rule and activation changes.
"""

from __future__ import annotations

import shutil

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.adapters.shell.runner import run_command
from hostprov.core.models.action import Receipt

# ufw and iptables take xtables lock too
LOCK_MARKERS = ("Another app is currently holding the xtables lock", "could not get lock")


class UfwAdapter(Adapter):
    """Manage ufw.

    Operations:
        allow:   port [, comment]
        delete:  port — remove the matching allow rule
        enable:  activate the firewall (non-interactive)
        disable: deactivate the firewall
    """

    operations = {
        "allow": ("port",),
        "delete": ("port",),
        "enable": (),
        "disable": (),
    }

    @property
    def name(self) -> str:
        return "ufw"

    def is_available(self) -> bool:
        return shutil.which("ufw") is not None

    def execute(self, context: ExecutionContext) -> Receipt:
        op = context.operation
        if op == "allow":
            cmd = ["ufw", "allow", context.params["port"]]
            if context.params.get("comment"):
                cmd += ["comment", context.params["comment"]]
        elif op == "delete":
            cmd = ["ufw", "delete", "allow", context.params["port"]]
        elif op == "enable":
            cmd = ["ufw", "--force", "enable"]
        elif op == "disable":
            cmd = ["ufw", "disable"]
        else:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Unknown operation: {op}",
            )

        result = run_command(cmd, timeout=context.params.get("timeout", 60))
        return self.receipt_from_run(context, result, busy_markers=LOCK_MARKERS)
