"""
Accounts adapter — supplementary group membership.
"""

from __future__ import annotations

import shutil

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.adapters.shell.runner import run_command
from hostprov.core.models.action import Receipt

# /etc/group is guarded by a lock file shared with other shadow tools
LOCK_MARKERS = ("cannot lock /etc/group", "cannot lock /etc/passwd")


class AccountsAdapter(Adapter):
    """Add users to and remove them from groups.

    Operations:
        add_to_group:      user, group   (usermod -aG)
        remove_from_group: user, group   (gpasswd -d) [, tolerate_absent]
    """

    operations = {
        "add_to_group": ("user", "group"),
        "remove_from_group": ("user", "group"),
    }

    @property
    def name(self) -> str:
        return "accounts"

    def is_available(self) -> bool:
        return shutil.which("usermod") is not None and shutil.which("gpasswd") is not None

    def execute(self, context: ExecutionContext) -> Receipt:
        user = context.params["user"]
        group = context.params["group"]

        if context.operation == "add_to_group":
            cmd = ["usermod", "-aG", group, user]
        else:
            cmd = ["gpasswd", "-d", user, group]

        result = run_command(cmd, timeout=30)

        if (
            not result["ok"]
            and context.operation == "remove_from_group"
            and context.action.tolerate_absent
            and "is not a member" in result.get("stderr", "")
        ):
            return Receipt.skip(
                adapter=self.name,
                action_id=context.action.id,
                reason=f"{user} is not a member of {group}",
            )

        return self.receipt_from_run(
            context, result, busy_markers=LOCK_MARKERS, metadata={"user": user, "group": group}
        )
