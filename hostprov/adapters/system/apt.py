"""
APT adapter — package database mutations.

Operations run non-interactively. Lock contention with another apt or
dpkg process is reported as ``error_kind="busy"`` so the engine can
back off and retry instead of failing the step outright.
"""

from __future__ import annotations

import logging
import shutil
import subprocess

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.adapters.shell.runner import run_command
from hostprov.core.models.action import Receipt

logger = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

# stderr fragments apt/dpkg print when the lock is held elsewhere
LOCK_MARKERS = (
    "Could not get lock",
    "Unable to acquire the dpkg frontend lock",
    "Unable to lock the administration directory",
    "is another process using it",
)


def _is_installed(pkg: str) -> bool:
    """dpkg-query check used to narrow remove operations."""
    try:
        r = subprocess.run(
            ["dpkg-query", "-W", "-f=${Status}", pkg],
            capture_output=True, text=True, timeout=10,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError) as exc:
        logger.warning("Cannot check package %s: %s", pkg, exc)
        return True  # let apt-get decide
    return "install ok installed" in r.stdout


class AptAdapter(Adapter):
    """Install, remove and refresh packages with apt-get.

    Operations:
        update:  refresh the package index
        install: packages (list[str])
        remove:  packages (list[str]) [, purge, tolerate_absent]
    """

    operations = {
        "update": (),
        "install": ("packages",),
        "remove": ("packages",),
    }

    @property
    def name(self) -> str:
        return "apt"

    def is_available(self) -> bool:
        return shutil.which("apt-get") is not None

    def execute(self, context: ExecutionContext) -> Receipt:
        op = context.operation
        timeout = context.params.get("timeout", 900)

        if op == "update":
            cmd = ["apt-get", "update", "-y"]
        elif op == "install":
            packages = list(context.params["packages"])
            cmd = ["apt-get", "install", "-y", *packages]
        elif op == "remove":
            packages = list(context.params["packages"])
            if context.action.tolerate_absent:
                present = [p for p in packages if _is_installed(p)]
                if not present:
                    return Receipt.skip(
                        adapter=self.name,
                        action_id=context.action.id,
                        reason=f"None of {', '.join(packages)} installed",
                    )
                packages = present
            verb = "purge" if context.params.get("purge") else "remove"
            cmd = ["apt-get", verb, "-y", *packages]
        else:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Unknown operation: {op}",
            )

        result = run_command(cmd, timeout=timeout, env_overrides=APT_ENV)
        return self.receipt_from_run(context, result, busy_markers=LOCK_MARKERS)
