"""
Memory adapters — mutate a MemoryHost instead of the real host.

Each adapter mirrors the operations of its real counterpart (same
name, same params) so a plan built for Ubuntu runs unchanged against
a MemoryHost. Together with MemoryProbe this is a complete fake host:
apply changes state, and the next precondition sees the change.

Failure injection is shared across adapters through ``Faults``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.adapters.shell.filesystem import FilesystemAdapter
from hostprov.adapters.system.accounts import AccountsAdapter
from hostprov.adapters.system.apt import AptAdapter
from hostprov.adapters.system.systemd import SystemdAdapter
from hostprov.adapters.system.ufw import UfwAdapter
from hostprov.core.facts.memory import MemoryHost
from hostprov.core.models.action import Receipt

DEFAULT_PACKAGE_VERSION = "1.0-1"


@dataclass
class Faults:
    """Injected failures, keyed by action ID."""

    failures: dict[str, str] = field(default_factory=dict)
    busy: dict[str, int] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)

    def fail(self, action_id: str, error: str = "Simulated failure") -> None:
        self.failures[action_id] = error

    def hold_lock(self, action_id: str, times: int = 1) -> None:
        self.busy[action_id] = times


class MemoryFiles:
    """FileStore over ``MemoryHost.files``."""

    def __init__(self, host: MemoryHost):
        self._host = host

    def read(self, path: str) -> str | None:
        return self._host.files.get(path)

    def write(self, path: str, content: str, mode: int | None = None) -> None:
        self._host.files[path] = content

    def remove(self, path: str) -> bool:
        return self._host.files.pop(path, None) is not None

    def fetch(self, url: str, path: str, dearmor: bool) -> dict[str, Any]:
        kind = "dearmored key" if dearmor else "download"
        self._host.files[path] = f"[{kind} from {url}]\n"
        return {"ok": True, "stdout": f"Fetched {url} → {path}"}

    def check(self, argv: list[str]) -> dict[str, Any]:
        if argv[0] not in self._host.commands:
            return {"ok": False, "unavailable": True, "error": f"'{argv[0]}' not found on PATH"}
        rejected = [a for a in argv if a in self._host.rejected_configs]
        if rejected:
            return {
                "ok": False,
                "error": "Command failed (exit 255)",
                "return_code": 255,
                "stderr": f"{rejected[0]}: line 1: Bad configuration option\n",
            }
        return {"ok": True, "stdout": ""}


class _MemoryAdapter(Adapter):
    """Shared plumbing: fault injection and call recording."""

    adapter_name = ""

    def __init__(self, host: MemoryHost, faults: Faults):
        self.host = host
        self.faults = faults

    @property
    def name(self) -> str:
        return self.adapter_name

    def is_available(self) -> bool:
        return True

    def execute(self, context: ExecutionContext) -> Receipt:
        action_id = context.action.id
        self.faults.calls.append(action_id)

        if self.faults.busy.get(action_id, 0) > 0:
            self.faults.busy[action_id] -= 1
            return Receipt.failure(
                adapter=self.name,
                action_id=action_id,
                error="Could not get lock /var/lib/dpkg/lock-frontend",
                error_kind="busy",
            )
        if action_id in self.faults.failures:
            return Receipt.failure(
                adapter=self.name,
                action_id=action_id,
                error=self.faults.failures[action_id],
            )
        return self._apply(context)

    def _apply(self, context: ExecutionContext) -> Receipt:
        raise NotImplementedError

    def _ok(self, context: ExecutionContext, output: str) -> Receipt:
        return Receipt.success(adapter=self.name, action_id=context.action.id, output=output)

    def _skip(self, context: ExecutionContext, reason: str) -> Receipt:
        return Receipt.skip(adapter=self.name, action_id=context.action.id, reason=reason)

    def _fail(self, context: ExecutionContext, error: str) -> Receipt:
        return Receipt.failure(adapter=self.name, action_id=context.action.id, error=error)


class MemoryApt(_MemoryAdapter):
    adapter_name = "apt"
    operations = AptAdapter.operations

    def _apply(self, context: ExecutionContext) -> Receipt:
        op = context.operation
        if op == "update":
            return self._ok(context, "Reading package lists... Done")

        packages = list(context.params["packages"])
        if op == "install":
            unknown = [p for p in packages if not self.host.installable(p)]
            if unknown:
                return self._fail(context, f"E: Unable to locate package {unknown[0]}")
            for pkg in packages:
                self.host.packages[pkg] = self.host.available_packages.get(
                    pkg, DEFAULT_PACKAGE_VERSION
                )
            return self._ok(context, f"Installed {', '.join(packages)}")

        present = [p for p in packages if p in self.host.packages]
        if not present and context.action.tolerate_absent:
            return self._skip(context, f"None of {', '.join(packages)} installed")
        for pkg in present:
            del self.host.packages[pkg]
        return self._ok(context, f"Removed {', '.join(present) or 'nothing'}")


class MemorySystemd(_MemoryAdapter):
    adapter_name = "systemd"
    operations = SystemdAdapter.operations

    def _apply(self, context: ExecutionContext) -> Receipt:
        unit = context.params["unit"]
        if unit not in self.host.services and context.action.tolerate_absent:
            return self._skip(context, f"Unit {unit} not present")

        svc = self.host.service(unit)
        op = context.operation
        if op == "enable":
            svc.enabled = True
        elif op == "disable":
            svc.enabled = False
        elif op == "start":
            svc.active = True
        elif op == "stop":
            svc.active = False
        elif op in ("restart", "reload"):
            svc.active = True
            svc.restarts += 1
        return self._ok(context, f"systemctl {op} {unit}")


class MemoryUfw(_MemoryAdapter):
    adapter_name = "ufw"
    operations = UfwAdapter.operations

    def _apply(self, context: ExecutionContext) -> Receipt:
        op = context.operation
        rules = self.host.firewall_rules
        if op == "allow":
            port = context.params["port"]
            if port in rules:
                return self._ok(context, "Skipping adding existing rule")
            rules.append(port)
            return self._ok(context, "Rule added")
        if op == "delete":
            port = context.params["port"]
            if port not in rules:
                if context.action.tolerate_absent:
                    return self._skip(context, f"No rule for {port}")
                return self._fail(context, "Could not delete non-existent rule")
            rules.remove(port)
            return self._ok(context, "Rule deleted")
        self.host.firewall_enabled = op == "enable"
        return self._ok(context, f"Firewall is {'active' if op == 'enable' else 'stopped'}")


class MemoryAccounts(_MemoryAdapter):
    adapter_name = "accounts"
    operations = AccountsAdapter.operations

    def _apply(self, context: ExecutionContext) -> Receipt:
        user = context.params["user"]
        group = context.params["group"]
        if user not in self.host.users:
            return self._fail(context, f"usermod: user '{user}' does not exist")

        groups = self.host.users[user]
        if context.operation == "add_to_group":
            groups.add(group)
            return self._ok(context, f"Added {user} to {group}")

        if group not in groups:
            if context.action.tolerate_absent:
                return self._skip(context, f"{user} is not a member of {group}")
            return self._fail(context, f"gpasswd: user '{user}' is not a member of '{group}'")
        groups.discard(group)
        return self._ok(context, f"Removed {user} from {group}")


class MemoryFilesystem(FilesystemAdapter):
    """The real filesystem adapter over MemoryFiles, plus fault injection."""

    def __init__(self, host: MemoryHost, faults: Faults):
        super().__init__(MemoryFiles(host))
        self.faults = faults

    def execute(self, context: ExecutionContext) -> Receipt:
        action_id = context.action.id
        self.faults.calls.append(action_id)
        if action_id in self.faults.failures:
            return Receipt.failure(
                adapter=self.name,
                action_id=action_id,
                error=self.faults.failures[action_id],
            )
        return super().execute(context)


def memory_adapters(host: MemoryHost, faults: Faults | None = None) -> list[Adapter]:
    """One adapter per real adapter name, all backed by ``host``."""
    faults = faults or Faults()
    return [
        MemoryApt(host, faults),
        MemorySystemd(host, faults),
        MemoryUfw(host, faults),
        MemoryAccounts(host, faults),
        MemoryFilesystem(host, faults),
    ]
