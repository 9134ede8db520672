"""
In-memory host — a complete fake of the mutable host state.

MemoryHost holds packages, services, firewall rules, files and
accounts in plain dicts. MemoryProbe answers fact queries from it,
and the memory adapters (hostprov.adapters.memory) mutate it. Together
they let the engine run a full plan with no real host.

``unavailable`` lists query names that should raise
ProbeUnavailableError, to simulate a missing tool.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from hostprov.core.errors import ProbeUnavailableError
from hostprov.core.facts.base import FactProbe


@dataclass
class ServiceState:
    """Boot and run state of one service unit."""

    enabled: bool = False
    active: bool = False
    restarts: int = 0


@dataclass
class MemoryHost:
    """Mutable in-memory host state."""

    packages: dict[str, str] = field(default_factory=dict)          # name → version
    available_packages: dict[str, str] = field(default_factory=dict)  # installable name → version
    services: dict[str, ServiceState] = field(default_factory=dict)
    firewall_enabled: bool = False
    firewall_rules: list[str] = field(default_factory=list)
    files: dict[str, str] = field(default_factory=dict)
    users: dict[str, set[str]] = field(default_factory=dict)        # user → groups
    commands: set[str] = field(default_factory=lambda: {"sh"})
    root: bool = True
    arch: str = "amd64"
    release_codename: str = "jammy"
    unavailable: set[str] = field(default_factory=set)
    rejected_configs: set[str] = field(default_factory=set)   # paths validators refuse

    @classmethod
    def ubuntu(cls, *users: str) -> MemoryHost:
        """A fresh Ubuntu-like host with an sshd_config and the given accounts."""
        host = cls(
            packages={"openssh-server": "1:8.9p1-3ubuntu0.6"},
            services={"ssh": ServiceState(enabled=True, active=True)},
            files={
                "/etc/ssh/sshd_config": (
                    "Include /etc/ssh/sshd_config.d/*.conf\n"
                    "#PermitRootLogin prohibit-password\n"
                    "#PasswordAuthentication yes\n"
                    "X11Forwarding yes\n"
                    "UsePAM yes\n"
                ),
            },
            commands={
                "sh", "apt-get", "dpkg", "systemctl", "ufw", "usermod", "gpasswd", "curl", "sshd",
            },
        )
        for user in users:
            host.users[user] = {user}
        return host

    def installable(self, name: str) -> bool:
        """Whether apt could install ``name`` (unknown names are installable
        unless ``available_packages`` is populated)."""
        return not self.available_packages or name in self.available_packages

    def service(self, name: str) -> ServiceState:
        return self.services.setdefault(name, ServiceState())


class MemoryProbe(FactProbe):
    """FactProbe that reads a MemoryHost."""

    def __init__(self, host: MemoryHost):
        self.host = host
        self.queries: list[str] = []

    def _record(self, query: str) -> None:
        self.queries.append(query)
        name = query.split("(", 1)[0]
        if name in self.host.unavailable or query in self.host.unavailable:
            raise ProbeUnavailableError(query, "simulated missing tool")

    def package_version(self, name: str) -> str | None:
        self._record(f"package_version({name})")
        return self.host.packages.get(name)

    def service_active(self, name: str) -> bool:
        self._record(f"service_active({name})")
        svc = self.host.services.get(name)
        return bool(svc and svc.active)

    def service_enabled(self, name: str) -> bool:
        self._record(f"service_enabled({name})")
        svc = self.host.services.get(name)
        return bool(svc and svc.enabled)

    def firewall_active(self) -> bool:
        self._record("firewall_active()")
        return self.host.firewall_enabled

    def firewall_rule_exists(self, port: str) -> bool:
        self._record(f"firewall_rule_exists({port})")
        return port in self.host.firewall_rules

    def read_file(self, path: str) -> str | None:
        self._record(f"read_file({path})")
        return self.host.files.get(path)

    def user_exists(self, name: str) -> bool:
        self._record(f"user_exists({name})")
        return name in self.host.users

    def user_groups(self, name: str) -> set[str]:
        self._record(f"user_groups({name})")
        return set(self.host.users.get(name, set()))

    def command_exists(self, name: str) -> bool:
        self._record(f"command_exists({name})")
        return name in self.host.commands

    def is_root(self) -> bool:
        self._record("is_root()")
        return self.host.root

    def architecture(self) -> str:
        self._record("architecture()")
        return self.host.arch

    def codename(self) -> str:
        self._record("codename()")
        return self.host.release_codename
