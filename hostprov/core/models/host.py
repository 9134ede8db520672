"""
HostConfig model — the desired state of the host.

Loaded from host.yml, this is configuration data only: which packages,
which ports, which jail thresholds, which sshd directives. The catalog
turns it into Steps; nothing in the engine reads it directly.

Defaults reproduce the classic Ubuntu server bootstrap (baseline
tooling, Docker CE, ufw with SSH/HTTP/HTTPS, fail2ban sshd jail,
no root or password SSH logins).
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator

from hostprov.core.models.step import Criticality

_PORT_RE = re.compile(r"^\d{1,5}(:\d{1,5})?(/(tcp|udp))?$")
_DURATION_RE = re.compile(r"^-?\d+[smhdw]?$")


class PortRule(BaseModel):
    """A firewall allow rule, e.g. ``22/tcp``."""

    port: str
    comment: str = ""
    criticality: Criticality = Criticality.FATAL

    @field_validator("port", mode="before")
    @classmethod
    def _normalise_port(cls, value: object) -> str:
        text = str(value).strip()
        if not _PORT_RE.match(text):
            raise ValueError(f"Invalid port spec '{text}' (expected e.g. 22/tcp or 6000:6007/udp)")
        return text


class ContainerRuntime(BaseModel):
    """Docker CE from the upstream apt repository."""

    enabled: bool = True
    key_url: str = "https://download.docker.com/linux/ubuntu/gpg"
    keyring: str = "/usr/share/keyrings/docker-archive-keyring.gpg"
    repo_url: str = "https://download.docker.com/linux/ubuntu"
    channel: str = "stable"
    sources_file: str = "/etc/apt/sources.list.d/docker.list"
    architecture: str | None = None     # None → ask dpkg
    codename: str | None = None         # None → ask the distro
    conflicting_packages: list[str] = Field(
        default_factory=lambda: ["docker", "docker-engine", "docker.io", "containerd", "runc"]
    )
    packages: list[str] = Field(
        default_factory=lambda: [
            "docker-ce",
            "docker-ce-cli",
            "containerd.io",
            "docker-compose-plugin",
        ]
    )
    group: str = "docker"
    service: str = "docker"


class FirewallConfig(BaseModel):
    """ufw allow rules and activation."""

    enabled: bool = True
    activate: bool = True
    ports: list[PortRule] = Field(
        default_factory=lambda: [
            PortRule(port="22/tcp", comment="SSH"),
            PortRule(port="80/tcp", comment="HTTP"),
            PortRule(port="443/tcp", comment="HTTPS"),
            PortRule(port="81/tcp", comment="Alternative HTTP", criticality=Criticality.ADVISORY),
        ]
    )

    @field_validator("ports", mode="before")
    @classmethod
    def _accept_bare_ports(cls, value: object) -> object:
        # Allow "- 22/tcp" shorthand alongside full mappings
        if isinstance(value, list):
            return [{"port": v} if isinstance(v, (str, int)) else v for v in value]
        return value


class Jail(BaseModel):
    """One fail2ban jail section."""

    name: str
    enabled: bool = True
    port: str = ""
    filter: str = ""
    logpath: str = ""
    maxretry: int | None = None


class Fail2banConfig(BaseModel):
    """fail2ban jail.local contents."""

    enabled: bool = True
    jail_path: str = "/etc/fail2ban/jail.local"
    service: str = "fail2ban"
    bantime: str = "1h"
    findtime: str = "10m"
    maxretry: int = 5
    jails: list[Jail] = Field(
        default_factory=lambda: [
            Jail(
                name="sshd",
                port="ssh",
                filter="sshd",
                logpath="%(sshd_log)s",
                maxretry=3,
            )
        ]
    )

    @field_validator("bantime", "findtime")
    @classmethod
    def _check_duration(cls, value: str) -> str:
        if not _DURATION_RE.match(value.strip()):
            raise ValueError(f"Invalid fail2ban duration '{value}' (expected e.g. 600, 10m, 1h)")
        return value.strip()

    @field_validator("maxretry")
    @classmethod
    def _check_maxretry(cls, value: int) -> int:
        if value < 1:
            raise ValueError("maxretry must be >= 1")
        return value


class SshConfig(BaseModel):
    """sshd_config directive overrides."""

    enabled: bool = True
    config_path: str = "/etc/ssh/sshd_config"
    service: str = "ssh"
    validate_config: bool = True
    directives: dict[str, str] = Field(
        default_factory=lambda: {
            "PermitRootLogin": "no",
            "PasswordAuthentication": "no",
            "X11Forwarding": "no",
        }
    )

    @field_validator("directives", mode="before")
    @classmethod
    def _stringify(cls, value: object) -> object:
        # YAML turns "no"/"yes" into booleans
        if isinstance(value, dict):
            return {
                str(k): ("yes" if v is True else "no" if v is False else str(v))
                for k, v in value.items()
            }
        return value


class RetrySettings(BaseModel):
    """Backoff policy for busy resources (package manager lock)."""

    max_attempts: int = 5
    base_delay: float = 2.0
    max_delay: float = 30.0


class Settings(BaseModel):
    """Run-level knobs."""

    require_root: bool = True
    timeout_seconds: float | None = None
    rollback_on_timeout: bool = False
    state_dir: str | None = None
    retry: RetrySettings = Field(default_factory=RetrySettings)


class HostConfig(BaseModel):
    """Root configuration — loaded from host.yml.

    If something isn't declared here (or defaulted), the catalog
    won't build a step for it.
    """

    version: int = 1

    packages: list[str] = Field(
        default_factory=lambda: [
            "curl",
            "apt-transport-https",
            "ca-certificates",
            "software-properties-common",
            "gnupg",
            "lsb-release",
            "ufw",
            "fail2ban",
        ]
    )
    container: ContainerRuntime = Field(default_factory=ContainerRuntime)
    firewall: FirewallConfig = Field(default_factory=FirewallConfig)
    fail2ban: Fail2banConfig = Field(default_factory=Fail2banConfig)
    ssh: SshConfig = Field(default_factory=SshConfig)
    settings: Settings = Field(default_factory=Settings)

    def port_rule(self, port: str) -> PortRule | None:
        """Look up a firewall rule by port spec."""
        for rule in self.firewall.ports:
            if rule.port == port:
                return rule
        return None
