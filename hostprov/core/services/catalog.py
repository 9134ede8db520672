"""
Ubuntu server catalog — the stock bootstrap expressed as Steps.

Builds the step set from a HostConfig:

    base-packages                 apt tooling the other steps need
    docker-conflicts-removed      distro docker/containerd packages gone (advisory)
    docker-repo-key               upstream signing key in the keyring
    docker-repo-source            signed apt source for the upstream repo
    docker-packages               Docker CE installed
    docker-group-membership       target account in the docker group
    docker-service                docker enabled and running
    firewall-port:<port>          one ufw allow rule per configured port
    firewall-enabled              ufw active (after every port rule)
    fail2ban-jail                 jail.local rendered, fail2ban restarted
    ssh-hardening                 sshd directives overridden, sshd restarted

Each section can be switched off in config; steps whose section is
off are simply not built. Dependencies on base-packages are dropped
when the package list is empty.
"""

from __future__ import annotations

import logging

from hostprov.core.facts.base import FactProbe
from hostprov.core.models.action import Action
from hostprov.core.models.host import (
    ContainerRuntime,
    Fail2banConfig,
    FirewallConfig,
    HostConfig,
    PortRule,
    SshConfig,
)
from hostprov.core.models.step import Criticality, Step
from hostprov.core.services.config_text import (
    apt_source_line,
    directives_satisfied,
    render_jail_local,
)

logger = logging.getLogger(__name__)

BASE_PACKAGES = "base-packages"
FIREWALL_ENABLED = "firewall-enabled"


def _action(step: str, verb: str, adapter: str, operation: str, description: str = "", **params) -> Action:
    return Action(
        id=f"{step}:{verb}",
        adapter=adapter,
        operation=operation,
        params=params,
        description=description,
    )


def port_step_name(port: str) -> str:
    return f"firewall-port:{port}"


# ── Packages ────────────────────────────────────────────────────


def _base_packages(packages: list[str]) -> Step:
    pkgs = tuple(packages)
    return Step(
        name=BASE_PACKAGES,
        description="Baseline tooling installed",
        check=lambda p: p.packages_installed(pkgs),
        check_label=f"packages {', '.join(pkgs)} installed",
        apply=(
            _action(BASE_PACKAGES, "update", "apt", "update", "Refresh the package index"),
            _action(BASE_PACKAGES, "install", "apt", "install", "Install baseline packages",
                    packages=list(pkgs)),
        ),
        # Removing baseline tooling could break things that predate this run
        rollback=None,
        tags=("packages",),
    )


# ── Container runtime ───────────────────────────────────────────


def _container_steps(
    cfg: ContainerRuntime,
    target: str,
    probe: FactProbe | None,
    base: tuple[str, ...],
) -> list[Step]:
    arch = cfg.architecture or (probe.architecture() if probe else "<architecture>")
    codename = cfg.codename or (probe.codename() if probe else "<codename>")
    source = apt_source_line(cfg.repo_url, codename, cfg.channel, arch=arch, keyring=cfg.keyring)
    conflicts = tuple(cfg.conflicting_packages)
    packages = tuple(cfg.packages)
    steps: list[Step] = []

    if conflicts:
        name = "docker-conflicts-removed"
        steps.append(Step(
            name=name,
            description="Distribution container packages removed",
            check=lambda p: p.packages_absent(conflicts),
            check_label=f"packages {', '.join(conflicts)} absent",
            apply=(
                _action(name, "remove", "apt", "remove", "Remove conflicting packages",
                        packages=list(conflicts), tolerate_absent=True),
            ),
            depends_on=base,
            criticality=Criticality.ADVISORY,
            tags=("docker",),
        ))

    name = "docker-repo-key"
    steps.append(Step(
        name=name,
        description="Docker repository signing key installed",
        check=lambda p: p.file_exists(cfg.keyring),
        check_label=f"{cfg.keyring} exists",
        apply=(
            _action(name, "fetch", "filesystem", "fetch", "Download and dearmor the signing key",
                    url=cfg.key_url, path=cfg.keyring, dearmor=True),
        ),
        rollback=(
            _action(name, "remove", "filesystem", "remove", path=cfg.keyring, tolerate_absent=True),
        ),
        depends_on=base,
        tags=("docker",),
    ))

    name = "docker-repo-source"
    steps.append(Step(
        name=name,
        description="Docker apt repository configured",
        check=lambda p: p.file_contains(cfg.sources_file, source),
        check_label=f"{cfg.sources_file} lists {cfg.repo_url} {codename}",
        apply=(
            _action(name, "write", "filesystem", "write", "Write the apt source",
                    path=cfg.sources_file, content=source + "\n", mode=0o644),
        ),
        rollback=(_action(name, "restore", "filesystem", "restore", path=cfg.sources_file),),
        depends_on=("docker-repo-key",),
        tags=("docker",),
    ))

    name = "docker-packages"
    steps.append(Step(
        name=name,
        description="Docker CE installed",
        check=lambda p: p.packages_installed(packages),
        check_label=f"packages {', '.join(packages)} installed",
        apply=(
            _action(name, "update", "apt", "update", "Refresh the package index"),
            _action(name, "install", "apt", "install", "Install Docker CE", packages=list(packages)),
        ),
        rollback=(
            _action(name, "remove", "apt", "remove", packages=list(packages), tolerate_absent=True),
        ),
        depends_on=("docker-repo-source",) + (("docker-conflicts-removed",) if conflicts else ()),
        tags=("docker",),
    ))

    name = "docker-group-membership"
    steps.append(Step(
        name=name,
        description=f"'{target}' can use docker without sudo",
        check=lambda p: p.user_in_group(target, cfg.group),
        check_label=f"{target} in group {cfg.group}",
        apply=(
            _action(name, "add", "accounts", "add_to_group", user=target, group=cfg.group),
        ),
        rollback=(
            _action(name, "remove", "accounts", "remove_from_group",
                    user=target, group=cfg.group, tolerate_absent=True),
        ),
        depends_on=("docker-packages",),
        note=f"log out and back in for '{cfg.group}' group membership to take effect",
        tags=("docker",),
    ))

    name = "docker-service"
    steps.append(Step(
        name=name,
        description="Docker service enabled and running",
        check=lambda p: p.service_enabled(cfg.service) and p.service_active(cfg.service),
        check_label=f"{cfg.service} enabled and active",
        apply=(
            _action(name, "enable", "systemd", "enable", unit=cfg.service),
            _action(name, "start", "systemd", "start", unit=cfg.service),
        ),
        rollback=(
            _action(name, "stop", "systemd", "stop", unit=cfg.service, tolerate_absent=True),
            _action(name, "disable", "systemd", "disable", unit=cfg.service, tolerate_absent=True),
        ),
        depends_on=("docker-packages",),
        tags=("docker",),
    ))

    return steps


# ── Firewall ────────────────────────────────────────────────────


def _port_step(rule: PortRule, base: tuple[str, ...]) -> Step:
    name = port_step_name(rule.port)
    port = rule.port
    allow = {"port": port}
    if rule.comment:
        allow["comment"] = rule.comment
    return Step(
        name=name,
        description=f"ufw allows {port}" + (f" ({rule.comment})" if rule.comment else ""),
        check=lambda p: p.firewall_rule_exists(port),
        check_label=f"ufw rule for {port}",
        apply=(_action(name, "allow", "ufw", "allow", **allow),),
        rollback=(_action(name, "delete", "ufw", "delete", port=port, tolerate_absent=True),),
        depends_on=base,
        criticality=rule.criticality,
        tags=("firewall",),
    )


def _firewall_steps(cfg: FirewallConfig, base: tuple[str, ...]) -> list[Step]:
    steps = [_port_step(rule, base) for rule in cfg.ports]
    if cfg.activate:
        steps.append(Step(
            name=FIREWALL_ENABLED,
            description="ufw active",
            check=lambda p: p.firewall_active(),
            check_label="ufw status active",
            apply=(_action(FIREWALL_ENABLED, "enable", "ufw", "enable"),),
            rollback=(_action(FIREWALL_ENABLED, "disable", "ufw", "disable"),),
            # Never switch the firewall on before the SSH rule exists
            depends_on=tuple(s.name for s in steps) or base,
            tags=("firewall",),
        ))
    return steps


# ── fail2ban ────────────────────────────────────────────────────


def _fail2ban_step(cfg: Fail2banConfig, base: tuple[str, ...]) -> Step:
    name = "fail2ban-jail"
    content = render_jail_local(cfg)

    def _jail_in_force(p: FactProbe) -> bool:
        return p.file_content_equals(cfg.jail_path, content) and p.service_active(cfg.service)

    return Step(
        name=name,
        description="fail2ban jails configured and running",
        check=_jail_in_force,
        check_label=f"{cfg.jail_path} current and {cfg.service} active",
        apply=(
            _action(name, "write", "filesystem", "write", "Render jail.local",
                    path=cfg.jail_path, content=content, mode=0o644),
            _action(name, "restart", "systemd", "restart", unit=cfg.service),
        ),
        rollback=(
            _action(name, "restore", "filesystem", "restore", path=cfg.jail_path),
            _action(name, "restart", "systemd", "restart", unit=cfg.service, tolerate_absent=True),
        ),
        depends_on=base,
        tags=("fail2ban",),
    )


# ── SSH ─────────────────────────────────────────────────────────


def _ssh_step(cfg: SshConfig, base: tuple[str, ...]) -> Step:
    name = "ssh-hardening"
    directives = dict(cfg.directives)
    edit = {"path": cfg.config_path, "directives": directives}
    if cfg.validate_config:
        edit["validate"] = ["sshd", "-t", "-f", cfg.config_path]

    def _hardened(p: FactProbe) -> bool:
        return directives_satisfied(p.read_file(cfg.config_path), directives)

    def _hardened_and_running(p: FactProbe) -> bool:
        return _hardened(p) and p.service_active(cfg.service)

    return Step(
        name=name,
        description="sshd hardened",
        check=_hardened,
        verify=_hardened_and_running,
        check_label=", ".join(f"{k} {v}" for k, v in directives.items()) + f" in {cfg.config_path}",
        apply=(
            _action(name, "edit", "filesystem", "set_directives", "Override sshd directives", **edit),
            _action(name, "restart", "systemd", "restart", unit=cfg.service),
        ),
        rollback=(
            _action(name, "restore", "filesystem", "restore", path=cfg.config_path),
            _action(name, "restart", "systemd", "restart", unit=cfg.service),
        ),
        depends_on=base,
        tags=("ssh",),
    )


# ── Assembly ────────────────────────────────────────────────────


def build_steps(config: HostConfig, target: str, probe: FactProbe | None) -> list[Step]:
    """Build the provisioning step set, in declaration order.

    ``probe`` is consulted only for values the config leaves open
    (package architecture and release codename for the Docker apt
    source). It raises ProbeUnavailableError if those cannot be read.
    With no probe, placeholders stand in for them (for plan listings).
    """
    steps: list[Step] = []
    base: tuple[str, ...] = ()

    if config.packages:
        steps.append(_base_packages(config.packages))
        base = (BASE_PACKAGES,)
    if config.container.enabled:
        steps.extend(_container_steps(config.container, target, probe, base))
    if config.firewall.enabled:
        steps.extend(_firewall_steps(config.firewall, base))
    if config.fail2ban.enabled:
        steps.append(_fail2ban_step(config.fail2ban, base))
    if config.ssh.enabled:
        steps.append(_ssh_step(config.ssh, base))

    logger.debug("Catalog built %d step(s) for '%s'", len(steps), target)
    return steps


def recommendations(config: HostConfig) -> list[str]:
    """Operator follow-ups printed after a successful run."""
    notes: list[str] = []
    if config.ssh.enabled and config.ssh.directives.get("PasswordAuthentication") == "no":
        notes.append(
            "Password logins are disabled: confirm SSH key login works before closing this session."
        )
    notes.append("Consider enabling automated security updates (unattended-upgrades).")
    if config.firewall.enabled:
        notes.append("Review ufw rules against the services this host actually exposes.")
    return notes
