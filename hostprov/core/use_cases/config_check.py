"""
Config check use case — validate host.yml and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from hostprov.core.config.loader import ConfigError, load_config
from hostprov.core.engine.graph import build_plan
from hostprov.core.errors import PlanError
from hostprov.core.models.host import HostConfig
from hostprov.core.services.catalog import build_steps


@dataclass
class ConfigCheckResult:
    """Result of configuration validation."""

    valid: bool = False
    config: HostConfig | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    step_count: int = 0

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "defaults": self.config is not None and self.config_path is None,
            "errors": self.errors,
            "warnings": self.warnings,
            "step_count": self.step_count,
        }


def check_config(config_path: Path | None = None) -> ConfigCheckResult:
    """Validate host configuration and report issues.

    Errors make the config unusable (bad YAML, schema violations,
    duplicate port rules). Warnings flag configs that would run but
    probably not as intended.
    """
    result = ConfigCheckResult()

    try:
        config, result.config_path = load_config(config_path)
    except ConfigError as e:
        result.errors.append(str(e))
        return result
    result.config = config

    if result.config_path is None:
        result.warnings.append("No host.yml found; built-in defaults apply.")

    # Structural check: the catalog must yield a valid plan
    try:
        plan = build_plan(build_steps(config, "<target>", probe=None))
        result.step_count = len(plan)
    except PlanError as e:
        result.errors.append(str(e))

    # Semantic checks
    if config.firewall.enabled and "ufw" not in config.packages:
        result.warnings.append("Firewall is enabled but 'ufw' is not in packages.")
    if config.fail2ban.enabled and "fail2ban" not in config.packages:
        result.warnings.append("fail2ban is enabled but 'fail2ban' is not in packages.")

    if config.firewall.enabled and config.firewall.activate:
        ports = {rule.port for rule in config.firewall.ports}
        if not ports & {"22", "22/tcp", "ssh"}:
            result.warnings.append(
                "Firewall will be activated without an SSH allow rule (22/tcp); "
                "remote sessions may be locked out."
            )

    if config.ssh.enabled and not config.ssh.validate_config:
        result.warnings.append("sshd_config changes will not be validated with 'sshd -t'.")

    if config.settings.rollback_on_timeout and config.settings.timeout_seconds is None:
        result.warnings.append("rollback_on_timeout has no effect without timeout_seconds.")

    result.valid = len(result.errors) == 0
    return result
