"""
Configuration loader — reads host.yml into a HostConfig.

Reads YAML, validates against the Pydantic models, and returns a typed
HostConfig. A missing file is not an error: the defaults reproduce the
stock Ubuntu setup (Docker, ufw on 22/80/443/81, fail2ban, hardened sshd).
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from hostprov.core.errors import ProvisionError
from hostprov.core.models.host import HostConfig

logger = logging.getLogger(__name__)

HOST_CONFIG_FILE = "host.yml"


class ConfigError(ProvisionError):
    """Raised when host configuration is unreadable or invalid."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for host.yml starting from the given directory, walking up.

    Returns:
        Path to host.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / HOST_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def parse_config(data: object, source: str = "<config>") -> HostConfig:
    """Validate already-parsed YAML data."""
    if data is None:
        return HostConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {source}, got {type(data).__name__}")

    # The YAML may wrap everything under a "host" key or be flat
    host_data = data["host"] if isinstance(data.get("host"), dict) else data

    try:
        return HostConfig.model_validate(host_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid host configuration in {source}: {e}") from e


def load_config(path: Path | None = None, *, search: bool = True) -> tuple[HostConfig, Path | None]:
    """Load and validate host configuration.

    Args:
        path: Explicit path to host.yml. Must exist if given.
        search: When no path is given, search upward from the cwd.

    Returns:
        (config, path it came from). The path is None when the
        built-in defaults were used.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    if path is None and search:
        path = find_config_file()

    if path is None:
        logger.debug("No %s found — using built-in defaults", HOST_CONFIG_FILE)
        return HostConfig(), None

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading host config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    config = parse_config(data, source=str(path))
    logger.debug(
        "Loaded %s: %d package(s), %d firewall port(s)",
        path,
        len(config.packages),
        len(config.firewall.ports),
    )
    return config, path
