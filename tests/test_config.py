"""
Tests for host configuration — YAML loading, model validation, config check.
"""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from hostprov.core.config.loader import (
    ConfigError,
    find_config_file,
    load_config,
    parse_config,
)
from hostprov.core.models.host import HostConfig, PortRule
from hostprov.core.models.step import Criticality
from hostprov.core.use_cases.config_check import check_config


def _write(directory: Path, body: str) -> Path:
    path = directory / "host.yml"
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


# ── Defaults ────────────────────────────────────────────────────────


class TestDefaults:
    def test_stock_bootstrap(self):
        config = HostConfig()
        assert config.packages == [
            "curl",
            "apt-transport-https",
            "ca-certificates",
            "software-properties-common",
            "gnupg",
            "lsb-release",
            "ufw",
            "fail2ban",
        ]
        assert [r.port for r in config.firewall.ports] == ["22/tcp", "80/tcp", "443/tcp", "81/tcp"]
        assert config.port_rule("81/tcp").criticality == Criticality.ADVISORY
        assert config.fail2ban.bantime == "1h"
        assert config.fail2ban.findtime == "10m"
        assert config.fail2ban.maxretry == 5
        assert config.fail2ban.jails[0].maxretry == 3
        assert config.ssh.directives == {
            "PermitRootLogin": "no",
            "PasswordAuthentication": "no",
            "X11Forwarding": "no",
        }
        assert config.settings.require_root is True
        assert config.port_rule("8080/tcp") is None


# ── Model validation ────────────────────────────────────────────────


class TestValidation:
    @pytest.mark.parametrize("port", ["22", "22/tcp", "60000:61000/udp", 443])
    def test_valid_ports(self, port):
        assert PortRule(port=port).port == str(port)

    @pytest.mark.parametrize("port", ["ssh", "22/icmp", "-1", "22 tcp"])
    def test_invalid_ports(self, port):
        with pytest.raises(ValueError):
            PortRule(port=port)

    def test_bare_port_shorthand(self):
        config = parse_config({"firewall": {"ports": ["22/tcp", 8080, {"port": "9000/udp", "criticality": "advisory"}]}})
        assert [r.port for r in config.firewall.ports] == ["22/tcp", "8080", "9000/udp"]
        assert config.firewall.ports[2].criticality == Criticality.ADVISORY

    def test_yaml_booleans_in_directives(self):
        config = parse_config({"ssh": {"directives": {"PermitRootLogin": False, "UseDNS": True, "MaxAuthTries": 3}}})
        assert config.ssh.directives == {"PermitRootLogin": "no", "UseDNS": "yes", "MaxAuthTries": "3"}

    def test_bad_duration(self):
        with pytest.raises(ConfigError):
            parse_config({"fail2ban": {"bantime": "forever"}})

    def test_bad_maxretry(self):
        with pytest.raises(ConfigError):
            parse_config({"fail2ban": {"maxretry": 0}})

    def test_host_wrapper_key(self):
        config = parse_config({"host": {"packages": ["git"]}})
        assert config.packages == ["git"]

    def test_none_is_defaults(self):
        assert parse_config(None) == HostConfig()

    def test_non_mapping(self):
        with pytest.raises(ConfigError, match="Expected a YAML mapping"):
            parse_config(["a", "b"])


# ── Loading ─────────────────────────────────────────────────────────


class TestLoader:
    def test_load_explicit(self, tmp_path):
        path = _write(tmp_path, """\
            packages: [curl, git]
            firewall:
              ports:
                - 22/tcp
                - port: 8443/tcp
                  comment: admin
            settings:
              timeout_seconds: 600
        """)
        config, source = load_config(path)
        assert source == path
        assert config.packages == ["curl", "git"]
        assert config.port_rule("8443/tcp").comment == "admin"
        assert config.settings.timeout_seconds == 600

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yml")

    def test_invalid_yaml(self, tmp_path):
        path = _write(tmp_path, "packages: [curl\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)

    def test_schema_error_names_file(self, tmp_path):
        path = _write(tmp_path, "firewall:\n  ports: [bogus]\n")
        with pytest.raises(ConfigError) as exc:
            load_config(path)
        assert str(path) in str(exc.value)

    def test_no_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config, source = load_config()
        assert source is None
        assert config == HostConfig()

    def test_search_disabled(self, tmp_config_dir, monkeypatch):
        monkeypatch.chdir(tmp_config_dir)
        _, source = load_config(search=False)
        assert source is None

    def test_find_walks_up(self, tmp_config_dir):
        nested = tmp_config_dir / "a" / "b"
        nested.mkdir(parents=True)
        assert find_config_file(nested) == (tmp_config_dir / "host.yml").resolve()


# ── Config check ────────────────────────────────────────────────────


class TestConfigCheck:
    def test_defaults_valid_with_warning(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = check_config()
        assert result.valid
        assert result.step_count == 14
        assert any("No host.yml" in w for w in result.warnings)
        assert result.to_dict()["defaults"] is True

    def test_file_valid(self, tmp_config_dir):
        result = check_config(tmp_config_dir / "host.yml")
        assert result.valid
        assert result.warnings == []
        assert result.to_dict()["defaults"] is False

    def test_invalid_file(self, tmp_path):
        result = check_config(_write(tmp_path, "fail2ban:\n  maxretry: 0\n"))
        assert not result.valid
        assert "maxretry" in result.errors[0]

    def test_duplicate_ports_are_errors(self, tmp_path):
        result = check_config(_write(tmp_path, "firewall:\n  ports: [22/tcp, 22/tcp]\n"))
        assert not result.valid
        assert "Duplicate step names" in result.errors[0]

    def test_semantic_warnings(self, tmp_path):
        path = _write(tmp_path, """\
            packages: [curl]
            firewall:
              ports: [80/tcp]
            ssh:
              validate_config: false
            settings:
              rollback_on_timeout: true
        """)
        warnings = check_config(path).warnings
        assert any("'ufw' is not in packages" in w for w in warnings)
        assert any("'fail2ban' is not in packages" in w for w in warnings)
        assert any("locked out" in w for w in warnings)
        assert any("sshd -t" in w for w in warnings)
        assert any("rollback_on_timeout" in w for w in warnings)
