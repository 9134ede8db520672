"""
Host probe — live fact queries against an Ubuntu host.

Read-only probes: dpkg-query, systemctl is-active/is-enabled,
ufw show added, /etc/os-release, the passwd and group databases.

A missing query tool raises ProbeUnavailableError instead of
quietly answering False.
"""

from __future__ import annotations

import grp
import logging
import os
import pwd
import shlex
import shutil
import subprocess
from pathlib import Path

from hostprov.core.errors import ProbeUnavailableError
from hostprov.core.facts.base import FactProbe

logger = logging.getLogger(__name__)

_OS_RELEASE = "/etc/os-release"


class HostProbe(FactProbe):
    """FactProbe backed by the real host.

    Args:
        timeout: Seconds allowed for each query command.
        os_release: Path to the os-release file (overridable for tests).
    """

    def __init__(self, timeout: int = 15, os_release: str = _OS_RELEASE):
        self._timeout = timeout
        self._os_release = os_release

    def _query(self, cmd: list[str], query: str) -> subprocess.CompletedProcess[str]:
        """Run a read-only query command.

        Raises:
            ProbeUnavailableError: If the binary is missing, times out,
                or cannot be started.
        """
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except FileNotFoundError as e:
            raise ProbeUnavailableError(query, f"'{cmd[0]}' not found on PATH") from e
        except subprocess.TimeoutExpired as e:
            raise ProbeUnavailableError(query, f"'{cmd[0]}' timed out after {self._timeout}s") from e
        except OSError as e:
            raise ProbeUnavailableError(query, f"cannot run '{cmd[0]}': {e}") from e

    # ── Packages ─────────────────────────────────────────────────

    def package_version(self, name: str) -> str | None:
        r = self._query(
            ["dpkg-query", "-W", "-f=${Status}\t${Version}", name],
            f"package_version({name})",
        )
        if r.returncode != 0:
            # dpkg-query exits 1 for unknown packages
            if r.returncode == 1:
                return None
            raise ProbeUnavailableError(
                f"package_version({name})",
                r.stderr.strip() or f"dpkg-query exited {r.returncode}",
            )
        status, _, version = r.stdout.partition("\t")
        if "install ok installed" not in status:
            return None
        return version.strip() or None

    # ── Services ─────────────────────────────────────────────────

    def service_active(self, name: str) -> bool:
        r = self._query(["systemctl", "is-active", name], f"service_active({name})")
        return r.stdout.strip() == "active"

    def service_enabled(self, name: str) -> bool:
        r = self._query(["systemctl", "is-enabled", name], f"service_enabled({name})")
        return r.stdout.strip() in ("enabled", "enabled-runtime", "alias")

    # ── Firewall ─────────────────────────────────────────────────

    def _ufw(self, args: list[str], query: str) -> str:
        r = self._query(["ufw", *args], query)
        if r.returncode != 0:
            stderr = r.stderr.strip()
            if "root" in stderr.lower():
                raise ProbeUnavailableError(query, "ufw requires root privileges")
            raise ProbeUnavailableError(query, stderr or f"ufw exited {r.returncode}")
        return r.stdout

    def firewall_active(self) -> bool:
        out = self._ufw(["status"], "firewall_active()")
        return "Status: active" in out

    def firewall_rule_exists(self, port: str) -> bool:
        # `ufw show added` lists rules even while the firewall is inactive
        out = self._ufw(["show", "added"], f"firewall_rule_exists({port})")
        for line in out.splitlines():
            line = line.strip()
            if not line.startswith("ufw "):
                continue
            try:
                tokens = shlex.split(line)[1:]
            except ValueError:
                tokens = line.split()[1:]
            if len(tokens) >= 2 and tokens[0] == "allow" and tokens[1] == port:
                return True
        return False

    # ── Files ────────────────────────────────────────────────────

    def read_file(self, path: str) -> str | None:
        try:
            return Path(path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise ProbeUnavailableError(f"read_file({path})", str(e)) from e

    # ── Accounts ─────────────────────────────────────────────────

    def user_exists(self, name: str) -> bool:
        try:
            pwd.getpwnam(name)
        except KeyError:
            return False
        return True

    def user_groups(self, name: str) -> set[str]:
        try:
            entry = pwd.getpwnam(name)
        except KeyError:
            return set()
        groups = {g.gr_name for g in grp.getgrall() if name in g.gr_mem}
        try:
            groups.add(grp.getgrgid(entry.pw_gid).gr_name)
        except KeyError:
            pass  # primary gid without a group entry
        return groups

    # ── Platform ─────────────────────────────────────────────────

    def command_exists(self, name: str) -> bool:
        return shutil.which(name) is not None

    def is_root(self) -> bool:
        return os.geteuid() == 0

    def architecture(self) -> str:
        r = self._query(["dpkg", "--print-architecture"], "architecture()")
        arch = r.stdout.strip()
        if r.returncode != 0 or not arch:
            raise ProbeUnavailableError("architecture()", r.stderr.strip() or "empty output")
        return arch

    def codename(self) -> str:
        try:
            with open(self._os_release, encoding="utf-8") as f:
                fields = dict(
                    line.strip().split("=", 1) for line in f if "=" in line
                )
        except OSError:
            fields = {}

        for key in ("VERSION_CODENAME", "UBUNTU_CODENAME"):
            value = fields.get(key, "").strip('"')
            if value:
                return value

        logger.debug("No codename in %s, asking lsb_release", self._os_release)
        r = self._query(["lsb_release", "-cs"], "codename()")
        codename = r.stdout.strip()
        if r.returncode != 0 or not codename:
            raise ProbeUnavailableError("codename()", r.stderr.strip() or "empty output")
        return codename
