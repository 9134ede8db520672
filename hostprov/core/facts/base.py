"""
Fact probe — the read-only query boundary to host state.

Preconditions and verifications only ever look at the host through
this interface. Every query must be side-effect free and safe to call
any number of times.

Contract for implementations:
    - Return the observed answer (True/False/value).
    - Raise ProbeUnavailableError when the answer cannot be determined
      (tool missing, permission denied, timeout). Never return False
      for "could not tell".
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from hostprov.core.errors import ProbeUnavailableError
from hostprov.core.facts.versions import version_satisfies


class FactProbe(ABC):
    """Abstract read-only view of a host."""

    # ── Packages ─────────────────────────────────────────────────

    @abstractmethod
    def package_version(self, name: str) -> str | None:
        """Installed version of a package, or None if not installed."""

    def package_installed(self, name: str, min_version: str | None = None) -> bool:
        """Whether a package is installed (optionally at >= min_version)."""
        version = self.package_version(name)
        if version is None:
            return False
        if min_version is None:
            return True
        try:
            return version_satisfies(version, min_version)
        except ValueError as e:
            raise ProbeUnavailableError(f"package_installed({name})", str(e)) from e

    def packages_installed(self, names: list[str] | tuple[str, ...]) -> bool:
        """Whether every package in ``names`` is installed."""
        return all(self.package_installed(n) for n in names)

    def packages_absent(self, names: list[str] | tuple[str, ...]) -> bool:
        """Whether no package in ``names`` is installed."""
        return not any(self.package_installed(n) for n in names)

    # ── Services ─────────────────────────────────────────────────

    @abstractmethod
    def service_active(self, name: str) -> bool:
        """Whether a service unit is currently running."""

    @abstractmethod
    def service_enabled(self, name: str) -> bool:
        """Whether a service unit starts at boot."""

    # ── Firewall ─────────────────────────────────────────────────

    @abstractmethod
    def firewall_active(self) -> bool:
        """Whether the host firewall is enforcing rules."""

    @abstractmethod
    def firewall_rule_exists(self, port: str) -> bool:
        """Whether an allow rule for ``port`` (e.g. ``22/tcp``) is configured."""

    # ── Files ────────────────────────────────────────────────────

    @abstractmethod
    def read_file(self, path: str) -> str | None:
        """File contents, or None if the file does not exist."""

    def file_exists(self, path: str) -> bool:
        return self.read_file(path) is not None

    def file_contains(self, path: str, line: str) -> bool:
        """Whether ``path`` has a line equal to ``line`` (ignoring surrounding whitespace)."""
        content = self.read_file(path)
        if content is None:
            return False
        wanted = line.strip()
        return any(existing.strip() == wanted for existing in content.splitlines())

    def file_content_equals(self, path: str, content: str) -> bool:
        return self.read_file(path) == content

    # ── Accounts ─────────────────────────────────────────────────

    @abstractmethod
    def user_exists(self, name: str) -> bool:
        """Whether a local account exists."""

    @abstractmethod
    def user_groups(self, name: str) -> set[str]:
        """Names of all groups the account belongs to."""

    def user_in_group(self, name: str, group: str) -> bool:
        return group in self.user_groups(name)

    # ── Platform ─────────────────────────────────────────────────

    @abstractmethod
    def command_exists(self, name: str) -> bool:
        """Whether an executable is on PATH."""

    @abstractmethod
    def is_root(self) -> bool:
        """Whether the current process has root privileges."""

    @abstractmethod
    def architecture(self) -> str:
        """Package architecture (e.g. ``amd64``, ``arm64``)."""

    @abstractmethod
    def codename(self) -> str:
        """Distribution release codename (e.g. ``jammy``)."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"
