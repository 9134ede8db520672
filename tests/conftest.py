"""
Shared pytest fixtures for hostprov tests.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from hostprov.adapters import AdapterRegistry, Faults, memory_adapters
from hostprov.core.facts.memory import MemoryHost, MemoryProbe
from hostprov.core.models.action import Action
from hostprov.core.models.step import Criticality, Step


@pytest.fixture
def host() -> MemoryHost:
    """A fresh in-memory Ubuntu host with one account, 'alice'."""
    return MemoryHost.ubuntu("alice")


@pytest.fixture
def probe(host: MemoryHost) -> MemoryProbe:
    return MemoryProbe(host)


@pytest.fixture
def faults() -> Faults:
    return Faults()


@pytest.fixture
def registry(host: MemoryHost, faults: Faults) -> AdapterRegistry:
    """Registry whose adapters all mutate ``host``."""
    reg = AdapterRegistry()
    reg.register_all(memory_adapters(host, faults))
    return reg


@pytest.fixture
def make_step():
    """Factory for marker-file steps.

    Step ``name`` holds when ``/flags/<name>`` exists; applying it writes
    that file and rolling it back removes it. Action IDs are
    ``<name>:write`` and ``<name>:remove``.
    """

    def _make(
        name: str,
        depends_on: tuple[str, ...] = (),
        criticality: Criticality = Criticality.FATAL,
        rollback: bool = True,
        note: str = "",
    ) -> Step:
        path = f"/flags/{name}"
        return Step(
            name=name,
            check=lambda p: p.file_exists(path),
            check_label=f"{path} exists",
            apply=(
                Action(
                    id=f"{name}:write",
                    adapter="filesystem",
                    operation="write",
                    params={"path": path, "content": name, "backup": False},
                ),
            ),
            rollback=(
                (
                    Action(
                        id=f"{name}:remove",
                        adapter="filesystem",
                        operation="remove",
                        params={"path": path},
                    ),
                )
                if rollback
                else None
            ),
            depends_on=depends_on,
            criticality=criticality,
            note=note,
        )

    return _make


@pytest.fixture
def tmp_config_dir(tmp_path: Path) -> Path:
    """A directory holding an empty host.yml (all defaults)."""
    (tmp_path / "host.yml").write_text("version: 1\n", encoding="utf-8")
    return tmp_path
