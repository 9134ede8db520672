"""Adapters — tool bindings for host mutations.

Public re-exports for convenient access.
"""

from hostprov.adapters.base import Adapter, ExecutionContext
from hostprov.adapters.memory import Faults, memory_adapters
from hostprov.adapters.registry import AdapterRegistry
from hostprov.adapters.shell.filesystem import FilesystemAdapter
from hostprov.adapters.system import (
    AccountsAdapter,
    AptAdapter,
    SystemdAdapter,
    UfwAdapter,
)


def system_adapters() -> list[Adapter]:
    """The adapters that act on the real host."""
    return [
        AptAdapter(),
        SystemdAdapter(),
        UfwAdapter(),
        AccountsAdapter(),
        FilesystemAdapter(),
    ]


__all__ = [
    "AccountsAdapter",
    "Adapter",
    "AdapterRegistry",
    "AptAdapter",
    "ExecutionContext",
    "Faults",
    "FilesystemAdapter",
    "SystemdAdapter",
    "UfwAdapter",
    "memory_adapters",
    "system_adapters",
]
