"""System adapters — apt, systemd, ufw, accounts."""

from hostprov.adapters.system.accounts import AccountsAdapter
from hostprov.adapters.system.apt import AptAdapter
from hostprov.adapters.system.systemd import SystemdAdapter
from hostprov.adapters.system.ufw import UfwAdapter

__all__ = ["AccountsAdapter", "AptAdapter", "SystemdAdapter", "UfwAdapter"]
