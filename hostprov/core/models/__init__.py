"""
Domain models — Pydantic types (and the frozen Step dataclass).

All models are re-exported here for convenient access:

    from hostprov.core.models import Action, Receipt, Step, StepResult, HostConfig
"""

from hostprov.core.models.action import Action, Receipt
from hostprov.core.models.host import (
    ContainerRuntime,
    Fail2banConfig,
    FirewallConfig,
    HostConfig,
    Jail,
    PortRule,
    RetrySettings,
    Settings,
    SshConfig,
)
from hostprov.core.models.state import HostState, RunRecord, StepState
from hostprov.core.models.step import Criticality, Step, StepResult, StepStatus

__all__ = [
    "Action",
    "ContainerRuntime",
    "Criticality",
    "Fail2banConfig",
    "FirewallConfig",
    "HostConfig",
    "HostState",
    "Jail",
    "PortRule",
    "Receipt",
    "RetrySettings",
    "RunRecord",
    "Settings",
    "SshConfig",
    "Step",
    "StepResult",
    "StepState",
    "StepStatus",
]
