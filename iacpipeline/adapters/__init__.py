"""External tool adapters, registered by name in the global adapter registry."""

from ..core.registry import adapter_registry
from .base import CommandAdapter, CommandResult, CommandRunner
from .plan import BicepWhatIfAdapter, TerraformApplyAdapter, TerraformPlanAdapter
from .scanners import CheckovAdapter, ScannerAdapter, TfsecAdapter, TrivyAdapter
from .cost import InfracostAdapter
from .precommit import PreCommitAdapter


BUILTIN_ADAPTERS = {
    adapter.name: adapter
    for adapter in (
        TerraformPlanAdapter,
        TerraformApplyAdapter,
        BicepWhatIfAdapter,
        TfsecAdapter,
        CheckovAdapter,
        TrivyAdapter,
        InfracostAdapter,
        PreCommitAdapter,
    )
}

SCANNER_ADAPTERS = ("tfsec", "checkov", "trivy")


def register_builtin_adapters(registry=adapter_registry) -> None:
    for name, adapter_class in BUILTIN_ADAPTERS.items():
        registry.register_adapter(name, adapter_class)


register_builtin_adapters()

__all__ = [
    "BUILTIN_ADAPTERS",
    "SCANNER_ADAPTERS",
    "register_builtin_adapters",
    "CommandAdapter",
    "CommandResult",
    "CommandRunner",
    "BicepWhatIfAdapter",
    "TerraformApplyAdapter",
    "TerraformPlanAdapter",
    "CheckovAdapter",
    "ScannerAdapter",
    "TfsecAdapter",
    "TrivyAdapter",
    "InfracostAdapter",
    "PreCommitAdapter",
]
