"""croflow framework -- the module contract, its execution wrapper and the registry.

Tags:
    croflow-framework, module, registry, orchestration

Doc-Types:
    api-reference
"""

from croflow.framework.module import (
    DEFAULT_PRIORITY,
    FunctionModule,
    Module,
    ModuleDescriptor,
    ModuleExecutionOptions,
    ModuleExecutor,
    ModuleHooks,
    create_module,
)
from croflow.framework.registry import ModuleRegistry, RegistryEntry, RegistryStats

__all__ = [
    # Module contract
    "DEFAULT_PRIORITY",
    "FunctionModule",
    "Module",
    "ModuleDescriptor",
    "ModuleExecutionOptions",
    "ModuleExecutor",
    "ModuleHooks",
    "create_module",
    # Registry
    "ModuleRegistry",
    "RegistryEntry",
    "RegistryStats",
]
