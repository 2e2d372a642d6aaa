"""ACP Agent Runner - supervises agent CLI processes and their MCP registration."""

from .config import Config, RunnerConfig, McpConfig, AgentConfig, load_config, find_config
from .controller import AgentController, create_controller
from .descriptor import AgentDescriptor, BUILTIN_DESCRIPTORS
from .notify import AgentServiceListener, LifecycleNotifier
from .process import AgentProcess, ProcessResult, ProcessRunner
from .reconcile import RegistrationReconciler, RegistrationTarget, ReconcileResult
from .service import AgentService, VERSION_NOT_FOUND
from .state import AgentPhase, AgentStatus

__all__ = [
    "Config",
    "RunnerConfig",
    "McpConfig",
    "AgentConfig",
    "load_config",
    "find_config",
    "AgentController",
    "create_controller",
    "AgentDescriptor",
    "BUILTIN_DESCRIPTORS",
    "AgentServiceListener",
    "LifecycleNotifier",
    "AgentProcess",
    "ProcessResult",
    "ProcessRunner",
    "RegistrationReconciler",
    "RegistrationTarget",
    "ReconcileResult",
    "AgentService",
    "VERSION_NOT_FOUND",
    "AgentPhase",
    "AgentStatus",
]
