"""Switchr Orchestration - service orchestration engine for project context switching."""

from switchr_orchestration.configuration import OrchestratorConfig
from switchr_orchestration.conflicts import ConflictDetector
from switchr_orchestration.dag import ServiceGraph, ServiceNode
from switchr_orchestration.discovery import ServiceDiscovery
from switchr_orchestration.errors import (
    CycleDetectedError,
    DependentsRunningError,
    DuplicateServiceError,
    LaunchError,
    MissingDependencyError,
    OrchestrationError,
    PortConflictError,
    ProcessCrashedError,
    ProjectParseError,
    ReadinessTimeoutError,
    ResolutionError,
    SpawnError,
    StopFailedError,
    TerminationError,
    UnknownServiceError,
    UnresolvableDependencyError,
)
from switchr_orchestration.models import (
    PortConflict,
    ProjectProfile,
    RunningService,
    ServiceDescriptor,
    ServiceResult,
    ServiceStatus,
    StartResult,
    StopResult,
)
from switchr_orchestration.orchestrator import Orchestrator
from switchr_orchestration.parser import parse_project, parse_project_from_dict
from switchr_orchestration.planner import Planner, StartupPlan
from switchr_orchestration.process import ProcessHandle, ProcessUtils, SystemProcessUtils
from switchr_orchestration.supervisor import (
    ProcessSupervisor,
    compose_environment,
    parse_command,
)

__all__ = [
    # Models
    "PortConflict",
    "ProjectProfile",
    "RunningService",
    "ServiceDescriptor",
    "ServiceResult",
    "ServiceStatus",
    "StartResult",
    "StopResult",
    # Configuration
    "OrchestratorConfig",
    # Graph
    "ServiceGraph",
    "ServiceNode",
    # Parser
    "parse_project",
    "parse_project_from_dict",
    # Planner
    "Planner",
    "StartupPlan",
    # Process layer
    "ProcessHandle",
    "ProcessUtils",
    "SystemProcessUtils",
    # Execution
    "ConflictDetector",
    "Orchestrator",
    "ProcessSupervisor",
    "ServiceDiscovery",
    "compose_environment",
    "parse_command",
    # Errors
    "CycleDetectedError",
    "DependentsRunningError",
    "DuplicateServiceError",
    "LaunchError",
    "MissingDependencyError",
    "OrchestrationError",
    "PortConflictError",
    "ProcessCrashedError",
    "ProjectParseError",
    "ReadinessTimeoutError",
    "ResolutionError",
    "SpawnError",
    "StopFailedError",
    "TerminationError",
    "UnknownServiceError",
    "UnresolvableDependencyError",
]
