"""Error types for orchestration failures.

Resolution and conflict errors are raised before any process is spawned and
abort the requested operation. Launch and termination errors are raised per
service by the supervisor; the orchestrator records them against that service
and carries on.
"""

from collections.abc import Sequence

from switchr_orchestration.models import PortConflict, StopResult


class OrchestrationError(Exception):
    """Base exception for all orchestration errors."""


class ProjectParseError(OrchestrationError):
    """Raised when a project definition cannot be parsed or validated."""


# =============================================================================
# Resolution
# =============================================================================


class ResolutionError(OrchestrationError):
    """Raised when services cannot be resolved into a startup plan."""


class DuplicateServiceError(ResolutionError):
    """Raised when two descriptors share a service name."""

    def __init__(self, names: Sequence[str]) -> None:
        self.names = sorted(set(names))
        super().__init__(f"Duplicate service names: {', '.join(self.names)}")


class MissingDependencyError(ResolutionError):
    """Raised when services depend on services that do not exist.

    Every broken reference is collected before raising, so ``missing`` holds
    the complete list of ``(service, dependency)`` pairs.
    """

    def __init__(self, missing: Sequence[tuple[str, str]]) -> None:
        self.missing = list(missing)
        lines = [
            f"Service '{service}' depends on unknown service '{dependency}'"
            for service, dependency in self.missing
        ]
        super().__init__("Dependency validation failed:\n" + "\n".join(lines))


class CycleDetectedError(ResolutionError):
    """Raised when a dependency cycle is found.

    ``cycle`` is the ordered path around the cycle; its first and last
    entries are the same service.
    """

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"Circular dependency detected: {' → '.join(self.cycle)}")


class UnknownServiceError(ResolutionError):
    """Raised when a requested service is not declared for the project."""

    def __init__(self, names: Sequence[str]) -> None:
        self.names = list(names)
        super().__init__(f"Unknown services: {', '.join(self.names)}")


class UnresolvableDependencyError(ResolutionError):
    """Raised when phase layering makes no progress with services left over."""

    def __init__(self, remaining: Sequence[str]) -> None:
        self.remaining = sorted(remaining)
        super().__init__(
            f"Unable to resolve dependencies for services: {', '.join(self.remaining)}"
        )


# =============================================================================
# Conflicts
# =============================================================================


class PortConflictError(OrchestrationError):
    """Raised when declared ports are already bound by other processes."""

    def __init__(self, conflicts: Sequence[PortConflict]) -> None:
        self.conflicts = list(conflicts)
        details = "; ".join(c.describe() for c in self.conflicts)
        super().__init__(f"Port conflicts detected: {details}")


# =============================================================================
# Per-service failures
# =============================================================================


class LaunchError(OrchestrationError):
    """Raised when a single service fails to launch or become ready."""

    def __init__(self, service: str, message: str) -> None:
        self.service = service
        super().__init__(message)


class SpawnError(LaunchError):
    """Raised when no process id was obtained for a service."""


class ProcessCrashedError(LaunchError):
    """Raised when a process exits during the liveness settle window."""

    def __init__(self, service: str, pid: int) -> None:
        self.pid = pid
        super().__init__(
            service, f"Process for {service} started but immediately crashed"
        )


class ReadinessTimeoutError(LaunchError):
    """Raised when a live process never binds its declared port."""

    def __init__(self, service: str, port: int, timeout: float) -> None:
        self.port = port
        self.timeout = timeout
        super().__init__(
            service,
            f"Service {service} did not become ready on port {port} "
            f"within {timeout:g}s",
        )


class TerminationError(OrchestrationError):
    """Raised when a process is still alive after the forceful kill."""

    def __init__(self, service: str, pid: int) -> None:
        self.service = service
        self.pid = pid
        super().__init__(
            f"Process {pid} for {service} is still running after kill attempt"
        )


class DependentsRunningError(OrchestrationError):
    """Raised when stopping a service would strand running dependents."""

    def __init__(self, service: str, blocked_by: Sequence[str]) -> None:
        self.service = service
        self.blocked_by = sorted(blocked_by)
        super().__init__(
            f"Cannot stop '{service}': running dependents "
            f"{', '.join(self.blocked_by)}"
        )


class StopFailedError(OrchestrationError):
    """Raised when a stop that a workflow depends on did not fully succeed."""

    def __init__(self, result: StopResult) -> None:
        self.result = result
        failed = ", ".join(r.service for r in result.failed)
        super().__init__(
            f"Failed to stop services: {failed}. Use force to continue anyway."
        )
