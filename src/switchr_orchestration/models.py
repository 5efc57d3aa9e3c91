"""Pydantic models for project service orchestration."""

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ServiceStatus(StrEnum):
    """Lifecycle status of a service node during one resolution pass."""

    PENDING = "pending"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"


OperationOutcome = Literal["completed", "completed_with_failures", "aborted"]
"""Terminal state of a start or stop operation."""


def _stringify_environment(value: object) -> object:
    if isinstance(value, dict):
        return {
            str(k): str(v).lower() if isinstance(v, bool) else str(v)
            for k, v in value.items()
        }
    return value


class ServiceDescriptor(BaseModel):
    """Declarative record of one service's launch requirements.

    Keys the engine does not act on (health checks, templates) are ignored.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    command: str
    port: int | None = Field(default=None, ge=1, le=65535)
    dependencies: frozenset[str] = Field(default_factory=frozenset)
    environment: dict[str, str] = Field(default_factory=dict)
    working_directory: str | None = None

    auto_restart: bool = False
    """Advisory only; the orchestrator never restarts a service by itself."""

    @field_validator("name")
    @classmethod
    def validate_name_not_empty(cls, v: str) -> str:
        """Validate the service name is not blank."""
        if not v or not v.strip():
            raise ValueError("service name is required")
        return v.strip()

    @field_validator("command")
    @classmethod
    def validate_command_not_empty(cls, v: str) -> str:
        """Validate the command contains at least an executable."""
        if not v or not v.split():
            raise ValueError("service command is required")
        return v

    @field_validator("environment", mode="before")
    @classmethod
    def coerce_environment_values(cls, v: object) -> object:
        """Stringify scalar environment values (YAML yields ints and bools)."""
        return _stringify_environment(v)


class ProjectProfile(BaseModel):
    """Resolved project context handed to the orchestrator by the config provider."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    path: str
    environment: dict[str, str] = Field(default_factory=dict)
    services: list[ServiceDescriptor] = Field(default_factory=list)

    @field_validator("environment", mode="before")
    @classmethod
    def coerce_environment_values(cls, v: object) -> object:
        """Stringify scalar environment values."""
        return _stringify_environment(v)


class RunningService(BaseModel):
    """A service process confirmed alive by OS probing."""

    model_config = ConfigDict(frozen=True)

    name: str
    pid: int
    port: int | None = None
    command: str | None = None


class PortConflict(BaseModel):
    """A declared port found bound before launch."""

    model_config = ConfigDict(frozen=True)

    service: str
    port: int
    pid: int | None = None
    """Owning process id, when it could be resolved."""

    def describe(self) -> str:
        """Return a one-line description of the conflict."""
        owner = f" (PID: {self.pid})" if self.pid is not None else ""
        return f"{self.service} -> port {self.port}{owner}"


class ServiceResult(BaseModel):
    """Outcome of starting or stopping a single service."""

    service: str
    success: bool
    pid: int | None = None
    port: int | None = None
    phase: int | None = None
    """Zero-based phase index the service ran in, when a plan was used."""

    planned: bool = False
    """True when produced by a dry run (nothing was executed)."""

    error: str | None = None
    duration_seconds: float = 0.0


class _OperationResult(BaseModel):
    """Fields shared by start and stop results."""

    results: list[ServiceResult] = Field(default_factory=list)
    total_duration_seconds: float = 0.0

    @property
    def successful(self) -> list[ServiceResult]:
        """Results that succeeded."""
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[ServiceResult]:
        """Results that failed."""
        return [r for r in self.results if not r.success]

    @property
    def outcome(self) -> OperationOutcome:
        """Terminal state derived from the per-service results."""
        if self.failed:
            return "completed_with_failures"
        return "completed"


class StartResult(_OperationResult):
    """Result of executing a startup plan."""

    phase_count: int = 0

    def summary(self) -> str:
        """Return the partial-success summary line."""
        return (
            f"{len(self.successful)}/{len(self.results)} services started "
            f"across {self.phase_count} phases"
        )


class StopResult(_OperationResult):
    """Result of stopping a set of running services."""

    forced: bool = False
    """Whether the stop ran in force mode."""

    @property
    def ok(self) -> bool:
        """Whether dependent workflows may proceed after this stop."""
        return self.forced or not self.failed

    def summary(self) -> str:
        """Return the stop summary line."""
        return f"{len(self.successful)}/{len(self.results)} services stopped"
