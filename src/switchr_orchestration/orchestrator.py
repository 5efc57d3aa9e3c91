"""Orchestrator for phased service startup and ordered shutdown.

Phases run strictly in sequence; services within a phase run concurrently as
asyncio tasks and are all awaited before the next phase begins. Per-service
failures are recorded and never abort the run. The only aborts happen before
any process is spawned: resolution failures and unforced port conflicts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from switchr_orchestration.configuration import OrchestratorConfig
from switchr_orchestration.conflicts import ConflictDetector
from switchr_orchestration.dag import ServiceGraph
from switchr_orchestration.discovery import ServiceDiscovery
from switchr_orchestration.errors import (
    DependentsRunningError,
    LaunchError,
    ResolutionError,
    StopFailedError,
    TerminationError,
    UnknownServiceError,
)
from switchr_orchestration.models import (
    ProjectProfile,
    RunningService,
    ServiceDescriptor,
    ServiceResult,
    ServiceStatus,
    StartResult,
    StopResult,
)
from switchr_orchestration.planner import Planner, StartupPlan
from switchr_orchestration.process import ProcessUtils, SystemProcessUtils
from switchr_orchestration.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)


@dataclass
class _StartContext:
    """Internal context for a single start run."""

    plan: StartupPlan
    project_path: str
    project_env: dict[str, str]
    timeout: float | None
    results: list[ServiceResult] = field(default_factory=list)


class Orchestrator:
    """Drives startup plans and shutdowns through explicitly injected collaborators."""

    def __init__(
        self,
        process_utils: ProcessUtils | None = None,
        config: OrchestratorConfig | None = None,
        *,
        planner: Planner | None = None,
        supervisor: ProcessSupervisor | None = None,
        conflict_detector: ConflictDetector | None = None,
        discovery: ServiceDiscovery | None = None,
    ) -> None:
        """Initialise orchestrator.

        Args:
            process_utils: OS abstraction; defaults to SystemProcessUtils.
            config: Timing configuration; defaults to OrchestratorConfig().
            planner: Plan builder; defaults to a new Planner.
            supervisor: Per-service process supervisor.
            conflict_detector: Pre-flight port checker.
            discovery: Running-service prober.

        """
        self._config = config or OrchestratorConfig()
        utils = process_utils or SystemProcessUtils()
        self._planner = planner or Planner()
        self._supervisor = supervisor or ProcessSupervisor(utils, self._config)
        self._detector = conflict_detector or ConflictDetector(utils, self._config.host)
        self._discovery = discovery or ServiceDiscovery(utils)

    @property
    def config(self) -> OrchestratorConfig:
        """Timing configuration in use."""
        return self._config

    def create_startup_plan(
        self,
        services: Sequence[ServiceDescriptor],
        targets: Iterable[str] | None = None,
    ) -> StartupPlan:
        """Resolve services into a startup plan.

        Raises:
            ResolutionError: If the services cannot be planned.

        """
        return self._planner.create_startup_plan(services, targets)

    # =========================================================================
    # Start
    # =========================================================================

    async def start(
        self,
        project: ProjectProfile,
        *,
        targets: Iterable[str] | None = None,
        force: bool = False,
        dry_run: bool = False,
        timeout: float | None = None,
    ) -> StartResult:
        """Plan and start a project's services.

        Args:
            project: Project whose services to start.
            targets: Optional subset of services; their dependencies are included.
            force: Start even if declared ports are already bound.
            dry_run: Report what would start without spawning anything.
            timeout: Per-service readiness timeout override.

        Returns:
            Per-service results across all phases.

        Raises:
            ResolutionError: If the services cannot be planned.
            PortConflictError: If ports are bound and force is not set.

        """
        try:
            plan = self.create_startup_plan(project.services, targets)
        except ResolutionError as e:
            logger.error("Cannot start '%s': %s", project.name, e)
            raise

        return await self.execute_start(
            plan,
            project_path=project.path,
            project_env=project.environment,
            force=force,
            dry_run=dry_run,
            timeout=timeout,
        )

    async def execute_start(
        self,
        plan: StartupPlan,
        *,
        project_path: str,
        project_env: dict[str, str] | None = None,
        force: bool = False,
        dry_run: bool = False,
        timeout: float | None = None,
    ) -> StartResult:
        """Execute a startup plan phase by phase.

        Args:
            plan: Validated StartupPlan from the Planner.
            project_path: Working directory for services that declare none.
            project_env: Project-wide environment variables.
            force: Skip aborting on port conflicts.
            dry_run: Report what would start without spawning anything.
            timeout: Per-service readiness timeout override.

        Returns:
            StartResult with one entry per planned service.

        Raises:
            PortConflictError: If ports are bound and force is not set.

        """
        if dry_run:
            return self._dry_run_start(plan)

        if force:
            conflicts = await self._detector.find_conflicts(plan.services)
            for conflict in conflicts:
                logger.warning("Ignoring port conflict (forced): %s", conflict.describe())
        else:
            await self._detector.check(plan.services)

        start_time = time.monotonic()
        ctx = _StartContext(
            plan=plan,
            project_path=project_path,
            project_env=dict(project_env or {}),
            timeout=timeout,
        )

        for index, phase in enumerate(plan.phases):
            if index > 0 and self._config.inter_phase_delay:
                # Let dependencies stabilise before dependents connect to them
                await asyncio.sleep(self._config.inter_phase_delay)
            await self._execute_phase(index, phase, ctx)

        result = StartResult(
            results=ctx.results,
            phase_count=plan.phase_count,
            total_duration_seconds=time.monotonic() - start_time,
        )

        if result.failed:
            logger.warning("Started %s", result.summary())
        else:
            logger.info("Started %s", result.summary())
        return result

    async def _execute_phase(
        self,
        index: int,
        phase: tuple[ServiceDescriptor, ...],
        ctx: _StartContext,
    ) -> None:
        """Launch every service in a phase concurrently and await them all."""
        logger.info(
            "Starting phase %d/%d: %s",
            index + 1,
            ctx.plan.phase_count,
            ", ".join(service.name for service in phase),
        )

        tasks = [self._start_one(service, index, ctx) for service in phase]
        batch_results = await asyncio.gather(*tasks, return_exceptions=True)

        for service, result in zip(phase, batch_results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Service %s failed unexpectedly: %s", service.name, result)
                self._set_status(ctx.plan.graph, service.name, ServiceStatus.FAILED)
                result = ServiceResult(
                    service=service.name,
                    success=False,
                    port=service.port,
                    phase=index,
                    error=str(result),
                )
            ctx.results.append(result)

    async def _start_one(
        self, service: ServiceDescriptor, index: int, ctx: _StartContext
    ) -> ServiceResult:
        """Start a single service and record its outcome."""
        start_time = time.monotonic()
        graph = ctx.plan.graph

        failed_deps = [
            dep
            for dep in sorted(service.dependencies)
            if dep in graph and graph.get_node(dep).status == ServiceStatus.FAILED
        ]
        if failed_deps:
            logger.warning(
                "Starting %s although dependencies failed: %s",
                service.name,
                ", ".join(failed_deps),
            )

        self._set_status(graph, service.name, ServiceStatus.STARTING)
        try:
            running = await self._supervisor.start(
                service, ctx.project_path, ctx.project_env, ctx.timeout
            )
        except LaunchError as e:
            self._set_status(graph, service.name, ServiceStatus.FAILED)
            logger.warning("Failed to start %s: %s", service.name, e)
            return ServiceResult(
                service=service.name,
                success=False,
                port=service.port,
                phase=index,
                error=str(e),
                duration_seconds=time.monotonic() - start_time,
            )

        self._set_status(graph, service.name, ServiceStatus.READY)
        logger.info("Started %s (PID %d)", service.name, running.pid)
        return ServiceResult(
            service=service.name,
            success=True,
            pid=running.pid,
            port=service.port,
            phase=index,
            duration_seconds=time.monotonic() - start_time,
        )

    def _dry_run_start(self, plan: StartupPlan) -> StartResult:
        """Report every planned service without executing anything."""
        results = [
            ServiceResult(
                service=service.name,
                success=True,
                port=service.port,
                phase=index,
                planned=True,
            )
            for index, phase in enumerate(plan.phases)
            for service in phase
        ]
        return StartResult(results=results, phase_count=plan.phase_count)

    @staticmethod
    def _set_status(graph: ServiceGraph, name: str, status: ServiceStatus) -> None:
        if name in graph:
            graph.get_node(name).status = status

    # =========================================================================
    # Stop
    # =========================================================================

    async def stop(
        self,
        project: ProjectProfile,
        *,
        force: bool = False,
        dry_run: bool = False,
    ) -> StopResult:
        """Discover a project's running services and stop them in reverse order.

        If the project's services cannot be planned, each discovered service
        is stopped independently instead.
        """
        running = await self._discovery.find_running(project.services)
        if not running:
            logger.info("No running services found for '%s'", project.name)
            return StopResult(forced=force)

        plan: StartupPlan | None
        try:
            plan = self.create_startup_plan(project.services)
        except ResolutionError as e:
            logger.warning(
                "Cannot order shutdown for '%s' (%s); stopping services independently",
                project.name,
                e,
            )
            plan = None

        return await self.execute_stop(running, plan=plan, force=force, dry_run=dry_run)

    async def execute_stop(
        self,
        running: Sequence[RunningService],
        *,
        plan: StartupPlan | None = None,
        force: bool = False,
        dry_run: bool = False,
    ) -> StopResult:
        """Terminate running services.

        With a plan, services are stopped phase by phase in the reverse of
        startup order. Without one, every service is stopped independently.

        Args:
            running: Services currently discovered as running.
            plan: Startup plan giving the shutdown order, if available.
            force: Report the stop as ok even if some services fail to stop.
            dry_run: Report what would stop without signalling anything.

        Returns:
            StopResult with one entry per running service.

        """
        batches = self._shutdown_batches(running, plan)

        if dry_run:
            results = [
                ServiceResult(
                    service=service.name,
                    success=True,
                    pid=service.pid,
                    port=service.port,
                    planned=True,
                )
                for batch in batches
                for service in batch
            ]
            return StopResult(results=results, forced=force)

        start_time = time.monotonic()
        results: list[ServiceResult] = []
        for batch in batches:
            batch_results = await asyncio.gather(
                *(self._stop_one(service) for service in batch),
                return_exceptions=True,
            )
            for service, outcome in zip(batch, batch_results, strict=True):
                if isinstance(outcome, BaseException):
                    logger.warning("Failed to stop %s: %s", service.name, outcome)
                    outcome = ServiceResult(
                        service=service.name,
                        success=False,
                        pid=service.pid,
                        port=service.port,
                        error=str(outcome),
                    )
                results.append(outcome)

        result = StopResult(
            results=results,
            forced=force,
            total_duration_seconds=time.monotonic() - start_time,
        )
        if result.failed:
            logger.warning(
                "Stopped %s (%d failed%s)",
                result.summary(),
                len(result.failed),
                ", continuing with force" if force else "",
            )
        else:
            logger.info("Stopped %s", result.summary())
        return result

    def _shutdown_batches(
        self, running: Sequence[RunningService], plan: StartupPlan | None
    ) -> list[list[RunningService]]:
        """Group running services into ordered stop batches."""
        if plan is None:
            return [list(running)] if running else []

        by_name = {service.name: service for service in running}
        batches: list[list[RunningService]] = []
        for phase in plan.shutdown_phases():
            batch = [by_name.pop(s.name) for s in phase if s.name in by_name]
            if batch:
                batches.append(batch)

        # Running services the plan does not know about go last, independently
        if by_name:
            batches.append(list(by_name.values()))
        return batches

    async def _stop_one(self, service: RunningService) -> ServiceResult:
        """Stop a single service and record its outcome."""
        start_time = time.monotonic()
        try:
            await self._supervisor.stop(service)
        except TerminationError as e:
            logger.warning("Failed to stop %s: %s", service.name, e)
            return ServiceResult(
                service=service.name,
                success=False,
                pid=service.pid,
                port=service.port,
                error=str(e),
                duration_seconds=time.monotonic() - start_time,
            )

        logger.info("Stopped %s (PID %d)", service.name, service.pid)
        return ServiceResult(
            service=service.name,
            success=True,
            pid=service.pid,
            port=service.port,
            duration_seconds=time.monotonic() - start_time,
        )

    async def stop_service(
        self,
        name: str,
        project: ProjectProfile,
        *,
        force: bool = False,
    ) -> ServiceResult:
        """Stop one service, refusing if its direct dependents are running.

        Args:
            name: Service to stop.
            project: Project declaring the service.
            force: Stop even if dependents are running.

        Returns:
            The stop result; a service that is not running counts as stopped.

        Raises:
            UnknownServiceError: If the project declares no such service.
            DependentsRunningError: If dependents are running and force is not set.

        """
        graph = ServiceGraph(project.services)
        if name not in graph:
            raise UnknownServiceError([name])

        running = await self._discovery.find_running(project.services)
        target = next((s for s in running if s.name == name), None)
        if target is None:
            logger.info("Service %s is not running", name)
            return ServiceResult(service=name, success=True)

        running_names = [s.name for s in running]
        if not force and not graph.can_stop_safely(name, running_names):
            raise DependentsRunningError(name, graph.running_dependents(name, running_names))

        return await self._stop_one(target)

    # =========================================================================
    # Switch
    # =========================================================================

    async def switch(
        self,
        target: ProjectProfile,
        current: ProjectProfile | None = None,
        *,
        force: bool = False,
        stop_current: bool = True,
    ) -> tuple[StopResult | None, StartResult]:
        """Stop the current project's services, then start the target's.

        Args:
            target: Project to switch to.
            current: Project currently active, if any.
            force: Continue past stop failures and port conflicts.
            stop_current: Leave the current project's services running if False.

        Returns:
            The stop result (None if nothing was stopped) and the start result.

        Raises:
            StopFailedError: If stopping failed and force is not set.
            ResolutionError: If the target's services cannot be planned.
            PortConflictError: If the target's ports are bound and force is not set.

        """
        stop_result: StopResult | None = None
        if current is not None and stop_current:
            stop_result = await self.stop(current, force=force)
            if not stop_result.ok:
                logger.error("Aborting switch to '%s': %s", target.name, stop_result.summary())
                raise StopFailedError(stop_result)

        start_result = await self.start(target, force=force)
        return stop_result, start_result
