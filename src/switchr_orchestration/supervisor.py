"""Process supervisor for a single service.

The supervisor turns one ServiceDescriptor into a confirmed-running process:
it composes the environment, spawns the command detached, confirms the
process survived its settle window and waits for readiness. It also drives
the graceful-then-forceful termination of one running process.
"""

import asyncio
import logging
import os
import time
from collections.abc import Mapping

from switchr_orchestration.configuration import OrchestratorConfig
from switchr_orchestration.errors import (
    ProcessCrashedError,
    ReadinessTimeoutError,
    SpawnError,
    TerminationError,
)
from switchr_orchestration.models import RunningService, ServiceDescriptor
from switchr_orchestration.process import ProcessUtils

logger = logging.getLogger(__name__)


def compose_environment(
    project_env: Mapping[str, str],
    service_env: Mapping[str, str],
    system_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Merge environment layers with increasing precedence.

    The system environment is overridden by project-wide variables, which
    are in turn overridden by the service's own variables.

    Args:
        project_env: Project-wide variables.
        service_env: Service-specific variables.
        system_env: Ambient environment; defaults to os.environ.

    Returns:
        The merged environment.

    """
    base = os.environ if system_env is None else system_env
    return {**base, **project_env, **service_env}


def parse_command(command: str) -> tuple[str, list[str]]:
    """Split a command string into executable and arguments on whitespace.

    No shell interpretation happens: quotes and globs are passed literally.

    Raises:
        ValueError: If the command is blank.

    """
    parts = command.split()
    if not parts:
        raise ValueError("Command is empty")
    return parts[0], parts[1:]


class ProcessSupervisor:
    """Launches, readiness-gates and terminates individual service processes."""

    def __init__(self, process_utils: ProcessUtils, config: OrchestratorConfig) -> None:
        """Initialise supervisor with its OS collaborator and timings.

        Args:
            process_utils: OS abstraction used for every process and port call.
            config: Orchestrator timing configuration.

        """
        self._utils = process_utils
        self._config = config

    async def start(
        self,
        service: ServiceDescriptor,
        project_path: str,
        project_env: Mapping[str, str],
        timeout: float | None = None,
    ) -> RunningService:
        """Launch a service and wait until it is ready.

        Args:
            service: The service to start.
            project_path: Fallback working directory.
            project_env: Project-wide environment variables.
            timeout: Readiness timeout in seconds; defaults to the configured one.

        Returns:
            The running service.

        Raises:
            SpawnError: If no process id was obtained.
            ProcessCrashedError: If the process exited within the settle window.
            ReadinessTimeoutError: If the declared port never became bound.

        """
        running = await self.launch(service, project_path, project_env)
        await self.wait_until_ready(service, timeout)
        return running

    async def launch(
        self,
        service: ServiceDescriptor,
        project_path: str,
        project_env: Mapping[str, str],
    ) -> RunningService:
        """Spawn a service process and confirm it is still alive after settling.

        Raises:
            SpawnError: If no process id was obtained.
            ProcessCrashedError: If the process exited within the settle window.

        """
        try:
            command, args = parse_command(service.command)
        except ValueError as e:
            raise SpawnError(service.name, f"Invalid command for {service.name}: {e}") from e

        env = compose_environment(project_env, service.environment)
        cwd = service.working_directory or project_path

        loop = asyncio.get_running_loop()
        try:
            handle = await loop.run_in_executor(
                None, self._utils.spawn, command, args, cwd, env
            )
        except OSError as e:
            raise SpawnError(
                service.name, f"Failed to start process for {service.name}: {e}"
            ) from e

        if handle.pid is None:
            raise SpawnError(service.name, f"Failed to start process for {service.name}")

        await asyncio.sleep(self._config.settle_delay)

        if not self._utils.is_alive(handle.pid):
            raise ProcessCrashedError(service.name, handle.pid)

        logger.debug("Started service %s with PID %d", service.name, handle.pid)
        return RunningService(
            name=service.name,
            pid=handle.pid,
            port=service.port,
            command=service.command,
        )

    async def wait_until_ready(
        self, service: ServiceDescriptor, timeout: float | None = None
    ) -> None:
        """Wait for a launched service to become usable by its dependents.

        A service with a port is ready once the port is observed bound. A
        service without one is ready after a fixed short delay, with no polling.

        Raises:
            ReadinessTimeoutError: If the port is still free when the timeout elapses.

        """
        if service.port is None:
            await asyncio.sleep(self._config.portless_ready_delay)
            return

        port = service.port
        timeout = self._config.readiness_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()

        try:
            async with asyncio.timeout(timeout):
                while await loop.run_in_executor(
                    None, self._utils.is_port_free, port, self._config.host
                ):
                    await asyncio.sleep(self._config.readiness_poll_interval)
        except TimeoutError as e:
            raise ReadinessTimeoutError(service.name, port, timeout) from e

        logger.debug("Service %s is ready on port %d", service.name, port)

    async def stop(self, service: RunningService) -> None:
        """Terminate a running service, escalating if it ignores the polite signal.

        Sends a graceful signal and polls liveness through the grace window.
        If the process outlives it, a forceful signal is sent exactly once,
        followed by one liveness re-check.

        Raises:
            TerminationError: If the process is still alive after the forceful signal.

        """
        pid = service.pid
        self._utils.terminate(pid)

        if await self._wait_for_exit(pid, self._config.effective_grace_period):
            logger.debug("Stopped service %s (PID %d) gracefully", service.name, pid)
            return

        logger.warning(
            "Service %s (PID %d) ignored graceful shutdown, sending kill",
            service.name,
            pid,
        )
        self._utils.terminate(pid, force=True)
        await asyncio.sleep(self._config.kill_recheck_delay)

        if self._utils.is_alive(pid):
            raise TerminationError(service.name, pid)

        logger.debug("Killed service %s (PID %d)", service.name, pid)

    async def _wait_for_exit(self, pid: int, window: float) -> bool:
        """Poll liveness until the process exits or the window closes."""
        deadline = time.monotonic() + window
        while self._utils.is_alive(pid):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(self._config.termination_poll_interval, remaining))
        return True
