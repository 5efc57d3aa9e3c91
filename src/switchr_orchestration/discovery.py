"""Rediscovery of running services by OS probing.

Nothing about a previous start is persisted. Services with a declared port
are found through the process listening on it; services without one are
matched against process command lines.
"""

import asyncio
import logging
from collections.abc import Iterable

from switchr_orchestration.models import RunningService, ServiceDescriptor
from switchr_orchestration.process import ProcessUtils

logger = logging.getLogger(__name__)


class ServiceDiscovery:
    """Finds which of a project's services are currently running."""

    def __init__(self, process_utils: ProcessUtils) -> None:
        self._utils = process_utils

    async def find_running(
        self, services: Iterable[ServiceDescriptor]
    ) -> list[RunningService]:
        """Probe the OS for each service and return the ones found running."""
        loop = asyncio.get_running_loop()
        running: list[RunningService] = []

        for service in services:
            if service.port is not None:
                pid = await loop.run_in_executor(
                    None, self._utils.owner_of_port, service.port
                )
            else:
                pid = await loop.run_in_executor(
                    None, self._utils.find_by_command, service.command
                )

            if pid is None:
                continue

            logger.debug("Discovered %s running as PID %d", service.name, pid)
            running.append(
                RunningService(
                    name=service.name,
                    pid=pid,
                    port=service.port,
                    command=service.command,
                )
            )

        return running
