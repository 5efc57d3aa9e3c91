"""Pre-flight port conflict detection.

The check is advisory: a port can still be taken between this check and the
launched process binding it. The supervisor's readiness timeout is the
authoritative failure signal in that case.
"""

import asyncio
import logging
from collections.abc import Iterable

from switchr_orchestration.errors import PortConflictError
from switchr_orchestration.models import PortConflict, ServiceDescriptor
from switchr_orchestration.process import ProcessUtils

logger = logging.getLogger(__name__)


class ConflictDetector:
    """Finds declared ports that are already bound by other processes."""

    def __init__(self, process_utils: ProcessUtils, host: str = "127.0.0.1") -> None:
        self._utils = process_utils
        self._host = host

    async def find_conflicts(
        self, services: Iterable[ServiceDescriptor]
    ) -> list[PortConflict]:
        """Check every declared port and collect all conflicts.

        Owning pids are resolved best-effort; a conflict without a
        resolvable owner is still a conflict.
        """
        conflicts: list[PortConflict] = []
        loop = asyncio.get_running_loop()

        for service in services:
            if service.port is None:
                continue
            is_free = await loop.run_in_executor(
                None, self._utils.is_port_free, service.port, self._host
            )
            if is_free:
                continue

            pid = await loop.run_in_executor(
                None, self._utils.owner_of_port, service.port
            )
            conflicts.append(PortConflict(service=service.name, port=service.port, pid=pid))

        return conflicts

    async def check(self, services: Iterable[ServiceDescriptor]) -> None:
        """Raise if any declared port is already bound.

        Raises:
            PortConflictError: Listing every conflict found, not just the first.

        """
        conflicts = await self.find_conflicts(services)
        if conflicts:
            for conflict in conflicts:
                logger.warning("Port conflict: %s", conflict.describe())
            raise PortConflictError(conflicts)
