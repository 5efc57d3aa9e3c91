"""Planner for phased service startup and shutdown.

The Planner is responsible for:
1. Building the ServiceGraph from descriptors
2. Validating references and rejecting cycles before anything runs
3. Layering the graph into an immutable StartupPlan
4. Deriving the shutdown order as the exact mirror of startup
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from switchr_orchestration.dag import ServiceGraph
from switchr_orchestration.errors import UnknownServiceError
from switchr_orchestration.models import ServiceDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartupPlan:
    """Immutable, validated startup plan.

    Each phase holds services with no edges among them whose dependencies
    all sit in strictly earlier phases. Every service appears exactly once.
    """

    phases: tuple[tuple[ServiceDescriptor, ...], ...]
    graph: ServiceGraph

    @property
    def total_services(self) -> int:
        """Number of services across all phases."""
        return sum(len(phase) for phase in self.phases)

    @property
    def phase_count(self) -> int:
        """Number of phases."""
        return len(self.phases)

    @property
    def services(self) -> list[ServiceDescriptor]:
        """All services in phase order."""
        return [service for phase in self.phases for service in phase]

    def phase_index(self, name: str) -> int:
        """Get the zero-based phase a service is scheduled in.

        Raises:
            KeyError: If the service is not part of the plan.

        """
        for index, phase in enumerate(self.phases):
            if any(service.name == name for service in phase):
                return index
        raise KeyError(name)

    def shutdown_phases(self) -> tuple[tuple[ServiceDescriptor, ...], ...]:
        """Phases in shutdown order: exactly the startup phases reversed."""
        return self.phases[::-1]


class Planner:
    """Plans service startup by validating and layering dependencies upfront."""

    def create_startup_plan(
        self,
        services: Sequence[ServiceDescriptor],
        targets: Iterable[str] | None = None,
    ) -> StartupPlan:
        """Create a startup plan from service descriptors.

        Args:
            services: All services declared for the project.
            targets: Optional service names to start. When given, only these
                services and their transitive dependencies are planned.

        Returns:
            Validated, immutable StartupPlan.

        Raises:
            DuplicateServiceError: If service names are not unique.
            MissingDependencyError: If a dependency is unknown.
            UnknownServiceError: If a target is not a declared service.
            CycleDetectedError: If a dependency cycle is detected.
            UnresolvableDependencyError: If layering cannot place every service.

        """
        graph = ServiceGraph(services)
        graph.validate()

        if targets is not None:
            graph = self._select(graph, services, list(targets))

        phases = graph.compute_phases()
        plan = StartupPlan(
            phases=tuple(tuple(phase) for phase in phases),
            graph=graph,
        )

        logger.debug("Created startup plan with %d phases", plan.phase_count)
        for index, phase in enumerate(plan.phases):
            logger.debug(
                "Phase %d: %s", index, ", ".join(service.name for service in phase)
            )

        return plan

    def create_shutdown_plan(
        self, services: Sequence[ServiceDescriptor]
    ) -> tuple[tuple[ServiceDescriptor, ...], ...]:
        """Create the shutdown order for a set of services.

        No independent computation is done: the result is the startup plan's
        phase list reversed.

        Raises:
            ResolutionError: Under the same conditions as create_startup_plan().

        """
        return self.create_startup_plan(services).shutdown_phases()

    def describe(self, plan: StartupPlan) -> list[str]:
        """Render a plan as summary lines, one per phase plus a total line."""
        lines = [
            f"Phase {index + 1}: {', '.join(service.name for service in phase)}"
            for index, phase in enumerate(plan.phases)
        ]
        lines.append(
            f"Total: {plan.total_services} services in {plan.phase_count} phases"
        )
        return lines

    def _select(
        self,
        graph: ServiceGraph,
        services: Sequence[ServiceDescriptor],
        targets: list[str],
    ) -> ServiceGraph:
        """Narrow a validated graph to the targets and their dependencies.

        Raises:
            UnknownServiceError: If a target names an unknown service.

        """
        unknown = [name for name in targets if name not in graph]
        if unknown:
            raise UnknownServiceError(unknown)

        selected = graph.transitive_dependencies(targets)
        return ServiceGraph(service for service in services if service.name in selected)
