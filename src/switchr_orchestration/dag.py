"""Service dependency graph.

This module provides the ServiceGraph class that builds the dependency graph
from service descriptors, validates it and layers it into startup phases.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from switchr_orchestration.errors import (
    CycleDetectedError,
    DuplicateServiceError,
    MissingDependencyError,
    UnresolvableDependencyError,
)
from switchr_orchestration.models import ServiceDescriptor, ServiceStatus

logger = logging.getLogger(__name__)


@dataclass
class ServiceNode:
    """A descriptor wrapped with its reverse edges and lifecycle status."""

    descriptor: ServiceDescriptor
    dependents: set[str] = field(default_factory=set)
    status: ServiceStatus = ServiceStatus.PENDING

    @property
    def name(self) -> str:
        """Service name."""
        return self.descriptor.name

    @property
    def dependencies(self) -> frozenset[str]:
        """Names of the services this service depends on."""
        return self.descriptor.dependencies


class ServiceGraph:
    """Directed graph of services keyed by name.

    Edges point from a service to its dependencies; the reverse edges
    (dependents) are computed once at construction.
    """

    def __init__(self, services: Iterable[ServiceDescriptor]) -> None:
        """Build the graph from service descriptors.

        Args:
            services: Service descriptors; names must be unique.

        Raises:
            DuplicateServiceError: If two descriptors share a name.

        """
        self._nodes: dict[str, ServiceNode] = {}
        self._build_graph(services)

    def _build_graph(self, services: Iterable[ServiceDescriptor]) -> None:
        """Create all nodes, then the reverse dependent edges."""
        duplicates: list[str] = []
        for service in services:
            if service.name in self._nodes:
                duplicates.append(service.name)
                continue
            self._nodes[service.name] = ServiceNode(descriptor=service)

        if duplicates:
            raise DuplicateServiceError(duplicates)

        for name, node in self._nodes.items():
            for dep in node.dependencies:
                dep_node = self._nodes.get(dep)
                if dep_node is not None:
                    dep_node.dependents.add(name)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    @property
    def names(self) -> list[str]:
        """Service names in declaration order."""
        return list(self._nodes)

    def get_node(self, name: str) -> ServiceNode:
        """Get the node for a service.

        Raises:
            KeyError: If the service is not in the graph.

        """
        return self._nodes[name]

    def get_dependencies(self, name: str) -> set[str]:
        """Get the direct dependencies of a service (empty if unknown)."""
        node = self._nodes.get(name)
        return set(node.dependencies) if node else set()

    def get_dependents(self, name: str) -> set[str]:
        """Get the services that directly depend on a service.

        Only direct reverse edges are returned, not transitive dependents.
        Unknown services have no dependents.
        """
        node = self._nodes.get(name)
        return set(node.dependents) if node else set()

    def running_dependents(self, name: str, running: Iterable[str]) -> list[str]:
        """Get the direct dependents of a service that are currently running."""
        running_names = set(running) - {name}
        return sorted(self.get_dependents(name) & running_names)

    def can_stop_safely(self, name: str, running: Iterable[str]) -> bool:
        """Check whether a service can be stopped without stranding dependents.

        This is a local, non-transitive check meant for stopping one service
        interactively. Whole-project shutdown uses the reversed plan instead.

        Args:
            name: Service to stop.
            running: Names of services currently running.

        Returns:
            True if none of the service's direct dependents are running.

        """
        return not self.running_dependents(name, running)

    def dependency_tree(self) -> dict[str, list[str]]:
        """Map each service name to its sorted direct dependencies."""
        return {name: sorted(node.dependencies) for name, node in self._nodes.items()}

    def transitive_dependencies(self, names: Iterable[str]) -> set[str]:
        """Collect the given services plus everything they depend on.

        Unknown names are included as-is so that validation can report them.
        """
        # Iterative walk to avoid recursion limits on long chains
        collected: set[str] = set()
        to_visit = list(names)
        while to_visit:
            name = to_visit.pop()
            if name in collected:
                continue
            collected.add(name)
            to_visit.extend(self.get_dependencies(name))
        return collected

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self) -> None:
        """Validate references, then check for cycles.

        Raises:
            MissingDependencyError: If any dependency names an unknown service.
            CycleDetectedError: If the graph contains a dependency cycle.

        """
        self.validate_references()
        self.detect_cycles()

    def validate_references(self) -> None:
        """Check every dependency refers to a known service.

        All broken references are collected and reported together.

        Raises:
            MissingDependencyError: If any dependency names an unknown service.

        """
        missing = [
            (name, dep)
            for name, node in self._nodes.items()
            for dep in sorted(node.dependencies)
            if dep not in self._nodes
        ]
        if missing:
            raise MissingDependencyError(missing)

    def detect_cycles(self) -> None:
        """Depth-first search for a dependency cycle.

        Raises:
            CycleDetectedError: With the exact cycle path, e.g. ``A → B → A``.

        """
        cycle = self._find_cycle()
        if cycle is not None:
            raise CycleDetectedError(cycle)

    def _find_cycle(self) -> list[str] | None:
        """Return the first cycle found as a closed path, or None."""
        visited: set[str] = set()

        for root in self._nodes:
            if root in visited:
                continue

            # path mirrors the recursion stack; on_path gives O(1) membership
            path = [root]
            on_path = {root}
            visited.add(root)
            pending = [iter(sorted(self._nodes[root].dependencies))]

            while pending:
                dep = next(pending[-1], None)
                if dep is None:
                    pending.pop()
                    on_path.discard(path.pop())
                    continue
                if dep in on_path:
                    return [*path[path.index(dep) :], dep]
                if dep in visited or dep not in self._nodes:
                    continue
                visited.add(dep)
                path.append(dep)
                on_path.add(dep)
                pending.append(iter(sorted(self._nodes[dep].dependencies)))

        return None

    # =========================================================================
    # Layering
    # =========================================================================

    def compute_phases(self) -> list[list[ServiceDescriptor]]:
        """Layer the graph into startup phases.

        Each pass collects every unplaced service whose dependencies were all
        placed by earlier passes; that set becomes the next phase. Order
        within a phase carries no meaning.

        Returns:
            Phases in startup order.

        Raises:
            UnresolvableDependencyError: If a pass places nothing while
                services remain (only possible when cycle detection was skipped).

        """
        placed: set[str] = set()
        remaining = list(self._nodes)
        phases: list[list[ServiceDescriptor]] = []

        while remaining:
            ready = [
                name for name in remaining if self._nodes[name].dependencies <= placed
            ]
            if not ready:
                raise UnresolvableDependencyError(remaining)

            phases.append([self._nodes[name].descriptor for name in ready])
            placed.update(ready)
            remaining = [name for name in remaining if name not in placed]

        return phases
