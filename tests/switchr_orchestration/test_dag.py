"""Tests for ServiceGraph - dependency graph building, validation and layering."""

import random

import pytest

from switchr_orchestration import (
    CycleDetectedError,
    DuplicateServiceError,
    MissingDependencyError,
    UnresolvableDependencyError,
)
from switchr_orchestration.dag import ServiceGraph
from switchr_orchestration.models import ServiceStatus

from .test_helpers import create_service


def _phase_names(graph: ServiceGraph) -> list[set[str]]:
    return [{s.name for s in phase} for phase in graph.compute_phases()]


def _is_rotation(candidate: list[str], true_cycle: list[str]) -> bool:
    """Check a closed path is a rotation of a closed reference cycle."""
    ring = true_cycle[:-1]
    path = candidate[:-1]
    if candidate[0] != candidate[-1] or len(path) != len(ring):
        return False
    doubled = ring + ring
    return any(doubled[i : i + len(path)] == path for i in range(len(ring)))


# =============================================================================
# Graph Construction
# =============================================================================


class TestServiceGraphConstruction:
    """Tests for nodes and edges in ServiceGraph."""

    def test_linear_chain_dependencies(self) -> None:
        """Linear chain A → B → C: B depends on A, C depends on B."""
        graph = ServiceGraph(
            [
                create_service("A"),
                create_service("B", ["A"]),
                create_service("C", ["B"]),
            ]
        )

        assert graph.get_dependencies("A") == set()
        assert graph.get_dependencies("B") == {"A"}
        assert graph.get_dependencies("C") == {"B"}

    def test_fan_out_dependents(self) -> None:
        """Fan-out: B and D depend on A, so A's dependents are {B, D}."""
        graph = ServiceGraph(
            [
                create_service("A"),
                create_service("B", ["A"]),
                create_service("D", ["A"]),
            ]
        )

        assert graph.get_dependents("A") == {"B", "D"}

    def test_dependents_are_direct_only(self) -> None:
        """C depends on B depends on A: C is not a dependent of A."""
        graph = ServiceGraph(
            [
                create_service("A"),
                create_service("B", ["A"]),
                create_service("C", ["B"]),
            ]
        )

        assert graph.get_dependents("A") == {"B"}

    def test_unknown_service_has_no_dependents(self) -> None:
        """Querying an unknown service returns empty sets rather than raising."""
        graph = ServiceGraph([create_service("A")])

        assert graph.get_dependents("ghost") == set()
        assert graph.get_dependencies("ghost") == set()

    def test_duplicate_names_rejected(self) -> None:
        """Two descriptors with the same name raise DuplicateServiceError."""
        with pytest.raises(DuplicateServiceError) as exc_info:
            ServiceGraph([create_service("api"), create_service("api")])

        assert exc_info.value.names == ["api"]

    def test_nodes_start_pending(self) -> None:
        """Every node is built with pending status."""
        graph = ServiceGraph([create_service("A"), create_service("B", ["A"])])

        assert graph.get_node("A").status == ServiceStatus.PENDING
        assert graph.get_node("B").status == ServiceStatus.PENDING

    def test_dependency_tree(self) -> None:
        """dependency_tree maps names to sorted direct dependencies."""
        graph = ServiceGraph(
            [
                create_service("db"),
                create_service("cache"),
                create_service("api", ["db", "cache"]),
            ]
        )

        assert graph.dependency_tree() == {
            "db": [],
            "cache": [],
            "api": ["cache", "db"],
        }

    def test_transitive_dependencies(self) -> None:
        """transitive_dependencies follows every edge down the chain."""
        graph = ServiceGraph(
            [
                create_service("db"),
                create_service("api", ["db"]),
                create_service("web", ["api"]),
                create_service("docs"),
            ]
        )

        assert graph.transitive_dependencies(["web"]) == {"web", "api", "db"}


# =============================================================================
# Reference Validation
# =============================================================================


class TestServiceGraphReferenceValidation:
    """Tests for unknown dependency detection."""

    def test_unknown_dependency_names_service_and_dependency(self) -> None:
        """A depends on ghost with no ghost descriptor: error names both."""
        graph = ServiceGraph([create_service("A", ["ghost"])])

        with pytest.raises(MissingDependencyError) as exc_info:
            graph.validate()

        assert exc_info.value.missing == [("A", "ghost")]
        assert "'A'" in str(exc_info.value)
        assert "'ghost'" in str(exc_info.value)

    def test_all_unknown_dependencies_reported_together(self) -> None:
        """Every broken reference is collected, not just the first."""
        graph = ServiceGraph(
            [
                create_service("A", ["ghost", "phantom"]),
                create_service("B", ["spectre"]),
            ]
        )

        with pytest.raises(MissingDependencyError) as exc_info:
            graph.validate_references()

        assert sorted(exc_info.value.missing) == [
            ("A", "ghost"),
            ("A", "phantom"),
            ("B", "spectre"),
        ]

    def test_reference_errors_reported_before_cycles(self) -> None:
        """validate() reports unknown references even if a cycle also exists."""
        graph = ServiceGraph(
            [
                create_service("A", ["B"]),
                create_service("B", ["A"]),
                create_service("C", ["ghost"]),
            ]
        )

        with pytest.raises(MissingDependencyError):
            graph.validate()


# =============================================================================
# Cycle Detection
# =============================================================================


class TestServiceGraphCycleDetection:
    """Tests for cycle detection and reported cycle paths."""

    def test_two_node_cycle_names_both_services(self) -> None:
        """A depends on B, B depends on A: cycle error names both."""
        graph = ServiceGraph([create_service("A", ["B"]), create_service("B", ["A"])])

        with pytest.raises(CycleDetectedError) as exc_info:
            graph.detect_cycles()

        assert set(exc_info.value.cycle) == {"A", "B"}
        assert exc_info.value.cycle[0] == exc_info.value.cycle[-1]
        assert "→" in str(exc_info.value)

    def test_three_node_cycle_is_rotation_of_true_cycle(self) -> None:
        """Reported path is a rotation of A → B → C → A."""
        # A depends on B, B on C, C on A
        graph = ServiceGraph(
            [
                create_service("A", ["B"]),
                create_service("B", ["C"]),
                create_service("C", ["A"]),
                create_service("D"),
            ]
        )

        with pytest.raises(CycleDetectedError) as exc_info:
            graph.detect_cycles()

        assert _is_rotation(exc_info.value.cycle, ["A", "B", "C", "A"])

    def test_self_dependency_is_a_cycle(self) -> None:
        """A depends on A: reported as the one-node cycle A → A."""
        graph = ServiceGraph([create_service("ok"), create_service("A", ["A"])])

        with pytest.raises(CycleDetectedError) as exc_info:
            graph.validate()

        assert exc_info.value.cycle == ["A", "A"]
        assert str(exc_info.value) == "Circular dependency detected: A → A"

    def test_self_dependency_does_not_block_own_stop(self) -> None:
        """A service never counts as its own running dependent."""
        graph = ServiceGraph([create_service("A", ["A"])])

        assert graph.can_stop_safely("A", ["A"]) is True

    def test_cycle_behind_acyclic_prefix(self) -> None:
        """Cycle path excludes the acyclic entry node that leads into it."""
        graph = ServiceGraph(
            [
                create_service("entry", ["X"]),
                create_service("X", ["Y"]),
                create_service("Y", ["X"]),
            ]
        )

        with pytest.raises(CycleDetectedError) as exc_info:
            graph.detect_cycles()

        assert "entry" not in exc_info.value.cycle
        assert _is_rotation(exc_info.value.cycle, ["X", "Y", "X"])

    def test_diamond_is_not_a_cycle(self) -> None:
        """Diamond (two paths to the same node) passes cycle detection."""
        graph = ServiceGraph(
            [
                create_service("db"),
                create_service("api", ["db"]),
                create_service("worker", ["db"]),
                create_service("web", ["api", "worker"]),
            ]
        )

        graph.validate()

    def test_long_chain_does_not_hit_recursion_limit(self) -> None:
        """A chain deeper than the interpreter recursion limit validates."""
        services = [create_service("s0")]
        services += [create_service(f"s{i}", [f"s{i - 1}"]) for i in range(1, 3000)]

        ServiceGraph(services).validate()


# =============================================================================
# Phase Layering
# =============================================================================


class TestServiceGraphPhases:
    """Tests for topological layering into phases."""

    def test_linear_chain_three_phases(self) -> None:
        """A, B(A), C(B) ⇒ [[A], [B], [C]]."""
        graph = ServiceGraph(
            [
                create_service("A"),
                create_service("B", ["A"]),
                create_service("C", ["B"]),
            ]
        )

        assert _phase_names(graph) == [{"A"}, {"B"}, {"C"}]

    def test_fan_out_shares_phase(self) -> None:
        """A, B(A), D(A) ⇒ [[A], [B, D]]."""
        graph = ServiceGraph(
            [
                create_service("A"),
                create_service("B", ["A"]),
                create_service("D", ["A"]),
            ]
        )

        assert _phase_names(graph) == [{"A"}, {"B", "D"}]

    def test_dependency_declared_after_dependent(self) -> None:
        """Declaration order does not let a dependent share its dependency's phase."""
        graph = ServiceGraph([create_service("B", ["A"]), create_service("A")])

        assert _phase_names(graph) == [{"A"}, {"B"}]

    def test_same_pass_placement_does_not_leak(self) -> None:
        """A service placed in a pass cannot unlock its dependent in the same pass."""
        graph = ServiceGraph([create_service("A"), create_service("B", ["A"])])

        assert _phase_names(graph) == [{"A"}, {"B"}]

    def test_empty_graph_has_no_phases(self) -> None:
        """No services produce no phases."""
        assert ServiceGraph([]).compute_phases() == []

    def test_stuck_layering_names_remaining_services(self) -> None:
        """Layering a cyclic graph without validation raises with stuck services."""
        graph = ServiceGraph(
            [
                create_service("ok"),
                create_service("A", ["B"]),
                create_service("B", ["A"]),
            ]
        )

        with pytest.raises(UnresolvableDependencyError) as exc_info:
            graph.compute_phases()

        assert exc_info.value.remaining == ["A", "B"]

    @pytest.mark.parametrize("seed", range(10))
    def test_random_acyclic_graphs_respect_phase_invariant(self, seed: int) -> None:
        """Every service lands in exactly one phase, after all its dependencies."""
        rng = random.Random(seed)
        names = [f"svc{i}" for i in range(25)]
        services = [
            create_service(
                name,
                rng.sample(names[:i], k=rng.randint(0, min(i, 3))),
            )
            for i, name in enumerate(names)
        ]
        rng.shuffle(services)

        phases = ServiceGraph(services).compute_phases()

        index_of: dict[str, int] = {}
        for index, phase in enumerate(phases):
            for service in phase:
                assert service.name not in index_of
                index_of[service.name] = index

        assert set(index_of) == set(names)
        for service in services:
            for dep in service.dependencies:
                assert index_of[service.name] > index_of[dep]


# =============================================================================
# Stop Safety
# =============================================================================


class TestServiceGraphStopSafety:
    """Tests for can_stop_safely()."""

    def test_can_stop_when_no_dependents_running(self) -> None:
        """db can stop when api (its dependent) is not running."""
        graph = ServiceGraph([create_service("db"), create_service("api", ["db"])])

        assert graph.can_stop_safely("db", ["db"]) is True

    def test_cannot_stop_with_running_dependent(self) -> None:
        """db cannot stop while api is running."""
        graph = ServiceGraph([create_service("db"), create_service("api", ["db"])])

        assert graph.can_stop_safely("db", ["db", "api"]) is False
        assert graph.running_dependents("db", ["db", "api"]) == ["api"]

    def test_stop_safety_is_not_transitive(self) -> None:
        """Only direct dependents block: web (depends on api) does not block db."""
        graph = ServiceGraph(
            [
                create_service("db"),
                create_service("api", ["db"]),
                create_service("web", ["api"]),
            ]
        )

        assert graph.can_stop_safely("db", ["db", "web"]) is True
