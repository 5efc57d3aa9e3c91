"""Tests for Planner and StartupPlan.

For graph-level validation details, see test_dag.py.
"""

import pytest

from switchr_orchestration import (
    CycleDetectedError,
    MissingDependencyError,
    UnknownServiceError,
)
from switchr_orchestration.planner import Planner, StartupPlan

from .test_helpers import create_service


def _names(phases: tuple) -> list[set[str]]:
    return [{s.name for s in phase} for phase in phases]


# =============================================================================
# Startup Plans
# =============================================================================


class TestPlannerStartupPlan:
    """Tests for successful startup planning."""

    def test_linear_chain_plan(self) -> None:
        """A, B(A), C(B) ⇒ [[A], [B], [C]] with 3 phases."""
        plan = Planner().create_startup_plan(
            [
                create_service("A"),
                create_service("B", ["A"]),
                create_service("C", ["B"]),
            ]
        )

        assert isinstance(plan, StartupPlan)
        assert _names(plan.phases) == [{"A"}, {"B"}, {"C"}]
        assert plan.phase_count == 3
        assert plan.total_services == 3

    def test_fan_out_plan(self) -> None:
        """A, B(A), D(A) ⇒ [[A], [B, D]]."""
        plan = Planner().create_startup_plan(
            [
                create_service("A"),
                create_service("B", ["A"]),
                create_service("D", ["A"]),
            ]
        )

        assert _names(plan.phases) == [{"A"}, {"B", "D"}]
        assert plan.phase_index("B") == plan.phase_index("D") == 1

    def test_derived_counts_follow_phases(self) -> None:
        """total_services and phase_count are derived from the phase list."""
        plan = Planner().create_startup_plan(
            [create_service("db"), create_service("cache"), create_service("api", ["db"])]
        )

        assert plan.total_services == sum(len(p) for p in plan.phases)
        assert plan.phase_count == len(plan.phases)
        assert [s.name for s in plan.services][-1] == "api"

    def test_phase_index_unknown_service_raises(self) -> None:
        """phase_index() raises KeyError for services outside the plan."""
        plan = Planner().create_startup_plan([create_service("A")])

        with pytest.raises(KeyError):
            plan.phase_index("ghost")

    def test_plan_is_immutable(self) -> None:
        """StartupPlan fields cannot be reassigned."""
        plan = Planner().create_startup_plan([create_service("A")])

        with pytest.raises(AttributeError):
            plan.phases = ()  # type: ignore[misc]


# =============================================================================
# Shutdown Plans
# =============================================================================


class TestPlannerShutdownPlan:
    """Tests for shutdown ordering."""

    def test_shutdown_is_reverse_of_startup(self) -> None:
        """Shutdown phases are exactly the startup phases reversed."""
        services = [
            create_service("db"),
            create_service("cache"),
            create_service("api", ["db", "cache"]),
            create_service("web", ["api"]),
        ]
        planner = Planner()

        startup = planner.create_startup_plan(services)
        shutdown = planner.create_shutdown_plan(services)

        assert list(shutdown) == list(reversed(startup.phases))
        assert startup.shutdown_phases() == shutdown


# =============================================================================
# Targeted Plans
# =============================================================================


class TestPlannerTargets:
    """Tests for planning a subset of services."""

    def test_target_pulls_in_transitive_dependencies(self) -> None:
        """Planning web includes api and db but not unrelated docs."""
        services = [
            create_service("db"),
            create_service("api", ["db"]),
            create_service("web", ["api"]),
            create_service("docs"),
        ]

        plan = Planner().create_startup_plan(services, targets=["web"])

        assert _names(plan.phases) == [{"db"}, {"api"}, {"web"}]

    def test_unknown_target_raises(self) -> None:
        """An undeclared target raises UnknownServiceError."""
        with pytest.raises(UnknownServiceError) as exc_info:
            Planner().create_startup_plan([create_service("db")], targets=["ghost"])

        assert exc_info.value.names == ["ghost"]

    def test_targets_still_validate_whole_project(self) -> None:
        """A cycle elsewhere in the project still fails targeted planning."""
        services = [
            create_service("db"),
            create_service("A", ["B"]),
            create_service("B", ["A"]),
        ]

        with pytest.raises(CycleDetectedError):
            Planner().create_startup_plan(services, targets=["db"])


# =============================================================================
# Errors and Summaries
# =============================================================================


class TestPlannerErrors:
    """Tests for planning failures."""

    def test_cycle_fails_planning(self) -> None:
        """A(B), B(A) fails with a cycle error naming both."""
        with pytest.raises(CycleDetectedError) as exc_info:
            Planner().create_startup_plan(
                [create_service("A", ["B"]), create_service("B", ["A"])]
            )

        assert {"A", "B"} <= set(exc_info.value.cycle)

    def test_unknown_dependency_fails_planning(self) -> None:
        """A(ghost) fails naming A and ghost."""
        with pytest.raises(MissingDependencyError) as exc_info:
            Planner().create_startup_plan([create_service("A", ["ghost"])])

        assert ("A", "ghost") in exc_info.value.missing


class TestPlannerDescribe:
    """Tests for human-readable plan summaries."""

    def test_describe_lists_phases_and_total(self) -> None:
        """describe() yields one line per phase plus a total line."""
        planner = Planner()
        plan = planner.create_startup_plan(
            [create_service("A"), create_service("B", ["A"])]
        )

        assert planner.describe(plan) == [
            "Phase 1: A",
            "Phase 2: B",
            "Total: 2 services in 2 phases",
        ]
