"""Shared pytest fixtures for switchr-orchestration tests."""

import pytest

from switchr_orchestration.configuration import OrchestratorConfig
from switchr_orchestration.orchestrator import Orchestrator
from switchr_orchestration.supervisor import ProcessSupervisor

from .test_helpers import FakeProcessUtils, create_fast_config

# =============================================================================
# Collaborator Fixtures
# =============================================================================


@pytest.fixture
def fast_config() -> OrchestratorConfig:
    """Config with millisecond delays."""
    return create_fast_config()


@pytest.fixture
def fake_utils() -> FakeProcessUtils:
    """Fresh in-memory process layer."""
    return FakeProcessUtils()


@pytest.fixture
def supervisor(
    fake_utils: FakeProcessUtils, fast_config: OrchestratorConfig
) -> ProcessSupervisor:
    """Supervisor wired to the fake process layer."""
    return ProcessSupervisor(fake_utils, fast_config)


@pytest.fixture
def orchestrator(
    fake_utils: FakeProcessUtils, fast_config: OrchestratorConfig
) -> Orchestrator:
    """Orchestrator wired to the fake process layer."""
    return Orchestrator(fake_utils, fast_config)
