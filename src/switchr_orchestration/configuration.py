"""Timing and policy configuration for the orchestrator.

All waits in the engine are bounded by values held here. They are fixed
constants of a run, never derived from graph size.
"""

import os
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Environment variables consulted by from_properties() when a key is absent
_ENV_OVERRIDES: dict[str, str] = {
    "readiness_timeout": "SWITCHR_READINESS_TIMEOUT",
    "inter_phase_delay": "SWITCHR_INTER_PHASE_DELAY",
    "grace_period": "SWITCHR_GRACE_PERIOD",
    "stop_timeout": "SWITCHR_STOP_TIMEOUT",
}


class OrchestratorConfig(BaseModel):
    """Immutable orchestrator configuration.

    Example:
        ```python
        config = OrchestratorConfig.from_properties({"readiness_timeout": 60})
        ```

    """

    model_config = ConfigDict(
        # Immutable - configuration cannot be modified after creation
        frozen=True,
        # Strict - extra fields not in the model are rejected
        extra="forbid",
    )

    settle_delay: float = Field(
        default=0.5, gt=0, description="Delay before the post-spawn liveness probe"
    )
    readiness_timeout: float = Field(
        default=30.0, gt=0, description="Default wait for a declared port to bind"
    )
    readiness_poll_interval: float = Field(
        default=1.0, gt=0, description="Interval between port readiness probes"
    )
    portless_ready_delay: float = Field(
        default=1.0,
        ge=0,
        description="Fixed delay after which a service without a port is ready",
    )
    inter_phase_delay: float = Field(
        default=1.5, ge=0, description="Pause between consecutive startup phases"
    )
    grace_period: float = Field(
        default=5.0, gt=0, description="Graceful termination window"
    )
    stop_timeout: float = Field(
        default=10.0, gt=0, description="Overall per-service stop budget"
    )
    termination_poll_interval: float = Field(
        default=0.1, gt=0, description="Liveness poll interval during the grace window"
    )
    kill_recheck_delay: float = Field(
        default=1.0, ge=0, description="Wait after the forceful signal before re-checking"
    )
    host: str = Field(default="127.0.0.1", description="Host used for port probes")

    @model_validator(mode="after")
    def validate_poll_intervals(self) -> Self:
        """Validate poll intervals fit inside the windows they poll."""
        if self.readiness_poll_interval > self.readiness_timeout:
            raise ValueError("readiness_poll_interval cannot exceed readiness_timeout")
        if self.termination_poll_interval > self.grace_period:
            raise ValueError("termination_poll_interval cannot exceed grace_period")
        return self

    @property
    def effective_grace_period(self) -> float:
        """Grace window actually used, kept strictly below the stop budget."""
        # Leave room for the forceful kill and its re-check
        ceiling = self.stop_timeout - self.kill_recheck_delay - self.termination_poll_interval
        return max(self.termination_poll_interval, min(self.grace_period, ceiling))

    @classmethod
    def from_properties(cls, properties: dict[str, Any]) -> Self:
        """Create configuration from a properties mapping with environment fallback.

        Environment variables:
        - SWITCHR_READINESS_TIMEOUT: readiness_timeout in seconds
        - SWITCHR_INTER_PHASE_DELAY: inter_phase_delay in seconds
        - SWITCHR_GRACE_PERIOD: grace_period in seconds
        - SWITCHR_STOP_TIMEOUT: stop_timeout in seconds

        Args:
            properties: Configuration properties; explicit keys win over
                environment variables.

        Returns:
            Validated configuration instance.

        Raises:
            ValidationError: If properties are invalid.

        """
        merged = dict(properties)
        for key, env_var in _ENV_OVERRIDES.items():
            if key not in merged:
                env_value = os.getenv(env_var)
                if env_value:
                    merged[key] = env_value
        return cls.model_validate(merged)
