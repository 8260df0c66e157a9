"""Controller configuration models."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from federation_manager.exceptions import ConfigurationError

DEFAULT_FEDERATION_NAMESPACE = "kube-federation-system"


class ClusterHealthCheckConfig(BaseModel):
    """Timing and thresholds for member cluster health probes.

    All durations are in seconds.
    """

    period: float = 10.0
    timeout: float = 3.0
    failure_threshold: int = 3
    success_threshold: int = 1

    @field_validator("period", "timeout", "failure_threshold", "success_threshold")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate that health check settings are positive."""
        if v <= 0:
            raise ValueError("health check settings must be positive")
        return v


class WorkerTiming(BaseModel):
    """Queue timing for a reconcile worker."""

    interval: float = 1.0
    retry_delay: float = 10.0
    cluster_sync_delay: float = 30.0
    initial_backoff: float = 5.0
    max_backoff: float = 300.0
    max_retries: int = 5
    workers: int = 2

    @field_validator("workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Validate that at least one worker runs."""
        if v < 1:
            raise ValueError("workers must be at least 1")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate max_retries is not negative."""
        if v < 0:
            raise ValueError("max_retries cannot be negative")
        return v

    @model_validator(mode="after")
    def validate_backoff_bounds(self) -> "WorkerTiming":
        """Validate the backoff window."""
        if self.initial_backoff <= 0:
            raise ValueError("initial_backoff must be positive")
        if self.max_backoff < self.initial_backoff:
            raise ValueError("max_backoff must not be smaller than initial_backoff")
        return self


class ControllerConfig(BaseModel):
    """Top level controller manager configuration."""

    federation_namespace: str = DEFAULT_FEDERATION_NAMESPACE
    target_namespace: str = ""
    cluster_available_delay: float = 20.0
    cluster_unavailable_delay: float = 60.0
    small_delay: float = 3.0
    minimize_latency: bool = False
    health_check: ClusterHealthCheckConfig = Field(default_factory=ClusterHealthCheckConfig)
    worker: WorkerTiming = Field(default_factory=WorkerTiming)

    @field_validator("federation_namespace")
    @classmethod
    def validate_federation_namespace(cls, v: str) -> str:
        """Validate federation namespace is not empty."""
        if not v:
            raise ValueError("federation_namespace cannot be empty")
        return v

    def apply_minimized_latency(self) -> "ControllerConfig":
        """Shrink every delay so that tests observe changes quickly."""
        self.cluster_available_delay = 1.0
        self.cluster_unavailable_delay = 1.0
        self.small_delay = 0.02
        self.worker = self.worker.model_copy(
            update={
                "interval": 0.05,
                "retry_delay": 0.05,
                "cluster_sync_delay": 0.05,
                "initial_backoff": 0.05,
                "max_backoff": 2.0,
            }
        )
        self.minimize_latency = True
        return self

    def save(self, path: str | Path) -> None:
        """Save configuration to YAML file."""
        with open(path, "w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False)

    @classmethod
    def load(cls, path: str | Path) -> "ControllerConfig":
        """Load configuration from YAML file.

        Raises:
            ConfigurationError: If the file is missing, unparseable or invalid
        """
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                "Create one with 'fed-mgr run --help' defaults or omit --config",
            )
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Could not parse configuration file: {path}", str(e))
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Invalid configuration in {path}", "Expected a mapping at the top level"
            )

        try:
            config = cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {path}", str(e))

        if config.minimize_latency:
            config.apply_minimized_latency()
        return config
