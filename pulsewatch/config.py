"""Engine Configuration."""

from pydantic_settings import BaseSettings

from pulsewatch.engine.models import ProbeMethod, StatusPolicy


class EngineSettings(BaseSettings):
    """Settings for the Pulsewatch engine."""

    # Storage
    database_path: str = "data/uptime.db"

    # Probing
    concurrency_limit: int = 20
    probe_timeout: float = 10.0  # seconds
    probe_method: ProbeMethod = ProbeMethod.GET
    follow_redirects: bool = True
    status_policy: StatusPolicy = StatusPolicy.LENIENT
    user_agent: str = "pulsewatch/0.1"

    # Scheduling
    tick_interval: float = 1.0  # seconds
    reconcile_interval: float = 5.0  # seconds
    drain_timeout: float | None = None  # defaults to probe_timeout + 1s

    # Result store writes
    store_write_retries: int = 3
    store_retry_delay: float = 0.5  # seconds

    # Check creation
    min_interval_seconds: int = 10

    class Config:
        env_prefix = "PULSEWATCH_"

    @property
    def effective_drain_timeout(self) -> float:
        """Drain window granted to in-flight probes on shutdown."""
        if self.drain_timeout is not None:
            return self.drain_timeout
        return self.probe_timeout + 1.0


settings = EngineSettings()
