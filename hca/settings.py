from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Homarr
    homarr_url: str = field(default_factory=lambda: os.getenv("HCA_HOMARR_URL", "http://localhost:7575"))
    http_timeout_s: float = field(default_factory=lambda: _env_float("HCA_HTTP_TIMEOUT_S", 30.0))
    product_name: str = field(default_factory=lambda: os.getenv("HCA_PRODUCT_NAME", "homarr"))
    max_onboarding_steps: int = field(default_factory=lambda: _env_int("HCA_MAX_ONBOARDING_STEPS", 20))

    # Files
    state_file: str = field(
        default_factory=lambda: os.getenv("HCA_STATE_FILE", "/var/lib/homarr-container-adapter/state.json")
    )
    branding_file: str = field(
        default_factory=lambda: os.getenv("HCA_BRANDING_FILE", "/etc/homarr-container-adapter/branding.json")
    )

    # Docker
    # None means docker.from_env() (DOCKER_HOST or the default socket).
    docker_url: str | None = field(default_factory=lambda: os.getenv("HCA_DOCKER_URL") or None)
    label_prefix: str = field(default_factory=lambda: os.getenv("HCA_LABEL_PREFIX", "homarr"))
    watch_events: bool = field(default_factory=lambda: _env_bool("HCA_WATCH_EVENTS", True))

    # Loop knobs
    poll_interval_s: int = field(default_factory=lambda: _env_int("HCA_POLL_INTERVAL_S", 300))
    queue_size: int = field(default_factory=lambda: _env_int("HCA_QUEUE_SIZE", 256))
    resubscribe_delay_s: float = field(default_factory=lambda: _env_float("HCA_RESUBSCRIBE_DELAY_S", 5.0))

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the environment as it is now."""
        return cls()
