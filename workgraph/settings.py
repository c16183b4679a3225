"""Engine configuration management."""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


FAILURE_POLICIES = ("continue", "abort")
LOG_FORMATS = ("json", "text")


@dataclass
class Settings:
    """Engine settings loaded from environment."""

    # App
    app_name: str = "workgraph"
    environment: str = "development"  # development, staging, production

    # Execution
    max_steps: Optional[int] = 1000  # None disables the step guard
    failure_policy: str = "continue"  # continue or abort
    max_concurrency: int = 4
    node_timeout_seconds: Optional[float] = None

    # Definitions
    workflows_dir: str = "workflows"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    def __post_init__(self):
        """Validate settings after initialization."""
        if self.failure_policy not in FAILURE_POLICIES:
            raise ValueError(
                f"failure_policy must be one of {FAILURE_POLICIES}, "
                f"got '{self.failure_policy}'"
            )
        if self.log_format not in LOG_FORMATS:
            raise ValueError(
                f"log_format must be one of {LOG_FORMATS}, got '{self.log_format}'"
            )
        if self.max_steps is not None and self.max_steps < 1:
            raise ValueError("max_steps must be positive (or None to disable)")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.node_timeout_seconds is not None and self.node_timeout_seconds <= 0:
            raise ValueError("node_timeout_seconds must be positive")

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


def load_settings_from_env() -> Settings:
    """Load settings from environment variables (and a .env file)."""
    load_dotenv()

    def get_int(key: str, default: int) -> int:
        return int(os.getenv(key, str(default)))

    def get_optional_float(key: str) -> Optional[float]:
        value = os.getenv(key)
        if value is None or value.strip() == "":
            return None
        return float(value)

    # 0 disables the step guard
    max_steps = get_int("WORKGRAPH_MAX_STEPS", 1000)

    return Settings(
        # App
        environment=os.getenv("WORKGRAPH_ENVIRONMENT", "development"),

        # Execution
        max_steps=max_steps if max_steps > 0 else None,
        failure_policy=os.getenv("WORKGRAPH_FAILURE_POLICY", "continue").lower(),
        max_concurrency=get_int("WORKGRAPH_MAX_CONCURRENCY", 4),
        node_timeout_seconds=get_optional_float("WORKGRAPH_NODE_TIMEOUT"),

        # Definitions
        workflows_dir=os.getenv("WORKGRAPH_WORKFLOWS_DIR", "workflows"),

        # Logging
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_format=os.getenv("LOG_FORMAT", "json").lower(),
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings_from_env()


def clear_settings_cache() -> None:
    """Clear settings cache (for testing)."""
    get_settings.cache_clear()
