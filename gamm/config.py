"""Engine configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class EngineConfig:
    """Centralized configuration for the pool engine.

    Attributes:
        converge_max_attempts: Input bumps tried when forward-verifying an
            exact-out swap (default: 6)
        log_level: structlog filtering level name (default: INFO)
        pool_dir: Directory of pool JSON documents used by the CLI
    """

    converge_max_attempts: int = 6
    log_level: str = "INFO"
    pool_dir: Path | None = None

    def __post_init__(self) -> None:
        if self.converge_max_attempts < 0:
            raise ValueError(
                f"converge_max_attempts must be non-negative, got {self.converge_max_attempts}"
            )
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {self.log_level}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        """Build a configuration from environment variables.

        - GAMM_CONVERGE_MAX_ATTEMPTS: exact-out input bumps (default: 6)
        - GAMM_LOG_LEVEL: log level name (default: INFO)
        - GAMM_POOL_DIR: pool document directory (default: unset)
        """
        env = os.environ if environ is None else environ
        pool_dir = env.get("GAMM_POOL_DIR")
        return cls(
            converge_max_attempts=int(env.get("GAMM_CONVERGE_MAX_ATTEMPTS", "6")),
            log_level=env.get("GAMM_LOG_LEVEL", "INFO").upper(),
            pool_dir=Path(pool_dir) if pool_dir else None,
        )


# Default configuration instance
DEFAULT_CONFIG = EngineConfig()
