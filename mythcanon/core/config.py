"""Application configuration settings."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _find_env_file() -> str | None:
    """Find .env file in common locations.

    Checks (in order):
    1. .env (running from project root)
    2. ../.env (running from a subdirectory such as tests/)
    3. None (rely on environment variables)
    """
    candidates = [
        Path(".env"),
        Path("../.env"),
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class Settings(BaseSettings):
    """Canonicalization settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"

    # Orchestrator
    default_mode: Literal[
        "graph", "factorization", "consensus", "hierarchical", "directive"
    ] = "graph"
    history_list_limit: int = 10

    # Matrix provider defaults
    normalize_within_plot_point: bool = False
    normalize_agreement: bool = False

    # Auto-K candidate range
    auto_k_min_k: int = 2
    auto_k_max_k: int = 12
    # None = scale the number of gap reference runs with the plot point count
    auto_k_reference_runs: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def validate_canonicalization_settings(self) -> "Settings":
        """Validate settings that would make every run fail.

        - auto_k_min_k must not exceed auto_k_max_k
        - history_list_limit must be positive

        A candidate range of a single K degenerates auto-K to a fixed count:
        it is logged in development and rejected in staging and production.
        """
        warnings: list[str] = []
        errors: list[str] = []

        if self.auto_k_min_k > self.auto_k_max_k:
            errors.append(
                f"AUTO_K_MIN_K ({self.auto_k_min_k}) must not exceed "
                f"AUTO_K_MAX_K ({self.auto_k_max_k})."
            )
        elif self.auto_k_min_k == self.auto_k_max_k:
            message = (
                f"Auto-K range is a single value ({self.auto_k_min_k}); "
                "automatic detection will always select it."
            )
            if self.app_env == "development":
                warnings.append(message)
            else:
                errors.append(message)

        if self.history_list_limit < 1:
            errors.append("HISTORY_LIST_LIMIT must be at least 1.")

        for warning in warnings:
            logger.warning(f"CONFIG WARNING: {warning}")

        if errors:
            error_msg = "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)

        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
