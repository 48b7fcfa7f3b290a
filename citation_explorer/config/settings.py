from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class PollingMode(str, Enum):
    """
    How the job client picks its polling budget.

    AUTO        - accelerated when DEBUG is on or the job id looks simulated,
                  production otherwise.
    ACCELERATED - always use the short budget (local development, demos).
    PRODUCTION  - always use the long budget.
    """
    AUTO = "auto"
    ACCELERATED = "accelerated"
    PRODUCTION = "production"


@dataclass(frozen=True)
class PollingProfile:
    name: str
    max_attempts: int
    interval: float

    @property
    def budget_seconds(self) -> float:
        return self.max_attempts * self.interval


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
        env_prefix="CITEX_"
    )


    # ------------------------------------------------------------------
    # Core paths / services
    # ------------------------------------------------------------------
    DATA_DIR: Path = Field(
        default=Path("data"),
        description="Base data directory for persisted relationship files.",
    )

    SEARCH_API_URL: str = Field(
        default="https://discover.veritus.ai/api/v1",
        description="Base URL of the paper-search backend (jobs, papers, citation network).",
    )

    SEARCH_API_KEY: Optional[SecretStr] = Field(
        default=None,
        description="Bearer token for the search backend. If None, no Authorization header is sent.",
    )

    RELATIONSHIPS_API_URL: Optional[str] = Field(
        default=None,
        description=(
            "Base URL of a remote relationship service. "
            "If None, relationships are kept in JSON files under DATA_DIR."
        ),
    )

    API_KEY: Optional[SecretStr] = Field(
        default=None,
        description="API key for header-based auth on our own web app. If None, auth is disabled.",
    )

    http_timeout: float = Field(
        default=30.0,
        description="Per-request timeout (seconds) for outbound HTTP calls.",
    )

    # ------------------------------------------------------------------
    # Job polling
    # ------------------------------------------------------------------
    DEBUG: bool = Field(
        default=False,
        description=(
            "Simulated / debug mode. Switches job polling to the accelerated "
            "profile when polling_mode is AUTO."
        ),
    )

    polling_mode: PollingMode = Field(
        default=PollingMode.AUTO,
        description="Polling budget selection: auto/accelerated/production.",
    )

    accelerated_max_attempts: int = Field(
        default=2,
        ge=1,
        description="Poll attempts for the accelerated profile.",
    )
    accelerated_interval: float = Field(
        default=1.5,
        ge=0.0,
        description="Seconds between polls for the accelerated profile.",
    )
    production_max_attempts: int = Field(
        default=30,
        ge=1,
        description="Poll attempts for the production profile.",
    )
    production_interval: float = Field(
        default=2.0,
        ge=0.0,
        description="Seconds between polls for the production profile.",
    )

    simulated_job_prefixes: Tuple[str, ...] = Field(
        default=("mock-", "sim-", "simulated-"),
        description="Job id prefixes that identify jobs from a simulated backend.",
    )

    expansion_timeout_margin: float = Field(
        default=15.0,
        ge=0.0,
        description=(
            "Extra seconds on top of the polling budget before an expansion "
            "stuck in the Expanding state is forcibly released."
        ),
    )

    # ------------------------------------------------------------------
    # Graph limits
    # ------------------------------------------------------------------
    max_children: int = Field(
        default=3,
        ge=1,
        description="Maximum number of children per node (fan-out cap).",
    )

    max_annotations: int = Field(
        default=4,
        ge=1,
        description="Maximum keyword tags / selected metadata fields per node.",
    )

    # ------------------------------------------------------------------
    # Convenience derived paths / profiles
    # ------------------------------------------------------------------
    @property
    def relationships_dir(self) -> Path:
        return self.DATA_DIR / "relationships"

    @property
    def accelerated_profile(self) -> PollingProfile:
        return PollingProfile(
            "accelerated", self.accelerated_max_attempts, self.accelerated_interval
        )

    @property
    def production_profile(self) -> PollingProfile:
        return PollingProfile(
            "production", self.production_max_attempts, self.production_interval
        )

    def polling_profile(self, job_id: Optional[str] = None) -> PollingProfile:
        """
        Pick the polling profile for a job.

        An explicit polling_mode wins; in AUTO mode the accelerated profile is
        used when DEBUG is on or when the job id carries a simulated prefix.
        """
        if self.polling_mode == PollingMode.ACCELERATED:
            return self.accelerated_profile
        if self.polling_mode == PollingMode.PRODUCTION:
            return self.production_profile

        if self.DEBUG:
            return self.accelerated_profile
        if job_id and str(job_id).startswith(tuple(self.simulated_job_prefixes)):
            return self.accelerated_profile
        return self.production_profile

    @property
    def expansion_timeout(self) -> float:
        """Deadline for one whole expansion (job creation + polling + apply)."""
        return self.production_profile.budget_seconds + self.expansion_timeout_margin


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Singleton-style accessor so we only construct Settings once and
    ensure directories exist on first access.
    """
    global _settings
    if _settings is None:
        _settings = Settings()

        _settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
        _settings.relationships_dir.mkdir(parents=True, exist_ok=True)

    return _settings


settings = get_settings()
