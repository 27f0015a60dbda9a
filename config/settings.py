"""
Labor transitions panel settings.
"""

from pathlib import Path
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Welfare lines (PPP-adjusted currency units per person per day)
    poverty_line_daily: float = Field(default=8.30, description="Poverty line per day")
    vulnerability_line_daily: float = Field(
        default=17.0, description="Vulnerability line per day"
    )
    days_per_month: float = Field(
        default=365 / 12, description="Days per month for daily-to-monthly conversion"
    )

    # Cohort restrictions
    min_age: int = Field(default=15, description="Heads must be strictly older than this")
    min_period_heads: int = Field(
        default=100,
        description="Minimum eligible heads for a period to enter a pooled design",
    )
    study_start_year: int = Field(default=2018, description="First survey year in the study window")
    study_end_year: int = Field(default=2023, description="Last survey year in the study window")

    # Directories
    project_root: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent,
        description="Project root directory",
    )
    countries_config: Path = Field(
        default=Path("config/countries.yaml"),
        description="Per-country schema mapping table",
    )
    data_dir: Path = Field(default=Path("data"), description="Data directory")
    output_dir: Path = Field(default=Path("outputs"), description="Output directory")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    @model_validator(mode="after")
    def _check_lines(self) -> "Settings":
        # Vulnerable encompasses poor, so the lines must be nested.
        if self.vulnerability_line_daily <= self.poverty_line_daily:
            raise ValueError(
                f"vulnerability_line_daily ({self.vulnerability_line_daily}) must exceed "
                f"poverty_line_daily ({self.poverty_line_daily})"
            )
        if self.study_end_year < self.study_start_year:
            raise ValueError("study_end_year precedes study_start_year")
        return self

    @property
    def poverty_line_monthly(self) -> float:
        return self.poverty_line_daily * self.days_per_month

    @property
    def vulnerability_line_monthly(self) -> float:
        return self.vulnerability_line_daily * self.days_per_month

    def resolve(self, path: Path) -> Path:
        """Resolve a configured path against the project root."""
        return path if path.is_absolute() else self.project_root / path


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
