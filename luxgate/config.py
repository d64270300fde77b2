"""
Application configuration using pydantic-settings.

Loads configuration from environment variables (prefix ``LUXGATE_``) with
defaults taken from Luxembourg company-law thresholds and the gate rules.
"""
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from luxgate.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LUXGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    log_level: str = "INFO"
    json_logs: bool = True

    # Code dictionary (None means the packaged YAML file)
    code_dictionary_path: Optional[Path] = None

    # Unit scale
    scale_uncertainty_threshold: float = 0.8

    # Balance check: assets - liabilities, resolved units.
    # Assumption pending domain-expert confirmation; no regulatory source.
    balance_sheet_tolerance: Decimal = Decimal("1000")

    # Size thresholds (Luxembourg law of 19 December 2002, art. 35 and 47)
    small_balance_sheet_total: Decimal = Decimal("4400000")
    small_net_turnover: Decimal = Decimal("8800000")
    small_average_employees: int = 50
    medium_balance_sheet_total: Decimal = Decimal("20000000")
    medium_net_turnover: Decimal = Decimal("40000000")
    medium_average_employees: int = 250
    size_criteria_required: int = 2

    # Holding company heuristic
    holding_likelihood_threshold: float = 0.4

    # Mapping confidence bands
    high_confidence_threshold: float = 0.8
    medium_confidence_threshold: float = 0.5
    tp_critical_confidence_floor: float = 0.7

    # Readiness thresholds (percent of extracted codes)
    full_high_coverage_pct: float = 80.0
    full_validated_coverage_pct: float = 70.0
    limited_coverage_pct: float = 40.0
    low_confidence_warning_pct: float = 20.0

    # Review actions
    max_review_actions: int = 10
    max_mapping_confirmations: int = 5

    # Consolidated accounts may be analysed at group level
    allow_consolidated: bool = True

    # Year-over-year volatility thresholds
    turnover_volatility_pct: float = 20.0
    ic_debt_growth_pct: float = 50.0
    staff_cost_contraction_pct: float = -20.0
    margin_shift_pp: float = 5.0
    rate_change_bps: float = 100.0

    @model_validator(mode="after")
    def check_consistency(self) -> "Settings":
        """Reject threshold sets that would make the gates contradictory."""
        if any(s >= m for s, m in zip(self.small_thresholds, self.medium_thresholds)):
            raise ConfigurationError("Small size thresholds must be below medium thresholds")
        if self.medium_confidence_threshold > self.high_confidence_threshold:
            raise ConfigurationError("Medium confidence threshold exceeds high confidence threshold")
        if not 1 <= self.size_criteria_required <= 3:
            raise ConfigurationError("size_criteria_required must be between 1 and 3")
        return self

    @property
    def small_thresholds(self) -> tuple:
        """Small-company cutoffs as (balance sheet, turnover, employees)."""
        return (
            self.small_balance_sheet_total,
            self.small_net_turnover,
            self.small_average_employees,
        )

    @property
    def medium_thresholds(self) -> tuple:
        """Medium-company cutoffs as (balance sheet, turnover, employees)."""
        return (
            self.medium_balance_sheet_total,
            self.medium_net_turnover,
            self.medium_average_employees,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

# Clear cache on module load
get_settings.cache_clear()
