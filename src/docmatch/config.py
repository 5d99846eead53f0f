"""
Configuration management (SSOT).

This module defines ALL configuration for the docmatch engine.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- MatchingConfig is validated once, at construction; invalid values are
  rejected with ConfigValidationError, never clamped
- Tolerance bands are non-decreasing (exact <= high <= medium)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

MAX_BONUS_MULTIPLIER = 2.0
MIN_WEIGHT_SUM = 0.8
MAX_WEIGHT_SUM = 1.2


class ConfigValidationError(ValueError):
    """Raised when configuration validation fails."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


@dataclass
class AmountToleranceConfig:
    """Relative amount tolerance bands (fraction of the larger amount)."""

    exact: float = 0.01
    high: float = 0.05
    medium: float = 0.10


@dataclass
class DateToleranceConfig:
    """Date tolerance bands in days."""

    exact_days: int = 0
    high_days: int = 7
    medium_days: int = 30


@dataclass
class VendorMatchConfig:
    """Vendor matching settings."""

    # Minimum edit-distance similarity for the fuzzy tier
    fuzzy_threshold: float = 0.8


@dataclass
class CombinationConfig:
    """Bounds for the multi-document combination search."""

    max_size: int = 5
    # Cap on combinations examined per size (amount strategy)
    max_combinations_per_size: int = 50
    # Cap on candidate documents fed into enumeration
    max_documents: int = 25
    hybrid_max_size: int = 4
    hybrid_max_combinations_per_size: int = 20
    # Individual reference score a document needs to enter the hybrid search
    hybrid_min_reference_score: float = 0.3
    hybrid_min_amount_score: float = 0.4
    hybrid_min_combination_reference_score: float = 0.4
    reference_bonus: float = 1.2
    hybrid_bonus: float = 1.1
    max_results: int = 10


@dataclass
class AmountValidationConfig:
    """Thresholds for combined-amount warnings (never rejections)."""

    overage_threshold: float = 0.10
    underage_threshold: float = 0.10


@dataclass
class MatchingConfig:
    """Scoring configuration.

    Weights should sum to roughly 1.0 (accepted range 0.8-1.2). The bonus
    multiplier is applied when any single criterion reaches bonus_threshold.
    """

    amount_weight: float = 0.40
    date_weight: float = 0.25
    vendor_weight: float = 0.25
    reference_weight: float = 0.10
    minimum_match_score: float = 0.3
    bonus_threshold: float = 0.9
    bonus_multiplier: float = 1.1
    amount: AmountToleranceConfig = field(default_factory=AmountToleranceConfig)
    date: DateToleranceConfig = field(default_factory=DateToleranceConfig)
    vendor: VendorMatchConfig = field(default_factory=VendorMatchConfig)
    combinations: CombinationConfig = field(default_factory=CombinationConfig)
    validation: AmountValidationConfig = field(default_factory=AmountValidationConfig)

    def __post_init__(self) -> None:
        errors = self.validate()
        if errors:
            raise ConfigValidationError(errors)

    @property
    def total_weight(self) -> float:
        return self.amount_weight + self.date_weight + self.vendor_weight + self.reference_weight

    def validate(self) -> list[str]:
        """Validate weights, thresholds and tolerance bands.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        weights = {
            "amount_weight": self.amount_weight,
            "date_weight": self.date_weight,
            "vendor_weight": self.vendor_weight,
            "reference_weight": self.reference_weight,
        }
        for name, value in weights.items():
            if value < 0:
                errors.append(f"{name} must be non-negative")

        total = self.total_weight
        if not MIN_WEIGHT_SUM <= total <= MAX_WEIGHT_SUM:
            errors.append(
                f"Total weight sum {total:.2f} must be between {MIN_WEIGHT_SUM} and {MAX_WEIGHT_SUM}"
            )

        if not 0.0 <= self.minimum_match_score <= 1.0:
            errors.append("minimum_match_score must be between 0.0 and 1.0")
        if not 0.0 <= self.bonus_threshold <= 1.0:
            errors.append("bonus_threshold must be between 0.0 and 1.0")
        if self.bonus_multiplier <= 0:
            errors.append("bonus_multiplier must be positive")
        elif self.bonus_multiplier > MAX_BONUS_MULTIPLIER:
            errors.append(f"bonus_multiplier must not exceed {MAX_BONUS_MULTIPLIER}")

        amount = self.amount
        if min(amount.exact, amount.high, amount.medium) < 0:
            errors.append("amount tolerances must be non-negative")
        if not amount.exact <= amount.high <= amount.medium:
            errors.append("amount tolerances must satisfy exact <= high <= medium")

        date = self.date
        if min(date.exact_days, date.high_days, date.medium_days) < 0:
            errors.append("date tolerances must be non-negative")
        if not date.exact_days <= date.high_days <= date.medium_days:
            errors.append("date tolerances must satisfy exact_days <= high_days <= medium_days")

        if not 0.0 <= self.vendor.fuzzy_threshold <= 1.0:
            errors.append("vendor.fuzzy_threshold must be between 0.0 and 1.0")

        combos = self.combinations
        if combos.max_size < 2 or combos.hybrid_max_size < 2:
            errors.append("combination sizes must be at least 2")
        if combos.max_combinations_per_size < 1 or combos.hybrid_max_combinations_per_size < 1:
            errors.append("combination caps must be at least 1")
        if combos.max_documents < 2:
            errors.append("combinations.max_documents must be at least 2")
        if combos.max_results < 1:
            errors.append("combinations.max_results must be at least 1")

        if self.validation.overage_threshold < 0 or self.validation.underage_threshold < 0:
            errors.append("amount validation thresholds must be non-negative")

        return errors


@dataclass
class AutoAssignConfig:
    """Auto-assignment settings."""

    # Minimum score to attach without human review
    threshold: float = 0.7
    # All-or-nothing persistence for multi-document combinations
    atomic_combinations: bool = False
    # Actor recorded on automatic attachments
    actor: str = "auto-assign"


@dataclass
class CacheConfig:
    """Result cache TTLs (seconds)."""

    enabled: bool = True
    single_ttl_seconds: int = 30 * 60
    combination_ttl_seconds: int = 20 * 60
    batch_ttl_seconds: int = 45 * 60


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    matching: MatchingConfig = field(default_factory=MatchingConfig)
    auto_assign: AutoAssignConfig = field(default_factory=AutoAssignConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))
    # Worker threads for batch ranking (<= 1 runs sequentially)
    max_workers: int = 4

    def __post_init__(self) -> None:
        errors = self.validate()
        if errors:
            raise ConfigValidationError(errors)

    def validate(self) -> list[str]:
        """Validate settings outside MatchingConfig.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not 0.0 <= self.auto_assign.threshold <= 1.0:
            errors.append("auto_assign.threshold must be between 0.0 and 1.0")
        if self.auto_assign.threshold < self.matching.minimum_match_score:
            errors.append("auto_assign.threshold must be >= matching.minimum_match_score")
        if self.max_workers < 1:
            errors.append("max_workers must be at least 1")
        for name in ("single_ttl_seconds", "combination_ttl_seconds", "batch_ttl_seconds"):
            if getattr(self.cache, name) <= 0:
                errors.append(f"cache.{name} must be positive")

        return errors


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name, "").lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    A missing file yields the defaults. Environment variables can override
    config values:
    - DOCMATCH_STATE_DB
    - DOCMATCH_AUTO_ASSIGN_THRESHOLD
    - DOCMATCH_MAX_WORKERS
    - DOCMATCH_CACHE_ENABLED (true/false)

    Raises:
        ConfigValidationError: If any value is out of range.
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Matching config
    matching_data = data.get("matching", {})
    weights = matching_data.get("weights", {})
    amount_data = matching_data.get("amount_tolerance", {})
    date_data = matching_data.get("date_tolerance", {})
    combo_data = matching_data.get("combinations", {})
    validation_data = matching_data.get("amount_validation", {})

    matching = MatchingConfig(
        amount_weight=weights.get("amount", 0.40),
        date_weight=weights.get("date", 0.25),
        vendor_weight=weights.get("vendor", 0.25),
        reference_weight=weights.get("reference", 0.10),
        minimum_match_score=matching_data.get("minimum_match_score", 0.3),
        bonus_threshold=matching_data.get("bonus_threshold", 0.9),
        bonus_multiplier=matching_data.get("bonus_multiplier", 1.1),
        amount=AmountToleranceConfig(
            exact=amount_data.get("exact", 0.01),
            high=amount_data.get("high", 0.05),
            medium=amount_data.get("medium", 0.10),
        ),
        date=DateToleranceConfig(
            exact_days=date_data.get("exact_days", 0),
            high_days=date_data.get("high_days", 7),
            medium_days=date_data.get("medium_days", 30),
        ),
        vendor=VendorMatchConfig(
            fuzzy_threshold=matching_data.get("vendor_fuzzy_threshold", 0.8),
        ),
        combinations=CombinationConfig(**combo_data),
        validation=AmountValidationConfig(**validation_data),
    )

    # Auto-assign config
    assign_data = data.get("auto_assign", {})
    threshold = assign_data.get("threshold", 0.7)
    threshold_env = os.environ.get("DOCMATCH_AUTO_ASSIGN_THRESHOLD", "")
    if threshold_env:
        try:
            threshold = float(threshold_env)
        except ValueError:
            raise ConfigValidationError(
                [f"DOCMATCH_AUTO_ASSIGN_THRESHOLD is not a number: {threshold_env!r}"]
            ) from None

    auto_assign = AutoAssignConfig(
        threshold=threshold,
        atomic_combinations=assign_data.get("atomic_combinations", False),
        actor=assign_data.get("actor", "auto-assign"),
    )

    # Cache config
    cache_data = data.get("cache", {})
    cache = CacheConfig(
        enabled=_env_bool("DOCMATCH_CACHE_ENABLED", cache_data.get("enabled", True)),
        single_ttl_seconds=cache_data.get("single_ttl_seconds", 30 * 60),
        combination_ttl_seconds=cache_data.get("combination_ttl_seconds", 20 * 60),
        batch_ttl_seconds=cache_data.get("batch_ttl_seconds", 45 * 60),
    )

    max_workers = int(os.environ.get("DOCMATCH_MAX_WORKERS", data.get("max_workers", 4)))
    state_db = os.environ.get("DOCMATCH_STATE_DB", data.get("state_db_path", "data/state.db"))

    return Config(
        matching=matching,
        auto_assign=auto_assign,
        cache=cache,
        state_db_path=Path(state_db),
        max_workers=max_workers,
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# docmatch configuration
#
# Scores are in [0, 1]. Weights should sum to ~1.0 (accepted: 0.8-1.2).

state_db_path: "data/state.db"
max_workers: 4                  # Batch ranking threads (1 = sequential)

matching:
  weights:
    amount: 0.40
    date: 0.25
    vendor: 0.25
    reference: 0.10
  minimum_match_score: 0.3      # Candidates below this are dropped
  bonus_threshold: 0.9          # Any criterion at/above this triggers the bonus
  bonus_multiplier: 1.1         # Must be > 0 and <= 2.0
  amount_tolerance:             # Relative difference bands
    exact: 0.01
    high: 0.05
    medium: 0.10
  date_tolerance:               # Day difference bands
    exact_days: 0
    high_days: 7
    medium_days: 30
  vendor_fuzzy_threshold: 0.8
  combinations:
    max_size: 5
    max_combinations_per_size: 50
    max_documents: 25
    max_results: 10
  amount_validation:
    overage_threshold: 0.10     # Warn when documents exceed the payment by >10%
    underage_threshold: 0.10

auto_assign:
  threshold: 0.7                # Minimum score to attach without review
  atomic_combinations: false    # true = all-or-nothing for multi-document matches
  actor: "auto-assign"

cache:
  enabled: true
  single_ttl_seconds: 1800
  combination_ttl_seconds: 1200
  batch_ttl_seconds: 2700
"""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(default_config)
