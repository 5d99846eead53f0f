"""
Confidence tier implementation.
"""

from dataclasses import dataclass
from typing import Optional

from ..schemas.models import ConfidenceLevel


@dataclass
class ConfidenceThresholds:
    """Score boundaries between tiers."""

    high: float = 0.7  # At or above: HIGH
    medium: float = 0.4  # At or above: MEDIUM, below: LOW


class ConfidenceScorer:
    """
    Classifies match scores into confidence tiers.

    Tiers:
    - HIGH: score >= high
    - MEDIUM: medium <= score < high
    - LOW: otherwise
    """

    def __init__(self, thresholds: Optional[ConfidenceThresholds] = None):
        """Initialize scorer with thresholds."""
        self.thresholds = thresholds or ConfidenceThresholds()

    def classify(self, score: float) -> ConfidenceLevel:
        if score >= self.thresholds.high:
            return ConfidenceLevel.HIGH
        elif score >= self.thresholds.medium:
            return ConfidenceLevel.MEDIUM
        else:
            return ConfidenceLevel.LOW


_DEFAULT_SCORER = ConfidenceScorer()


def confidence_level(score: float) -> ConfidenceLevel:
    """Classify with the default thresholds."""
    return _DEFAULT_SCORER.classify(score)
