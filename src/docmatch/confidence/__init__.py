"""
Confidence tier module.

Maps combination scores onto Low / Medium / High tiers.
"""

from .scorer import ConfidenceScorer, ConfidenceThresholds, confidence_level

__all__ = [
    "ConfidenceScorer",
    "ConfidenceThresholds",
    "confidence_level",
]
