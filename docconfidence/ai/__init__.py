"""Confidence scoring, model backends and field extraction orchestration."""

from .confidence_calculator import ConfidenceCalibration, ConfidenceStrategy, calculate
from .types import (
    ConfidenceScore,
    FieldExtractionReport,
    FieldExtractionResult,
    TokenProbability,
    TokenProbabilitySet,
)

__all__ = [
    "ConfidenceCalibration",
    "ConfidenceScore",
    "ConfidenceStrategy",
    "FieldExtractionReport",
    "FieldExtractionResult",
    "TokenProbability",
    "TokenProbabilitySet",
    "calculate",
]
