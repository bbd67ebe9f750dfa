"""Confidence scores from token log-probabilities.

Five interchangeable strategies turn a ``TokenProbabilitySet`` into a
``ConfidenceScore``. Each strategy is a pure function registered in
``STRATEGY_TABLE``; adding a strategy means adding an entry there.
``calculate`` never raises: empty, malformed or numerically broken input
resolves to ``ConfidenceScore.unavailable()``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Union

import numpy as np

from docconfidence.ai.types import ConfidenceScore, TokenProbability, TokenProbabilitySet
from docconfidence.exceptions import ConfidenceCalculationError
from docconfidence.logging_config import get_logger

logger = get_logger(__name__)


class ConfidenceStrategy(str, Enum):
    ENTROPY_BASED = "entropy_based"
    TOP_TOKEN_PROB = "top_token_prob"
    AVERAGE_LOG_PROB = "average_log_prob"
    WEIGHTED_ENTROPY = "weighted_entropy"
    VARIANCE_BASED = "variance_based"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: Union["ConfidenceStrategy", str, None]) -> "ConfidenceStrategy":
        """Resolve a member, value or name; anything unrecognised means ENTROPY_BASED."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if member.value == key:
                    return member
        if value is not None:
            logger.debug("Unknown confidence strategy %r, using %s", value, cls.ENTROPY_BASED.value)
        return cls.ENTROPY_BASED


@dataclass(frozen=True)
class ConfidenceCalibration:
    """Empirical constants behind the strategies, exposed for calibration."""

    position_decay: float = 0.1
    weighted_max_entropy: float = 3.0
    max_expected_stddev: float = 0.3
    log_prob_floor: float = -10.0

    @classmethod
    def from_config(cls, config: Any) -> "ConfidenceCalibration":
        return cls(**config.get_calibration_config())


DEFAULT_CALIBRATION = ConfidenceCalibration()


def token_entropy(token: TokenProbability) -> float:
    """Shannon entropy (bits) over the selected token and its alternatives."""
    probabilities = np.array(
        [token.probability] + [alternative.probability for alternative in token.alternatives],
        dtype=float,
    )
    positive = probabilities[probabilities > 0]
    return float(-np.sum(positive * np.log2(positive)))


def position_weight(position: int, total_tokens: int, decay: float = DEFAULT_CALIBRATION.position_decay) -> float:
    """Exponential decay so earlier tokens weigh more."""
    if total_tokens <= 1:
        return 1.0
    return math.exp(-decay * position)


def _logprobs(token_set: TokenProbabilitySet) -> np.ndarray:
    values = np.array([token.logprob for token in token_set.tokens], dtype=float)
    if not np.all(np.isfinite(values)):
        bad = int(np.argmin(np.isfinite(values)))
        raise ConfidenceCalculationError("Non-finite log-probability in token data", token_index=bad)
    return values


def _entropy_based(token_set: TokenProbabilitySet, calibration: ConfidenceCalibration) -> ConfidenceScore:
    tokens = token_set.tokens
    _logprobs(token_set)
    entropies = np.array([token_entropy(token) for token in tokens], dtype=float)
    # Uniform distribution over the selected token plus its alternatives.
    max_entropies = np.log2([max(1, token.alternative_count + 1) for token in tokens])

    average_entropy = float(np.mean(entropies))
    max_avg_entropy = float(np.mean(max_entropies))
    ratio = average_entropy / max_avg_entropy if max_avg_entropy > 0 else 0.0
    confidence = 1.0 - ratio if max_avg_entropy > 0 else 0.0

    metrics = {
        "average_entropy": average_entropy,
        "max_possible_entropy": max_avg_entropy,
        "entropy_ratio": ratio,
    }
    return ConfidenceScore(confidence, ConfidenceStrategy.ENTROPY_BASED.value, metrics, len(tokens))


def _top_token_prob(token_set: TokenProbabilitySet, calibration: ConfidenceCalibration) -> ConfidenceScore:
    probabilities = np.exp(_logprobs(token_set))
    average = float(np.mean(probabilities))
    minimum = float(np.min(probabilities))
    maximum = float(np.max(probabilities))
    metrics = {
        "average_probability": average,
        "min_probability": minimum,
        "max_probability": maximum,
        "probability_range": maximum - minimum,
    }
    return ConfidenceScore(average, ConfidenceStrategy.TOP_TOKEN_PROB.value, metrics, len(probabilities))


def _average_log_prob(token_set: TokenProbabilitySet, calibration: ConfidenceCalibration) -> ConfidenceScore:
    logprobs = _logprobs(token_set)
    average = float(np.mean(logprobs))
    minimum = float(np.min(logprobs))
    maximum = float(np.max(logprobs))
    # Floor keeps extremely negative averages from underflowing to noise.
    confidence = math.exp(max(calibration.log_prob_floor, average))
    metrics = {
        "average_log_prob": average,
        "min_log_prob": minimum,
        "max_log_prob": maximum,
        "log_prob_range": maximum - minimum,
    }
    return ConfidenceScore(confidence, ConfidenceStrategy.AVERAGE_LOG_PROB.value, metrics, len(logprobs))


def _weighted_entropy(token_set: TokenProbabilitySet, calibration: ConfidenceCalibration) -> ConfidenceScore:
    tokens = token_set.tokens
    _logprobs(token_set)
    total = len(tokens)
    weights = np.array([position_weight(i, total, calibration.position_decay) for i in range(total)], dtype=float)
    entropies = np.array([token_entropy(token) for token in tokens], dtype=float)

    total_weight = float(np.sum(weights))
    weighted_entropy = float(np.sum(weights * entropies) / total_weight) if total_weight > 0 else 0.0
    confidence = max(0.0, 1.0 - weighted_entropy / calibration.weighted_max_entropy)

    metrics = {
        "weighted_entropy": weighted_entropy,
        "total_weight": total_weight,
        "estimated_max_entropy": calibration.weighted_max_entropy,
    }
    return ConfidenceScore(confidence, ConfidenceStrategy.WEIGHTED_ENTROPY.value, metrics, total)


def _variance_based(token_set: TokenProbabilitySet, calibration: ConfidenceCalibration) -> ConfidenceScore:
    probabilities = np.exp(_logprobs(token_set))
    mean = float(np.mean(probabilities))
    variance = float(np.var(probabilities))  # population variance
    stddev = math.sqrt(variance)
    confidence = max(0.0, 1.0 - stddev / calibration.max_expected_stddev)
    metrics = {
        "mean_probability": mean,
        "variance": variance,
        "standard_deviation": stddev,
        "confidence_factor": confidence,
    }
    return ConfidenceScore(confidence, ConfidenceStrategy.VARIANCE_BASED.value, metrics, len(probabilities))


StrategyFn = Callable[[TokenProbabilitySet, ConfidenceCalibration], ConfidenceScore]

STRATEGY_TABLE: Mapping[ConfidenceStrategy, StrategyFn] = {
    ConfidenceStrategy.ENTROPY_BASED: _entropy_based,
    ConfidenceStrategy.TOP_TOKEN_PROB: _top_token_prob,
    ConfidenceStrategy.AVERAGE_LOG_PROB: _average_log_prob,
    ConfidenceStrategy.WEIGHTED_ENTROPY: _weighted_entropy,
    ConfidenceStrategy.VARIANCE_BASED: _variance_based,
}


def calculate(
    token_set: Optional[TokenProbabilitySet],
    strategy: Union[ConfidenceStrategy, str, None] = ConfidenceStrategy.ENTROPY_BASED,
    calibration: Optional[ConfidenceCalibration] = None,
) -> ConfidenceScore:
    """Score ``token_set`` with ``strategy``; never raises."""
    if token_set is None:
        return ConfidenceScore.unavailable()
    if not isinstance(token_set, TokenProbabilitySet):
        logger.debug("Cannot score %s, expected TokenProbabilitySet", type(token_set).__name__)
        return ConfidenceScore.unavailable()
    if token_set.is_empty():
        return ConfidenceScore.unavailable()

    resolved = ConfidenceStrategy.parse(strategy)
    scorer = STRATEGY_TABLE.get(resolved, _entropy_based)
    try:
        result = scorer(token_set, calibration or DEFAULT_CALIBRATION)
    except Exception as exc:  # noqa: BLE001
        logger.debug("Confidence calculation (%s) failed: %s", resolved.value, exc)
        return ConfidenceScore.unavailable()

    raw_values = list(result.metrics.values())
    if not all(math.isfinite(value) for value in raw_values):
        logger.debug("Confidence calculation (%s) produced non-finite metrics", resolved.value)
        return ConfidenceScore.unavailable()
    return result


__all__ = [
    "ConfidenceCalibration",
    "ConfidenceStrategy",
    "DEFAULT_CALIBRATION",
    "STRATEGY_TABLE",
    "calculate",
    "position_weight",
    "token_entropy",
]
