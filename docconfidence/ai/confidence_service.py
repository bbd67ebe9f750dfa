"""Confidence scoring for model responses, backed by a logprob-capable backend."""

from __future__ import annotations

import threading
from typing import Optional

from docconfidence.ai.confidence_calculator import ConfidenceCalibration, ConfidenceStrategy, calculate
from docconfidence.ai.llm_backends import (
    LLMBackendBase,
    build_backend,
    normalize_backend_name,
    resolve_base_url,
)
from docconfidence.ai.types import ConfidenceScore, TokenProbabilitySet
from docconfidence.core.unified_config import UnifiedConfig, get_config
from docconfidence.logging_config import get_logger

logger = get_logger(__name__)

LOGPROB_PROVIDERS = frozenset({"openai", "groq_openai", "llama_cpp"})


def supports_logprobs(config: UnifiedConfig) -> bool:
    return normalize_backend_name(config.llm_provider.lower()) in LOGPROB_PROVIDERS


class ConfidenceService:
    """Scores a (prompt, response) pair by re-querying the model for token logprobs.

    The backend is created on first use and shared between field threads.
    Every failure resolves to ``ConfidenceScore.unavailable()``.
    """

    def __init__(
        self,
        config: Optional[UnifiedConfig] = None,
        backend: Optional[LLMBackendBase] = None,
        calibration: Optional[ConfidenceCalibration] = None,
    ):
        self.config = config or get_config()
        self.strategy = ConfidenceStrategy.parse(self.config.confidence_strategy)
        self.calibration = calibration or ConfidenceCalibration.from_config(self.config)
        self._backend = backend
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.config.enable_confidence_score

    def _get_backend(self) -> LLMBackendBase:
        with self._lock:
            if self._backend is None:
                logger.debug("Creating logprob backend at %s", resolve_base_url(self.config))
                self._backend = build_backend(self.config)
            return self._backend

    def score_token_set(self, token_set: Optional[TokenProbabilitySet]) -> ConfidenceScore:
        return calculate(token_set, self.strategy, self.calibration)

    def calculate_confidence(self, prompt: str, response: Optional[str] = None) -> ConfidenceScore:
        if not self.enabled:
            return ConfidenceScore.unavailable()
        if not supports_logprobs(self.config):
            logger.debug("Confidence scoring is not supported for provider %s", self.config.llm_provider)
            return ConfidenceScore.unavailable()

        try:
            token_set = self._get_backend().fetch_logprobs(prompt)
            return self.score_token_set(token_set)
        except Exception as exc:
            logger.warning("Failed to calculate confidence score: %s", exc)
            logger.debug("Confidence calculation error details", exc_info=True)
            return ConfidenceScore.unavailable()


__all__ = ["ConfidenceService", "LOGPROB_PROVIDERS", "resolve_base_url", "supports_logprobs"]
