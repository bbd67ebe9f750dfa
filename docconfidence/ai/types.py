"""Typed data models shared across scoring and extraction components."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

NOT_FOUND = "NOT_FOUND"


def _freeze_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, bytes):
        return value
    return bytes(value)


def _freeze_mapping(value: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(value or {}))


@dataclass(frozen=True)
class TokenAlternative:
    """A candidate the model considered at one generation step."""

    token: str
    logprob: float
    token_bytes: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "logprob", float(self.logprob))
        object.__setattr__(self, "token_bytes", _freeze_bytes(self.token_bytes))

    @property
    def probability(self) -> float:
        return math.exp(self.logprob)


@dataclass(frozen=True)
class TokenProbability:
    """One generated token, its log-probability and its top-K alternatives."""

    token: str
    logprob: float
    alternatives: Tuple[TokenAlternative, ...] = ()
    token_bytes: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "logprob", float(self.logprob))
        object.__setattr__(self, "alternatives", tuple(self.alternatives or ()))
        object.__setattr__(self, "token_bytes", _freeze_bytes(self.token_bytes))

    @property
    def probability(self) -> float:
        return math.exp(self.logprob)

    @property
    def alternative_count(self) -> int:
        return len(self.alternatives)


@dataclass(frozen=True)
class TokenProbabilitySet:
    """Ordered token log-probabilities for one generated response.

    ``metadata`` (model name, finish reason, usage counters) is carried along
    for the caller and never read by the scoring strategies.
    """

    tokens: Tuple[TokenProbability, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tokens", tuple(self.tokens or ()))
        object.__setattr__(self, "metadata", _freeze_mapping(self.metadata))

    def __len__(self) -> int:
        return len(self.tokens)

    def __iter__(self) -> Iterator[TokenProbability]:
        return iter(self.tokens)

    def is_empty(self) -> bool:
        return not self.tokens

    def token_count(self) -> int:
        return len(self.tokens)

    def probabilities(self) -> List[float]:
        return [token.probability for token in self.tokens]

    @classmethod
    def from_records(
        cls, records: Optional[Iterable[Mapping[str, Any]]], metadata: Optional[Mapping[str, Any]] = None
    ) -> "TokenProbabilitySet":
        """Build a set from ``{"token", "logprob", "bytes", "top_logprobs"}`` dicts."""
        tokens: List[TokenProbability] = []
        for record in records or []:
            alternatives = tuple(
                TokenAlternative(
                    token=alt.get("token", ""),
                    logprob=alt["logprob"],
                    token_bytes=alt.get("bytes"),
                )
                for alt in (record.get("top_logprobs") or [])
                if alt.get("logprob") is not None
            )
            tokens.append(
                TokenProbability(
                    token=record.get("token", ""),
                    logprob=record["logprob"],
                    alternatives=alternatives,
                    token_bytes=record.get("bytes"),
                )
            )
        return cls(tokens=tuple(tokens), metadata=metadata or {})


class ConfidenceLevel:
    UNAVAILABLE = "UNAVAILABLE"
    VERY_HIGH = "VERY_HIGH"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    VERY_LOW = "VERY_LOW"


_LEVEL_THRESHOLDS: Sequence[Tuple[float, str]] = (
    (0.9, ConfidenceLevel.VERY_HIGH),
    (0.75, ConfidenceLevel.HIGH),
    (0.5, ConfidenceLevel.MEDIUM),
    (0.25, ConfidenceLevel.LOW),
)


def confidence_level(available: bool, score: float) -> str:
    """Classify a score; each threshold is the inclusive lower bound of its tier."""
    if not available:
        return ConfidenceLevel.UNAVAILABLE
    for threshold, level in _LEVEL_THRESHOLDS:
        if score >= threshold:
            return level
    return ConfidenceLevel.VERY_LOW


def clamp_score(value: float) -> float:
    value = float(value)
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


UNAVAILABLE_STRATEGY = "UNAVAILABLE"


@dataclass(frozen=True)
class ConfidenceScore:
    """Normalized [0, 1] trust signal for one model response."""

    score: float
    strategy: str
    metrics: Mapping[str, float] = field(default_factory=dict)
    total_tokens: int = 0
    available: bool = True

    def __post_init__(self) -> None:
        if self.available:
            object.__setattr__(self, "score", clamp_score(self.score))
            object.__setattr__(self, "metrics", _freeze_mapping({k: float(v) for k, v in (self.metrics or {}).items()}))
        else:
            object.__setattr__(self, "score", 0.0)
            object.__setattr__(self, "strategy", UNAVAILABLE_STRATEGY)
            object.__setattr__(self, "metrics", _freeze_mapping({}))
            object.__setattr__(self, "total_tokens", 0)

    @classmethod
    def unavailable(cls) -> "ConfidenceScore":
        return cls(score=0.0, strategy=UNAVAILABLE_STRATEGY, metrics={}, total_tokens=0, available=False)

    @property
    def confidence_level(self) -> str:
        return confidence_level(self.available, self.score)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "strategy": self.strategy,
            "confidence_level": self.confidence_level,
            "metrics": dict(self.metrics),
            "total_tokens": self.total_tokens,
            "available": self.available,
        }

    def __str__(self) -> str:
        return (
            f"ConfidenceScore(score={self.score:.3f}, level={self.confidence_level}, "
            f"strategy={self.strategy}, tokens={self.total_tokens}, available={self.available})"
        )


@dataclass(frozen=True)
class FieldExtractionResult:
    """Outcome of scanning a document's pages for one field.

    ``page_number`` is 1-based, or -1 when no page produced a value.
    ``successful`` is derived from ``value`` unless the producer passes it.
    """

    field_name: str
    value: Optional[str] = None
    confidence_score: Optional[ConfidenceScore] = None
    page_number: int = -1
    successful: Optional[bool] = None

    def __post_init__(self) -> None:
        if self.successful is None:
            found = bool(self.value) and self.value.upper() != NOT_FOUND
            object.__setattr__(self, "successful", found)

    @classmethod
    def not_found(cls, field_name: str) -> "FieldExtractionResult":
        return cls(field_name=field_name, value=None, confidence_score=None, page_number=-1, successful=False)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"value": self.value, "page_number": self.page_number}
        if self.confidence_score is not None:
            payload["confidence_score"] = self.confidence_score.score
            payload["confidence_strategy"] = self.confidence_score.strategy
            payload["confidence_level"] = self.confidence_score.confidence_level
            payload["metrics"] = dict(self.confidence_score.metrics)
        return payload


@dataclass(frozen=True)
class ExtractionSummary:
    total_fields_requested: int
    total_fields_found: int
    confidence_sum: float = 0.0
    confidence_count: int = 0

    @property
    def average_confidence(self) -> Optional[float]:
        if self.confidence_count <= 0:
            return None
        return self.confidence_sum / self.confidence_count

    @classmethod
    def from_results(cls, results: Sequence[FieldExtractionResult]) -> "ExtractionSummary":
        found = [result for result in results if result.successful]
        scores = [result.confidence_score.score for result in found if result.confidence_score is not None]
        return cls(
            total_fields_requested=len(results),
            total_fields_found=len(found),
            confidence_sum=sum(scores),
            confidence_count=len(scores),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "total_fields_requested": self.total_fields_requested,
            "total_fields_found": self.total_fields_found,
        }
        average = self.average_confidence
        if average is not None:
            payload["average_confidence"] = average
        return payload


@dataclass(frozen=True)
class FieldExtractionReport:
    """Per-field results in the caller's requested order plus summary counters."""

    results: Tuple[FieldExtractionResult, ...]
    total_pages: int
    summary: ExtractionSummary

    def __post_init__(self) -> None:
        object.__setattr__(self, "results", tuple(self.results))

    @classmethod
    def build(cls, results: Sequence[FieldExtractionResult], total_pages: int) -> "FieldExtractionReport":
        return cls(results=tuple(results), total_pages=total_pages, summary=ExtractionSummary.from_results(results))

    def get(self, field_name: str) -> Optional[FieldExtractionResult]:
        for result in self.results:
            if result.field_name == field_name:
                return result
        return None

    def found(self) -> List[FieldExtractionResult]:
        return [result for result in self.results if result.successful]

    def field_names(self) -> List[str]:
        return [result.field_name for result in self.results]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fields": {result.field_name: result.to_dict() for result in self.found()},
            "total_pages": self.total_pages,
            "extraction_summary": self.summary.to_dict(),
        }


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class ModelReply:
    """Text returned by a backend along with its token accounting."""

    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(frozen=True)
class LLMResponse:
    text: str
    confidence_score: Optional[ConfidenceScore] = None
    token_usage: Optional[TokenUsage] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"response": self.text}
        if self.token_usage is not None:
            payload["token_usage"] = self.token_usage.to_dict()
        if self.confidence_score is not None:
            payload["confidence"] = self.confidence_score.to_dict()
        return payload


@dataclass(frozen=True)
class PageResponse:
    page_number: int
    text: str
    token_usage: Optional[TokenUsage] = None
    confidence_score: Optional[ConfidenceScore] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"page": self.page_number, "response": self.text}
        if self.token_usage is not None:
            payload["token_usage"] = self.token_usage.to_dict()
        if self.confidence_score is not None:
            payload["confidence"] = self.confidence_score.to_dict()
        return payload


@dataclass(frozen=True)
class ScannedDocumentReport:
    pages: Tuple[PageResponse, ...]
    total_pages: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "pages", tuple(self.pages))

    def to_dict(self) -> Dict[str, Any]:
        return {"pages": [page.to_dict() for page in self.pages], "total_pages": self.total_pages}


__all__ = [
    "ConfidenceLevel",
    "ConfidenceScore",
    "ExtractionSummary",
    "FieldExtractionReport",
    "FieldExtractionResult",
    "LLMResponse",
    "ModelReply",
    "NOT_FOUND",
    "PageResponse",
    "ScannedDocumentReport",
    "TokenAlternative",
    "TokenProbability",
    "TokenProbabilitySet",
    "TokenUsage",
    "UNAVAILABLE_STRATEGY",
    "clamp_score",
    "confidence_level",
]
