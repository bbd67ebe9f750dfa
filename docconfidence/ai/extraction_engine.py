"""Concurrent per-field extraction over rendered document pages."""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from docconfidence.ai.prompting import build_field_prompt, is_found_value, normalize_field_names
from docconfidence.ai.types import ConfidenceScore, FieldExtractionReport, FieldExtractionResult
from docconfidence.ai.worker_pool import FieldTask, FieldWorkerPool
from docconfidence.core.unified_config import UnifiedConfig, get_config
from docconfidence.exceptions import DocumentReadError
from docconfidence.logging_config import get_logger

logger = get_logger(__name__)

AskFn = Callable[[str, Any, str], Optional[str]]
ScoreFn = Callable[[str, str], Optional[ConfidenceScore]]
PageSource = Union[Sequence[Any], Iterable[Any], Callable[[], Iterable[Any]]]


def materialize_pages(page_images: PageSource) -> List[Any]:
    """Resolve the page source to a list once, before any field task starts."""
    try:
        source = page_images() if callable(page_images) else page_images
        if source is None:
            raise ValueError("page source produced no pages object")
        return list(source)
    except DocumentReadError:
        raise
    except Exception as exc:
        raise DocumentReadError(f"Unable to read document pages: {exc}") from exc


class FieldExtractionOrchestrator:
    """Searches pages for each requested field in parallel.

    ``ask(field_name, page_image, prompt)`` returns the model's answer for one
    page. ``score(prompt, value)`` optionally returns a confidence score for a
    found value. Within a field, pages are scanned in order and the first page
    with a usable answer wins; across fields, work runs on a bounded pool that
    lives only for the duration of one ``extract_fields`` call.
    """

    def __init__(
        self,
        ask: AskFn,
        score: Optional[ScoreFn] = None,
        config: Optional[UnifiedConfig] = None,
        enable_scoring: Optional[bool] = None,
        strategy_name: Optional[str] = None,
    ):
        self.config = config or get_config()
        self.ask = ask
        self.score = score
        if enable_scoring is None:
            enable_scoring = self.config.enable_confidence_score
        self.enable_scoring = bool(enable_scoring) and score is not None
        self.strategy_name = strategy_name or self.config.confidence_strategy
        self._stats_lock = threading.Lock()
        self.performance_stats = {
            "total_extractions": 0,
            "fields_requested": 0,
            "fields_found": 0,
            "avg_processing_time": 0.0,
        }

    def _scan_field(self, field_name: str, pages: Sequence[Any], special_instructions: Optional[str]) -> FieldExtractionResult:
        prompt = build_field_prompt(field_name, special_instructions)
        for page_number, page_image in enumerate(pages, start=1):
            try:
                answer = self.ask(field_name, page_image, prompt)
                if not is_found_value(answer):
                    continue
                value = answer.strip()
            except Exception as exc:
                logger.warning("Error extracting field '%s' from page %s: %s", field_name, page_number, exc)
                continue

            confidence = self._score_value(field_name, prompt, value) if self.enable_scoring else None
            logger.debug("Field '%s' found on page %s", field_name, page_number)
            return FieldExtractionResult(
                field_name=field_name,
                value=value,
                confidence_score=confidence,
                page_number=page_number,
                successful=True,
            )
        return FieldExtractionResult.not_found(field_name)

    def _score_value(self, field_name: str, prompt: str, value: str) -> Optional[ConfidenceScore]:
        try:
            return self.score(prompt, value)
        except Exception as exc:
            logger.warning("Confidence scoring failed for field '%s': %s", field_name, exc)
            return None

    def extract_fields(
        self,
        field_names: Union[str, Iterable[str]],
        page_images: PageSource,
        special_instructions: Optional[str] = None,
    ) -> FieldExtractionReport:
        pages = materialize_pages(page_images)
        names = normalize_field_names(field_names)
        start_time = time.time()
        logger.info("Extracting %s field(s) from %s page(s)", len(names), len(pages))

        if not names:
            report = FieldExtractionReport.build([], len(pages))
            self._update_stats(report, time.time() - start_time)
            return report

        extraction = self.config.get_extraction_config()
        tasks = [FieldTask(idx=i, field_name=name) for i, name in enumerate(names)]
        with FieldWorkerPool(
            handler=lambda name: self._scan_field(name, pages, special_instructions),
            num_workers=len(tasks),
            max_workers=extraction["max_field_workers"],
            timeout=extraction["extraction_timeout"],
            shutdown_grace_period=extraction["shutdown_grace_period"],
        ) as pool:
            results = pool.process(tasks)

        report = FieldExtractionReport.build(results, len(pages))
        processing_time = time.time() - start_time
        self._update_stats(report, processing_time)
        logger.info(
            "Found %s of %s field(s) in %.2fs (strategy %s)",
            report.summary.total_fields_found,
            report.summary.total_fields_requested,
            processing_time,
            self.strategy_name if self.enable_scoring else "disabled",
        )
        return report

    async def extract_fields_async(
        self,
        field_names: Union[str, Iterable[str]],
        page_images: PageSource,
        special_instructions: Optional[str] = None,
    ) -> FieldExtractionReport:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, self.extract_fields, field_names, page_images, special_instructions
        )

    def _update_stats(self, report: FieldExtractionReport, processing_time: float) -> None:
        with self._stats_lock:
            stats = self.performance_stats
            total_before = stats["total_extractions"]
            stats["total_extractions"] = total_before + 1
            stats["fields_requested"] += report.summary.total_fields_requested
            stats["fields_found"] += report.summary.total_fields_found
            stats["avg_processing_time"] = (
                (stats["avg_processing_time"] * total_before + processing_time) / (total_before + 1)
            )

    def get_performance_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            return self.performance_stats.copy()


__all__ = ["FieldExtractionOrchestrator", "materialize_pages"]
