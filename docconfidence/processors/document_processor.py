"""
Scanned document workflows: render PDF pages and ask a vision model about them.
"""

import time
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Union

try:
    import fitz  # PyMuPDF
    FITZ_AVAILABLE = True
except ImportError:  # pragma: no cover
    FITZ_AVAILABLE = False
    fitz = None  # type: ignore[assignment]

from docconfidence.ai.confidence_service import ConfidenceService
from docconfidence.ai.extraction_engine import FieldExtractionOrchestrator
from docconfidence.ai.llm_backends import LLMBackendBase, build_backend
from docconfidence.ai.types import (
    ConfidenceScore,
    FieldExtractionReport,
    LLMResponse,
    PageResponse,
    ScannedDocumentReport,
)
from docconfidence.core.unified_config import UnifiedConfig, get_config
from docconfidence.exceptions import BaseDocConfidenceError, DocumentReadError, ModelInvocationError
from docconfidence.logging_config import get_logger

logger = get_logger(__name__)


def render_pdf_pages(file_path: Union[str, Path], dpi: int = 300) -> List[bytes]:
    """Render every page of a PDF to PNG bytes, in page order."""
    if not FITZ_AVAILABLE:
        raise RuntimeError("PyMuPDF is not installed.")
    path = Path(file_path)
    if not path.is_file():
        raise DocumentReadError(f"File not found: {path}", file_path=str(path))

    try:
        with fitz.open(path) as document:
            logger.info("Rendering %s page(s) of %s at %s DPI", document.page_count, path.name, dpi)
            return [page.get_pixmap(dpi=dpi).tobytes("png") for page in document]
    except DocumentReadError:
        raise
    except Exception as exc:
        raise DocumentReadError(f"Error occurred while processing the document file: {path}: {exc}", file_path=str(path)) from exc


def _load_image(image: Union[bytes, bytearray, str, Path]) -> bytes:
    if isinstance(image, (bytes, bytearray)):
        return bytes(image)
    path = Path(image)
    try:
        return path.read_bytes()
    except OSError as exc:
        raise DocumentReadError(f"Unable to read image: {path}", file_path=str(path)) from exc


class ScannedDocumentProcessor:
    """
    Runs the scanned-document operations against one configured backend:

    1. ``extract_fields`` finds named fields across the pages of a PDF
    2. ``read_scanned_document`` answers one prompt per page
    3. ``read_image`` answers one prompt about a single image
    """

    def __init__(
        self,
        config: Optional[UnifiedConfig] = None,
        backend: Optional[LLMBackendBase] = None,
        confidence_service: Optional[ConfidenceService] = None,
    ):
        self.config = config or get_config()
        self._backend = backend
        self._backend_lock = Lock()
        self.confidence_service = confidence_service or ConfidenceService(self.config, backend=backend)

        self.stats = {
            'documents_processed': 0,
            'pages_processed': 0,
            'total_processing_time': 0.0,
            'average_processing_time': 0.0,
        }
        self._stats_lock = Lock()
        logger.info("Scanned document processor initialized (provider %s)", self.config.llm_provider)

    @property
    def backend(self) -> LLMBackendBase:
        with self._backend_lock:
            if self._backend is None:
                self._backend = build_backend(self.config)
            return self._backend

    def _ask(self, field_name: str, page_image: bytes, prompt: str) -> str:
        return self.backend.generate(prompt, image=page_image).text

    def _score(self, prompt: str, response: str) -> Optional[ConfidenceScore]:
        return self.confidence_service.calculate_confidence(prompt, response)

    def _optional_confidence(self, prompt: str, response: str, label: str) -> Optional[ConfidenceScore]:
        if not self.confidence_service.enabled:
            return None
        score = self._score(prompt, response)
        logger.debug("Confidence for %s: %s", label, score)
        return score

    def extract_fields(
        self,
        file_path: Union[str, Path],
        fields: Union[str, Iterable[str]],
        special_instructions: Optional[str] = None,
    ) -> FieldExtractionReport:
        start_time = time.time()
        orchestrator = FieldExtractionOrchestrator(
            ask=self._ask,
            score=self._score,
            config=self.config,
            enable_scoring=self.confidence_service.enabled,
        )
        report = orchestrator.extract_fields(
            fields,
            lambda: render_pdf_pages(file_path, dpi=self.config.pdf_render_dpi),
            special_instructions,
        )
        self._update_stats(report.total_pages, time.time() - start_time)
        return report

    def read_scanned_document(self, file_path: Union[str, Path], prompt: str) -> ScannedDocumentReport:
        start_time = time.time()
        pages = render_pdf_pages(file_path, dpi=self.config.pdf_render_dpi)
        responses: List[PageResponse] = []
        for page_number, page_image in enumerate(pages, start=1):
            logger.debug("Reading page %s of %s", page_number, len(pages))
            try:
                reply = self.backend.generate(prompt, image=page_image)
            except BaseDocConfidenceError:
                raise
            except Exception as exc:
                raise ModelInvocationError(
                    f"Unable to analyze the provided document {file_path} with the text: {prompt}",
                    operation="read_scanned_document",
                    details={"page_number": page_number},
                ) from exc
            responses.append(
                PageResponse(
                    page_number=page_number,
                    text=reply.text,
                    token_usage=reply.usage,
                    confidence_score=self._optional_confidence(prompt, reply.text, f"page {page_number}"),
                )
            )
        self._update_stats(len(pages), time.time() - start_time)
        return ScannedDocumentReport(pages=tuple(responses), total_pages=len(pages))

    def read_image(self, image: Union[bytes, bytearray, str, Path], prompt: str) -> LLMResponse:
        payload = _load_image(image)
        try:
            reply = self.backend.generate(prompt, image=payload)
        except BaseDocConfidenceError:
            raise
        except Exception as exc:
            raise ModelInvocationError(
                f"Unable to analyze the provided image with the text: {prompt}", operation="read_image"
            ) from exc
        logger.debug("Image read completed with %s output token(s)", reply.usage.output_tokens)
        return LLMResponse(
            text=reply.text,
            confidence_score=self._optional_confidence(prompt, reply.text, "image read"),
            token_usage=reply.usage,
        )

    def _update_stats(self, page_count: int, processing_time: float) -> None:
        with self._stats_lock:
            self.stats['documents_processed'] += 1
            self.stats['pages_processed'] += page_count
            self.stats['total_processing_time'] += processing_time
            self.stats['average_processing_time'] = (
                self.stats['total_processing_time'] / self.stats['documents_processed']
            )

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            return self.stats.copy()


__all__ = ["ScannedDocumentProcessor", "render_pdf_pages"]
