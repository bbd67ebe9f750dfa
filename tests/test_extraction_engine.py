"""Tests for concurrent field extraction orchestration."""

import dataclasses
import random
import threading
import time

import pytest

from docconfidence.ai.extraction_engine import FieldExtractionOrchestrator, materialize_pages
from docconfidence.ai.types import ConfidenceScore
from docconfidence.exceptions import DocumentReadError

PAGES = ["page-1", "page-2", "page-3"]


class RecordingAsk:
    """Answers from a {(field, page): value} table and records every call."""

    def __init__(self, answers, errors=()):
        self.answers = answers
        self.errors = set(errors)
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, field_name, page_image, prompt):
        with self._lock:
            self.calls.append((field_name, page_image))
        if (field_name, page_image) in self.errors:
            raise RuntimeError(f"model failed on {page_image}")
        return self.answers.get((field_name, page_image), "NOT_FOUND")

    def pages_for(self, field_name):
        return [page for name, page in self.calls if name == field_name]


def fixed_score(value):
    return lambda prompt, response: ConfidenceScore(value, "entropy_based", {"average_entropy": 0.1}, 3)


def test_first_match_wins(test_config):
    ask = RecordingAsk({("invoice_number", "page-2"): "INV-42", ("invoice_number", "page-3"): "INV-99"})
    engine = FieldExtractionOrchestrator(ask, config=test_config)

    report = engine.extract_fields(["invoice_number"], PAGES)
    result = report.get("invoice_number")

    assert result.successful is True
    assert result.value == "INV-42"
    assert result.page_number == 2
    assert ask.pages_for("invoice_number") == ["page-1", "page-2"]


def test_results_keep_requested_order(test_config):
    fields = ["e", "d", "c", "b", "a"]

    def ask(field_name, page_image, prompt):
        time.sleep(random.uniform(0, 0.03))
        return f"{field_name}-value"

    engine = FieldExtractionOrchestrator(ask, config=test_config)
    report = engine.extract_fields(fields, PAGES)

    assert report.field_names() == fields
    assert all(result.page_number == 1 for result in report.results)
    assert list(report.to_dict()["fields"]) == fields


def test_fields_run_concurrently(test_config):
    barrier = threading.Barrier(3, timeout=5)

    def ask(field_name, page_image, prompt):
        barrier.wait()
        return "x"

    engine = FieldExtractionOrchestrator(ask, config=test_config)
    report = engine.extract_fields("a,b,c", ["page-1"])
    assert report.summary.total_fields_found == 3


def test_summary_averages_only_scored_fields(test_config):
    answers = {
        ("invoice_number", "page-1"): "INV-42",
        ("total", "page-3"): "$12.00",
    }
    scores = {"INV-42": 0.9, "$12.00": 0.5}

    def score(prompt, response):
        return ConfidenceScore(scores[response], "entropy_based")

    engine = FieldExtractionOrchestrator(RecordingAsk(answers), score=score, config=test_config, enable_scoring=True)
    report = engine.extract_fields(["invoice_number", "vendor", "total", "due_date"], PAGES)
    summary = report.summary

    assert summary.total_fields_requested == 4
    assert summary.total_fields_found == 2
    assert summary.average_confidence == pytest.approx(0.7)
    assert report.get("vendor").page_number == -1
    assert report.get("vendor").value is None
    assert report.get("due_date").successful is False


def test_scoring_disabled_leaves_scores_absent(test_config):
    calls = []
    engine = FieldExtractionOrchestrator(
        RecordingAsk({("a", "page-1"): "1"}),
        score=lambda prompt, response: calls.append(response),
        config=test_config,
    )
    report = engine.extract_fields(["a"], PAGES)
    assert report.get("a").confidence_score is None
    assert calls == []
    assert "average_confidence" not in report.to_dict()["extraction_summary"]


def test_scoring_follows_config_flag(test_config):
    config = dataclasses.replace(test_config, enable_confidence_score=True)
    engine = FieldExtractionOrchestrator(RecordingAsk({("a", "page-1"): "1"}), score=fixed_score(0.8), config=config)
    assert engine.extract_fields(["a"], PAGES).get("a").confidence_score.score == 0.8


def test_scoring_failure_keeps_field(test_config):
    def score(prompt, response):
        raise ValueError("logprobs unavailable")

    engine = FieldExtractionOrchestrator(
        RecordingAsk({("a", "page-2"): "value"}), score=score, config=test_config, enable_scoring=True
    )
    result = engine.extract_fields(["a"], PAGES).get("a")
    assert result.successful is True
    assert result.page_number == 2
    assert result.confidence_score is None


def test_page_error_continues_scan(test_config):
    ask = RecordingAsk({("a", "page-3"): "found"}, errors={("a", "page-1"), ("a", "page-2")})
    engine = FieldExtractionOrchestrator(ask, config=test_config)
    result = engine.extract_fields(["a", "b"], PAGES).get("a")
    assert result.page_number == 3
    assert ask.pages_for("a") == PAGES
    assert len(ask.pages_for("b")) == 3


def test_malformed_answer_continues_scan(test_config):
    answers = {1: 42, 2: "INV-42"}
    seen = []

    def ask(field_name, page_image, prompt):
        page = PAGES.index(page_image) + 1
        seen.append(page_image)
        return answers.get(page, "NOT_FOUND")

    engine = FieldExtractionOrchestrator(ask, config=test_config)
    result = engine.extract_fields(["invoice_number"], PAGES).get("invoice_number")

    assert seen == ["page-1", "page-2"]
    assert result.successful is True
    assert result.value == "INV-42"
    assert result.page_number == 2


def test_pool_capped_at_max_field_workers(test_config):
    active = {"now": 0, "peak": 0}
    lock = threading.Lock()

    def ask(field_name, page_image, prompt):
        with lock:
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
        time.sleep(0.02)
        with lock:
            active["now"] -= 1
        return f"{field_name}-value"

    config = dataclasses.replace(test_config, max_field_workers=10)
    fields = [f"field_{i}" for i in range(12)]
    report = FieldExtractionOrchestrator(ask, config=config).extract_fields(fields, ["page-1"])

    assert report.summary.total_fields_found == 12
    assert report.field_names() == fields
    assert 1 <= active["peak"] <= 10


def test_value_is_trimmed_and_prompt_carries_instructions(test_config):
    prompts = []

    def ask(field_name, page_image, prompt):
        prompts.append(prompt)
        return "  INV-42 \n"

    engine = FieldExtractionOrchestrator(ask, config=test_config)
    report = engine.extract_fields(["invoice_number"], PAGES, special_instructions="Digits only")
    assert report.get("invoice_number").value == "INV-42"
    assert "'invoice_number'" in prompts[0]
    assert prompts[0].endswith("Special instructions: Digits only")


def test_duplicate_and_padded_fields(test_config):
    engine = FieldExtractionOrchestrator(lambda f, p, prompt: "v", config=test_config)
    report = engine.extract_fields(" a, b ,a", PAGES)
    assert report.field_names() == ["a", "b"]


def test_unreadable_page_source_is_fatal(test_config):
    def broken_source():
        raise OSError("corrupt PDF")

    ask = RecordingAsk({})
    engine = FieldExtractionOrchestrator(ask, config=test_config)
    with pytest.raises(DocumentReadError):
        engine.extract_fields(["a"], broken_source)
    assert ask.calls == []


def test_materialize_pages_accepts_generators():
    assert materialize_pages(page for page in PAGES) == PAGES
    assert materialize_pages(lambda: iter(PAGES)) == PAGES


def test_no_pages_means_no_matches(test_config):
    report = FieldExtractionOrchestrator(RecordingAsk({}), config=test_config).extract_fields(["a"], [])
    assert report.total_pages == 0
    assert report.get("a").successful is False


def test_no_fields(test_config):
    report = FieldExtractionOrchestrator(RecordingAsk({}), config=test_config).extract_fields([], PAGES)
    assert report.results == ()
    assert report.summary.total_fields_requested == 0


def test_performance_stats(test_config):
    engine = FieldExtractionOrchestrator(RecordingAsk({("a", "page-1"): "1"}), config=test_config)
    engine.extract_fields(["a", "b"], PAGES)
    engine.extract_fields(["a"], PAGES)
    stats = engine.get_performance_stats()
    assert stats["total_extractions"] == 2
    assert stats["fields_requested"] == 3
    assert stats["fields_found"] == 2
    assert stats["avg_processing_time"] >= 0.0


@pytest.mark.asyncio
async def test_extract_fields_async(test_config):
    engine = FieldExtractionOrchestrator(RecordingAsk({("a", "page-2"): "async"}), config=test_config)
    report = await engine.extract_fields_async(["a"], PAGES)
    assert report.get("a").value == "async"
    assert report.get("a").page_number == 2
