#!/usr/bin/env python3
"""
Extract named fields from a scanned PDF and print the report as JSON.

Usage:
    python scripts/run_field_extraction.py \
        --input-path invoices/acme_0042.pdf \
        --fields "invoice_number, invoice_date, total_amount" \
        --confidence --strategy weighted_entropy
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from docconfidence.ai.confidence_calculator import ConfidenceStrategy
from docconfidence.core.unified_config import reload_config
from docconfidence.logging_config import setup_logging
from docconfidence.processors.document_processor import ScannedDocumentProcessor


def _apply_env_overrides(
    provider: str | None,
    model: str | None,
    confidence: bool,
    strategy: str | None,
    workers: int | None,
) -> None:
    """Set environment overrides prior to instantiating the config singleton."""
    if provider:
        os.environ["LLM_PROVIDER"] = provider
    if model:
        os.environ["LLM_MODEL_NAME"] = model
    if confidence:
        os.environ["ENABLE_CONFIDENCE_SCORE"] = "1"
    if strategy:
        os.environ["CONFIDENCE_STRATEGY"] = strategy
    if workers:
        os.environ["MAX_FIELD_WORKERS"] = str(workers)


def run_extraction(args: argparse.Namespace) -> int:
    _apply_env_overrides(args.provider, args.model, args.confidence, args.strategy, args.workers)
    config = reload_config()
    setup_logging(config.log_level, config.log_file)

    doc_path = Path(args.input_path).expanduser().resolve()
    processor = ScannedDocumentProcessor(config=config)
    report = processor.extract_fields(doc_path, args.fields, args.instructions)

    payload = json.dumps(report.to_dict(), indent=2)
    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(payload, encoding="utf-8")
        print(f"Extraction report written to {output_path}")
    else:
        print(payload)
    return 0


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Extract fields from a scanned PDF with optional confidence scores."
    )
    parser.add_argument("--input-path", required=True, help="PDF document to process.")
    parser.add_argument(
        "--fields",
        required=True,
        help="Comma-separated field names, e.g. 'invoice_number, total_amount'.",
    )
    parser.add_argument("--instructions", default=None, help="Special instructions appended to every prompt.")
    parser.add_argument(
        "--provider",
        choices=["openai", "groq", "groq_openai", "llama_cpp"],
        default=None,
        help="Override LLM_PROVIDER.",
    )
    parser.add_argument("--model", default=None, help="Override LLM_MODEL_NAME.")
    parser.add_argument("--confidence", action="store_true", help="Attach confidence scores to found fields.")
    parser.add_argument(
        "--strategy",
        choices=[strategy.value for strategy in ConfidenceStrategy],
        default=None,
        help="Confidence strategy (default: entropy_based).",
    )
    parser.add_argument("--workers", type=int, default=None, help="Maximum concurrent field workers.")
    parser.add_argument("--output", default=None, help="Write the JSON report here instead of stdout.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    sys.exit(run_extraction(args))


if __name__ == "__main__":
    main()
