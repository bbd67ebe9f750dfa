"""Prompt text and answer helpers for per-field page extraction."""

from __future__ import annotations

from typing import Iterable, List, Optional, Union

from docconfidence.ai.types import NOT_FOUND

FIELD_EXTRACTION_TEMPLATE = (
    "Please extract the value for the field '{field_name}' from this document page. "
    "Return only the extracted value, or '" + NOT_FOUND + "' if the field is not present on this page. "
    "Be precise and extract only the specific value requested."
)

SPECIAL_INSTRUCTIONS_TEMPLATE = "\n\nSpecial instructions: {instructions}"


def build_field_prompt(field_name: str, special_instructions: Optional[str] = None) -> str:
    prompt = FIELD_EXTRACTION_TEMPLATE.format(field_name=field_name)
    if special_instructions and special_instructions.strip():
        prompt += SPECIAL_INSTRUCTIONS_TEMPLATE.format(instructions=special_instructions.strip())
    return prompt


def is_found_value(value: Optional[str]) -> bool:
    """True for a non-blank answer that is not the NOT_FOUND sentinel (any case)."""
    if value is None:
        return False
    cleaned = value.strip()
    return bool(cleaned) and cleaned.upper() != NOT_FOUND


def normalize_field_names(fields: Union[str, Iterable[str], None]) -> List[str]:
    """Split/trim requested field names and drop repeats, keeping first occurrence.

    Empty names are kept; the orchestrator does not judge field semantics.
    """
    if fields is None:
        return []
    raw = fields.split(",") if isinstance(fields, str) else list(fields)
    seen = set()
    names: List[str] = []
    for item in raw:
        name = str(item).strip()
        if name in seen:
            continue
        seen.add(name)
        names.append(name)
    return names


__all__ = [
    "FIELD_EXTRACTION_TEMPLATE",
    "NOT_FOUND",
    "build_field_prompt",
    "is_found_value",
    "normalize_field_names",
]
