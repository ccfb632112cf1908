"""Helpers for turning generative model output into structured data."""

from __future__ import annotations

import json
import re
from typing import Iterator

_FENCE = re.compile(r"^\s*```[a-zA-Z]*\s*$")


def strip_code_fences(raw: str) -> str:
    """Drop markdown fence lines (```json, ```) from a model response."""
    return "\n".join(line for line in raw.split("\n") if not _FENCE.match(line))


def _candidates(raw: str) -> Iterator[str]:
    text = strip_code_fences(raw) if "```" in raw else raw
    yield text
    # Models often wrap the object in prose
    first, last = text.find("{"), text.rfind("}")
    if 0 <= first < last:
        yield text[first:last + 1]


def parse_llm_json(raw: str) -> dict:
    """Parse a JSON object from a model response.

    The fence-stripped text is tried first, then the span from the first
    '{' to the last '}'. Anything that does not decode to an object,
    including lists and scalars, yields an empty dict.
    """
    if not raw:
        return {}
    for candidate in _candidates(raw):
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return {}
