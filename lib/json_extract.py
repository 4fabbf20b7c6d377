"""Best-effort JSON recovery for generative-model output.

Models asked for JSON still sometimes wrap it in prose or code fences, or
trail off with commentary. Parsing is two-stage:

1. structural scan: one linear pass collecting balanced `{...}` and `[...]`
   spans (string-literal aware, so braces inside strings don't count);
2. strict `json.loads` on each span in turn, outermost and earliest first.

Call sites pair this with a typed fallback value; nothing here raises on bad
input.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Optional, TypeVar

from pydantic import BaseModel, ValidationError

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

_OPENERS = {"{": "}", "[": "]"}

# Bound the number of candidate spans tried on pathological input.
MAX_CANDIDATES = 32


def strip_code_fences(text: str) -> str:
    raw = (text or "").strip()
    if not raw.startswith("```"):
        return raw
    lines = raw.splitlines()
    return "\n".join(line for line in lines if not line.strip().startswith("```")).strip()


def find_balanced_spans(text: str) -> list[str]:
    """
    Balanced bracket spans in order of their opening position.

    Single pass with an opener stack. Quotes only count inside brackets, so
    apostrophes and quoted prose around the JSON don't shift string state. A
    mismatched closer invalidates every opener still pending.
    """
    s = text or ""
    found: list[tuple[int, int]] = []
    stack: list[tuple[str, int]] = []
    in_string = False
    escaped = False

    for i, ch in enumerate(s):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"' and stack:
            in_string = True
        elif ch in _OPENERS:
            stack.append((_OPENERS[ch], i))
        elif ch in ("}", "]"):
            if not stack:
                continue
            closer, start = stack.pop()
            if closer != ch:
                stack.clear()
                continue
            found.append((start, i + 1))

    found.sort()
    return [s[a:b] for a, b in found[:MAX_CANDIDATES]]


def extract_json(text: str) -> Optional[Any]:
    """Return the first parseable JSON object/array in `text`, else None."""
    cleaned = strip_code_fences(text)
    if not cleaned:
        return None

    for span in find_balanced_spans(cleaned):
        try:
            return json.loads(span)
        except json.JSONDecodeError:
            continue

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        return None


def extract_model(text: str, model: type[M], fallback: Callable[[], M]) -> M:
    """Parse `text` into `model`, or return `fallback()` on any malformed output."""
    data = extract_json(text)
    if not isinstance(data, dict):
        return fallback()
    try:
        return model.model_validate(data)
    except ValidationError:
        return fallback()


def extract_list(text: str, fallback: Callable[[], list[T]]) -> list[Any]:
    data = extract_json(text)
    if isinstance(data, list):
        return data
    # Some models wrap arrays in a single-key object, e.g. {"titles": [...]}.
    if isinstance(data, dict) and len(data) == 1:
        only = next(iter(data.values()))
        if isinstance(only, list):
            return only
    return fallback()
