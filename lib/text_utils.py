from __future__ import annotations

import re
from typing import Iterable


def normalize_text(text: str) -> str:
    """Lowercase and collapse whitespace, for comparisons."""
    return " ".join((text or "").strip().lower().split())


def tokenize(text: str) -> list[str]:
    """Split text into simple lowercase alphanumeric tokens."""
    normalized = normalize_text(text)
    tokens: list[str] = []
    current: list[str] = []

    for ch in normalized:
        if ch.isalnum():
            current.append(ch)
        else:
            if current:
                tokens.append("".join(current))
                current = []

    if current:
        tokens.append("".join(current))

    return tokens


def token_overlap_similarity(a: str, b: str) -> float:
    """Jaccard similarity on token sets; 0.0 for empty unions."""
    a_tokens = set(tokenize(a))
    b_tokens = set(tokenize(b))
    union = a_tokens | b_tokens
    if not union:
        return 0.0
    return len(a_tokens & b_tokens) / len(union)


def dedupe_preserve_order(items: Iterable[str]) -> list[str]:
    """Drop empties and case-insensitive duplicates, keeping first occurrences."""
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        key = normalize_text(str(item))
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(str(item).strip())
    return out


def clean_string_list(value: object, *, limit: int | None = None) -> list[str]:
    """Coerce model output into a clean list[str]; anything else becomes []."""
    if not isinstance(value, list):
        return []
    out = dedupe_preserve_order(str(x) for x in value if isinstance(x, (str, int, float)))
    return out[:limit] if limit is not None else out


def slugify(text: str) -> str:
    s = (text or "").lower().strip()
    s = s.replace("’", "").replace("'", "")
    s = re.sub(r"[^a-z0-9\s-]", "", s)
    s = re.sub(r"\s+", "-", s)
    s = re.sub(r"-+", "-", s)
    return s.strip("-")


def count_phrase(text: str, phrase: str) -> int:
    """Count whole-token occurrences of `phrase` in `text`."""
    hay = tokenize(text)
    needle = tokenize(phrase)
    if not hay or not needle:
        return 0
    n = len(needle)
    return sum(1 for i in range(len(hay) - n + 1) if hay[i:i + n] == needle)
