"""Title suggestion agent.

Candidates come from two places:
- the model (asked for ~5 high-CTR titles, JSON array), and
- a fixed set of archetypes, so there is always something to offer when the
  model is unavailable or returns junk.

Everything is scored 0–100 with the same deterministic rubric:
- Keyword presence: primary keyword weighted highest; secondary keywords add lift.
- Clarity: penalizes titles over 70 characters (SERP truncation).
- Uniqueness: penalizes similarity vs existing titles using token overlap.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable

from agents.base import BaseAgent
from agents.llm_client import LLMClient
from lib.json_extract import extract_list
from lib.text_utils import dedupe_preserve_order, normalize_text, token_overlap_similarity, tokenize
from schemas.title import TitleCandidate, TitleSuggestionInput, TitleSuggestionOutput


MAX_TITLE_CHARS = 70


def _format_title(title: str) -> str:
    return " ".join((title or "").strip().strip('"').split())


def _starts_with_any_prefix(title: str, prefixes: Iterable[str]) -> bool:
    t = normalize_text(title)
    for prefix in prefixes:
        p = normalize_text(prefix)
        if p and t.startswith(p):
            return True
    return False


@dataclass(frozen=True)
class _Archetype:
    name: str
    build: Callable[[TitleSuggestionInput], list[str]]


def _archetypes() -> list[_Archetype]:
    """Ordered archetypes; ordering affects candidate order."""

    def explained(inp: TitleSuggestionInput) -> list[str]:
        pk = inp.primary_keyword.strip()
        return [
            f"{pk} Explained: A Practical Guide",
            f"{pk}, Explained for Busy Professionals",
        ]

    def how_to(inp: TitleSuggestionInput) -> list[str]:
        pk = inp.primary_keyword.strip()
        return [
            f"How to Master {pk} (Step by Step)",
            f"How {pk} Works, and How to Use It Well",
        ]

    def mistakes(inp: TitleSuggestionInput) -> list[str]:
        pk = inp.primary_keyword.strip()
        return [
            f"Common {pk} Mistakes (and What to Do Instead)",
            f"{pk} Pitfalls Experts Avoid",
        ]

    def data_led(inp: TitleSuggestionInput) -> list[str]:
        pk = inp.primary_keyword.strip()
        return [
            f"{pk} by the Numbers: What the Data Shows",
            f"What We Learned Comparing {pk} Approaches",
        ]

    def checklist(inp: TitleSuggestionInput) -> list[str]:
        pk = inp.primary_keyword.strip()
        return [
            f"The {pk} Checklist: What Matters Most",
            f"{pk} 101: Key Ideas to Get Right First",
        ]

    return [
        _Archetype("explained", explained),
        _Archetype("how-to", how_to),
        _Archetype("mistakes", mistakes),
        _Archetype("data-led", data_led),
        _Archetype("checklist", checklist),
    ]


def archetype_titles(inp: TitleSuggestionInput) -> list[tuple[str, str]]:
    """(title, archetype) pairs, interleaved across archetypes, deduped."""
    pairs: list[tuple[str, str]] = []
    lists = [(a.name, [_format_title(t) for t in a.build(inp)]) for a in _archetypes()]

    max_len = max((len(titles) for _, titles in lists), default=0)
    for i in range(max_len):
        for name, titles in lists:
            if i < len(titles):
                pairs.append((titles[i], name))

    pk = inp.primary_keyword.strip()
    for sk in [s.strip() for s in inp.secondary_keywords if s and s.strip()]:
        pairs.append((_format_title(f"{pk} and {sk}: What to Prioritize"), "secondary-combo"))

    return pairs


def score_title(inp: TitleSuggestionInput, title: str) -> tuple[float, list[str]]:
    """Score a title 0–100 and return (score, reasons)."""
    reasons: list[str] = []

    title_norm = normalize_text(title)
    pk_norm = normalize_text(inp.primary_keyword)

    keyword_score = 0.0
    if pk_norm and pk_norm in title_norm:
        keyword_score += 35.0
        reasons.append("Primary keyword present")
    else:
        pk_tokens = set(tokenize(inp.primary_keyword))
        title_tokens = set(tokenize(title))
        if pk_tokens:
            overlap = len(pk_tokens & title_tokens) / len(pk_tokens)
            if overlap >= 0.8:
                keyword_score += 28.0
                reasons.append("Primary keyword mostly present")
            elif overlap >= 0.5:
                keyword_score += 18.0
                reasons.append("Primary keyword partially present")

    secondary_lift = 0.0
    for sk in inp.secondary_keywords:
        sk_norm = normalize_text(sk)
        if sk_norm and sk_norm in title_norm:
            secondary_lift += 2.5
    secondary_lift = min(10.0, secondary_lift)
    if secondary_lift > 0:
        reasons.append("Includes secondary keywords")

    keyword_component = min(45.0, keyword_score + secondary_lift)

    clarity_component = 20.0
    if len(title) > MAX_TITLE_CHARS:
        over = len(title) - MAX_TITLE_CHARS
        penalty = min(20.0, (over / 40.0) * 20.0)
        clarity_component = max(0.0, 20.0 - penalty)
        reasons.append("Too long; likely truncated in search results")

    max_sim = max((token_overlap_similarity(title, t) for t in inp.existing_titles), default=0.0)

    uniqueness_component = 35.0 * (1.0 - max_sim)
    if max_sim >= 0.6:
        reasons.append("Very similar to an existing title")
    elif max_sim >= 0.35:
        reasons.append("Somewhat similar to an existing title")
    else:
        reasons.append("Distinct from existing titles")

    total = keyword_component + clarity_component + uniqueness_component
    return max(0.0, min(100.0, total)), reasons


class TitleSuggestionAgent(BaseAgent):
    """Suggest and rank SEO titles for a topic."""

    name = "title-suggestions"

    def __init__(self, llm: LLMClient | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.llm = llm

    async def _model_titles(self, inp: TitleSuggestionInput) -> list[str]:
        if self.llm is None:
            return []
        keywords = [inp.primary_keyword] + list(inp.secondary_keywords)
        prompt = (
            f"Suggest 5 high-CTR titles for: {inp.topic}. "
            f"Keywords: {', '.join(keywords)}. JSON array of strings only."
        )
        try:
            raw = await self.llm.generate_json(prompt=prompt, tier="fast")
        except Exception as e:
            self._log(f"🟠 Title suggestions failed; using archetypes only. Error: {e}")
            return []
        return [_format_title(str(t)) for t in extract_list(raw, list) if isinstance(t, str) and t.strip()]

    async def run(self, input: TitleSuggestionInput | dict) -> TitleSuggestionOutput:
        inp = input if isinstance(input, TitleSuggestionInput) else TitleSuggestionInput(**input)

        pairs = [(t, "model") for t in await self._model_titles(inp)] + archetype_titles(inp)

        seen: set[str] = set()
        pool: list[tuple[str, str]] = []
        for title, source in pairs:
            key = normalize_text(title)
            if not key or key in seen or _starts_with_any_prefix(title, inp.banned_starts):
                continue
            seen.add(key)
            pool.append((title, source))
        pool = pool[: inp.num_candidates]

        scored: list[TitleCandidate] = []
        for title, source in pool:
            score, reasons = score_title(inp, title)
            scored.append(
                TitleCandidate(
                    title=title,
                    source=source,
                    score=float(round(score, 2)),
                    reasons=dedupe_preserve_order(reasons),
                )
            )

        # Stable for equal scores: model suggestions first, then archetype order.
        ranked = sorted(scored, key=lambda c: -c.score)
        return TitleSuggestionOutput(selected=ranked[: inp.return_top_n], candidates=ranked)
