"""SEO analysis agent.

Scores a body against its target keywords. The service sees only a fixed
leading slice of the body so that repeated calls on an unchanged body send an
identical request. Keyword density is computed locally over the full body.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable

from agents.base import BaseAgent
from agents.llm_client import LLMClient
from lib.json_extract import extract_json
from lib.text_utils import clean_string_list, count_phrase, dedupe_preserve_order, tokenize
from pipeline.errors import OperationFailedError
from schemas.article import SEOAnalysis
from schemas.common import KeywordSuggestion


ANALYSIS_CONTEXT_CHARS = 3000
MIN_ANALYZABLE_CHARS = 50

DEFAULT_SCORE = 50
DEFAULT_READABILITY = "Standard"

ANALYSIS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "score": {"type": "integer"},
        "readability": {"type": "string"},
        "suggestions": {"type": "array", "items": {"type": "string"}},
        "keyword_suggestions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "keyword": {"type": "string"},
                    "action": {"type": "string"},
                    "explanation": {"type": "string"},
                },
                "required": ["keyword", "action", "explanation"],
            },
        },
    },
    "required": ["score", "readability", "suggestions", "keyword_suggestions"],
}


def truncate_for_analysis(body: str) -> str:
    return (body or "")[:ANALYSIS_CONTEXT_CHARS]


def keyword_density(body: str, keywords: Iterable[str]) -> Dict[str, float]:
    """Occurrences per keyword as a percentage of total words (2 dp)."""
    total = len(tokenize(body))
    out: Dict[str, float] = {}
    for kw in dedupe_preserve_order(keywords):
        if total == 0:
            out[kw] = 0.0
            continue
        out[kw] = round(count_phrase(body, kw) * 100.0 / total, 2)
    return out


def _clamp_score(value: Any) -> int:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        return DEFAULT_SCORE
    return max(0, min(100, score))


def _keyword_suggestions(value: Any) -> list[KeywordSuggestion]:
    out: list[KeywordSuggestion] = []
    if not isinstance(value, list):
        return out
    for item in value:
        if not isinstance(item, dict):
            continue
        kw = str(item.get("keyword") or "").strip()
        if not kw:
            continue
        out.append(
            KeywordSuggestion(
                keyword=kw,
                action=str(item.get("action") or "").strip(),
                explanation=str(item.get("explanation") or "").strip(),
            )
        )
    return out


def parse_analysis(raw: str, *, density: Dict[str, float]) -> SEOAnalysis:
    """Map raw model output to SEOAnalysis; malformed fields take defaults."""
    data = extract_json(raw)
    if not isinstance(data, dict):
        data = {}

    return SEOAnalysis(
        score=_clamp_score(data.get("score")),
        readability=str(data.get("readability") or DEFAULT_READABILITY).strip() or DEFAULT_READABILITY,
        keyword_density=density,
        suggestions=clean_string_list(data.get("suggestions")),
        keyword_suggestions=_keyword_suggestions(data.get("keyword_suggestions") or data.get("keywordSuggestions")),
    )


class SEOAnalysisAgent(BaseAgent):
    name = "seo-analysis"

    def __init__(self, llm: LLMClient, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.llm = llm

    async def run(self, body: str, target_keywords: list[str]) -> SEOAnalysis:
        return await self.analyze(body, target_keywords)

    async def analyze(self, body: str, target_keywords: list[str]) -> SEOAnalysis:
        """
        Raises OperationFailedError on transport/service failure.
        Short bodies get a neutral analysis without a service call.
        """
        text = body or ""
        keywords = list(target_keywords or [])

        if len("".join(text.split())) < MIN_ANALYZABLE_CHARS:
            return SEOAnalysis.neutral()

        excerpt = truncate_for_analysis(text)
        prompt = "\n".join(
            [
                f'Analyze SEO for: "{excerpt}".',
                f"Primary keywords: {', '.join(keywords)}.",
                "Evaluate authority and keyword semantic depth.",
                "Return JSON with keys: score (0-100), readability, suggestions[], "
                "keyword_suggestions[{keyword, action, explanation}].",
            ]
        )

        trace_in = {"chars": len(text), "keywords": keywords}
        self._trace_start(trace_in)
        try:
            raw = await self.llm.generate_json(
                prompt=prompt,
                schema=ANALYSIS_SCHEMA,
                schema_name="seo_analysis",
                tier="fast",
            )
        except Exception as e:
            self._trace_error(trace_in, e)
            raise OperationFailedError("SEO analysis", e) from e

        analysis = parse_analysis(raw, density=keyword_density(text, keywords))
        self._trace_end(analysis.to_dict())
        return analysis
