from __future__ import annotations

from typing import Any, Dict

from agents.base import BaseAgent
from agents.llm_client import WEB_SEARCH_TOOL, LLMClient
from lib.json_extract import extract_json
from lib.text_utils import clean_string_list
from schemas.brief import ResearchBundle


MAX_URLS = 5
MAX_KEYWORDS = 5

RESEARCH_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "topic": {"type": "string"},
        "competitor_urls": {"type": "array", "items": {"type": "string"}},
        "backlink_urls": {"type": "array", "items": {"type": "string"}},
        "target_keywords": {"type": "array", "items": {"type": "string"}},
        "secondary_keywords": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["topic", "competitor_urls", "backlink_urls", "target_keywords", "secondary_keywords"],
}


def _build_prompt(topic_or_url: str) -> str:
    return "\n".join(
        [
            f'Perform deep SEO research for: "{topic_or_url}".',
            "1. Identify the core topic.",
            "2. Find 3-5 top organic competitors for this topic/site.",
            "3. Suggest 3-5 high-authority URLs for potential backlink injection or citation.",
            "4. Extract 5 target keywords and 5 secondary keywords.",
            "Return JSON with keys: topic, competitor_urls, backlink_urls, target_keywords, secondary_keywords.",
        ]
    )


def fallback_research(topic_or_url: str) -> ResearchBundle:
    """Deterministic stand-in: the topic itself is the only target keyword."""
    topic = (topic_or_url or "").strip()
    return ResearchBundle(
        topic=topic,
        competitor_urls=[],
        backlink_urls=[],
        target_keywords=[topic] if topic else [],
        secondary_keywords=[],
    )


def _coerce(data: Any, topic_or_url: str) -> ResearchBundle:
    if not isinstance(data, dict):
        raise ValueError("research output is not a JSON object")

    target = clean_string_list(data.get("target_keywords"), limit=MAX_KEYWORDS)
    if not target:
        raise ValueError("research output has no target keywords")

    return ResearchBundle(
        topic=str(data.get("topic") or topic_or_url).strip() or topic_or_url,
        competitor_urls=clean_string_list(data.get("competitor_urls"), limit=MAX_URLS),
        backlink_urls=clean_string_list(data.get("backlink_urls"), limit=MAX_URLS),
        target_keywords=target,
        secondary_keywords=clean_string_list(data.get("secondary_keywords"), limit=MAX_KEYWORDS),
    )


class ResearchAgent(BaseAgent):
    """
    Topic or URL -> ResearchBundle (competitors, backlink candidates, keywords).

    Never raises: transport errors and malformed output both fall back to
    `fallback_research`, so the pipeline can always reach BRIEF_READY.
    """

    name = "research"

    def __init__(self, llm: LLMClient, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.llm = llm

    async def run(self, topic_or_url: str) -> ResearchBundle:
        self._trace_start({"topic_or_url": topic_or_url})
        try:
            raw = await self.llm.generate_json(
                prompt=_build_prompt(topic_or_url),
                schema=RESEARCH_SCHEMA,
                schema_name="research_bundle",
                tier="fast",
                tools=[WEB_SEARCH_TOOL],
            )
            bundle = _coerce(extract_json(raw), topic_or_url)
        except Exception as e:
            self._log(f"🟠 Research failed for {topic_or_url!r}; using fallback brief. Error: {e}")
            self._trace_error({"topic_or_url": topic_or_url}, e)
            bundle = fallback_research(topic_or_url)
            self._trace_end(bundle.to_dict(), {"fallback": True})
            return bundle

        self._trace_end(bundle.to_dict(), {"fallback": False})
        return bundle
