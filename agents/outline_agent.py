from __future__ import annotations

from typing import Any, Dict

from agents.base import BaseAgent
from agents.llm_client import LLMClient
from lib.json_extract import extract_json
from lib.text_utils import clean_string_list
from schemas.brief import ContentBrief
from schemas.outline import ContentOutline, OutlineSection


OUTLINE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "sections": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "heading": {"type": "string"},
                    "subheadings": {"type": "array", "items": {"type": "string"}},
                    "key_points": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["heading", "subheadings"],
            },
        },
    },
    "required": ["title", "sections"],
}

_SECTION_RANGE = {
    "short": "3-4",
    "medium": "5-6",
    "long": "6-8",
}


def fallback_outline(topic: str) -> ContentOutline:
    """Fixed four-section outline used when synthesis fails."""
    t = (topic or "").strip() or "Untitled"
    return ContentOutline(
        title=t,
        sections=[
            OutlineSection(
                heading="Introduction",
                subheadings=[f"Why {t} matters", "What this guide covers"],
            ),
            OutlineSection(
                heading="Key Concepts",
                subheadings=["Core definitions", "Common misconceptions"],
            ),
            OutlineSection(
                heading="Practical Guidance",
                subheadings=["Step-by-step approach", "Tools and resources"],
            ),
            OutlineSection(
                heading="Conclusion",
                subheadings=["Key takeaways", "Next steps"],
            ),
        ],
    )


def _build_prompt(brief: ContentBrief) -> str:
    author = brief.author
    n = _SECTION_RANGE.get(brief.length.value, "5-8")
    parts = [
        f"Act as {author.name} ({author.title}).",
        f'Generate a high-authority article outline for: "{brief.topic}".',
        f"Ground the outline in your specific expertise: {author.bio}",
        f"Target Keywords: {', '.join(brief.target_keywords)}.",
    ]
    if brief.secondary_keywords:
        parts.append(f"Secondary Keywords: {', '.join(brief.secondary_keywords)}.")
    parts.append(f"Audience: {brief.audience}. Tone: {brief.tone}. Detail level: {brief.detail_level.value}.")
    if brief.brand_context:
        parts.append(f"Brand context: {brief.brand_context}")
    parts.append(f"Include {n} major sections that demonstrate deep industry knowledge.")
    parts.append("Return JSON with keys: title, sections[{heading, subheadings[], key_points[]}].")
    return "\n".join(parts)


def _coerce(data: Any) -> ContentOutline:
    if not isinstance(data, dict):
        raise ValueError("outline output is not a JSON object")

    sections: list[OutlineSection] = []
    for raw in data.get("sections") or []:
        if not isinstance(raw, dict):
            continue
        heading = str(raw.get("heading") or "").strip()
        if not heading:
            continue
        sections.append(
            OutlineSection(
                heading=heading,
                # Subheadings keep their order; only blanks/dupes go.
                subheadings=clean_string_list(raw.get("subheadings")),
                key_points=clean_string_list(raw.get("key_points") or raw.get("keyPoints")),
            )
        )

    title = str(data.get("title") or "").strip()
    if not title or not sections:
        raise ValueError("outline output is missing a title or sections")
    return ContentOutline(title=title, sections=sections)


class OutlineAgent(BaseAgent):
    """
    ContentBrief -> ContentOutline.

    Never raises; on any failure returns `fallback_outline(brief.topic)`.
    """

    name = "outline"

    def __init__(self, llm: LLMClient, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.llm = llm

    async def run(self, brief: ContentBrief) -> ContentOutline:
        self._trace_start({"brief_id": brief.id, "topic": brief.topic})
        try:
            raw = await self.llm.generate_json(
                prompt=_build_prompt(brief),
                schema=OUTLINE_SCHEMA,
                schema_name="content_outline",
                tier="pro",
            )
            outline = _coerce(extract_json(raw))
        except Exception as e:
            self._log(f"🟠 Outline synthesis failed for {brief.topic!r}; using generic outline. Error: {e}")
            self._trace_error({"brief_id": brief.id}, e)
            outline = fallback_outline(brief.topic)
            self._trace_end(outline.to_dict(), {"fallback": True})
            return outline

        self._trace_end(outline.to_dict(), {"fallback": False, "sections": len(outline.sections)})
        return outline
