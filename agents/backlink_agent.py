from __future__ import annotations

import uuid
from typing import Any, Dict

from agents.base import BaseAgent
from agents.llm_client import WEB_SEARCH_TOOL, LLMClient
from lib.json_extract import extract_list
from schemas.article import BacklinkAuthority, BacklinkOpportunity


BACKLINK_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "opportunities": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "url": {"type": "string"},
                    "reason": {"type": "string", "description": "Why this is a good backlink opportunity"},
                    "authority": {"type": "string", "enum": ["High", "Medium", "Emerging"]},
                },
                "required": ["title", "url", "reason", "authority"],
            },
        }
    },
    "required": ["opportunities"],
}

MAX_OPPORTUNITIES = 7


def _authority(value: Any) -> BacklinkAuthority:
    try:
        return BacklinkAuthority(str(value).strip().title())
    except ValueError:
        return BacklinkAuthority.emerging


def new_opportunity_id() -> str:
    return uuid.uuid4().hex[:9]


class BacklinkAgent(BaseAgent):
    """Finds pages worth backlink outreach for a topic. Failure -> []."""

    name = "backlinks"

    def __init__(self, llm: LLMClient, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.llm = llm

    async def run(self, topic: str, keywords: list[str]) -> list[BacklinkOpportunity]:
        prompt = "\n".join(
            [
                "Act as an SEO link-building specialist.",
                f'Topic: "{topic}".',
                f"Keywords: {', '.join(keywords)}.",
                "Find 5-7 high-authority websites and specific pages that would be perfect for backlink "
                "outreach or content guest posting.",
                "Return JSON: {\"opportunities\": [{title, url, reason, authority}]}.",
            ]
        )
        try:
            raw = await self.llm.generate_json(
                prompt=prompt,
                schema=BACKLINK_SCHEMA,
                schema_name="backlink_opportunities",
                tier="fast",
                tools=[WEB_SEARCH_TOOL],
            )
        except Exception as e:
            self._log(f"🟠 Backlink discovery failed: {e}")
            return []

        out: list[BacklinkOpportunity] = []
        seen: set[str] = set()
        for item in extract_list(raw, list):
            if not isinstance(item, dict):
                continue
            url = str(item.get("url") or "").strip()
            if not url or url in seen:
                continue
            seen.add(url)
            out.append(
                BacklinkOpportunity(
                    id=new_opportunity_id(),
                    url=url,
                    title=str(item.get("title") or url).strip(),
                    reason=str(item.get("reason") or "").strip(),
                    authority=_authority(item.get("authority")),
                )
            )
        return out[:MAX_OPPORTUNITIES]
