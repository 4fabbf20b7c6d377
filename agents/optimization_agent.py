from __future__ import annotations

from typing import Any

from agents.base import BaseAgent
from agents.llm_client import LLMClient
from schemas.brief import ContentBrief
from schemas.common import Author


def _optimize_prompt(body: str, brief: ContentBrief) -> str:
    author = brief.author
    return "\n".join(
        [
            f"Act as {author.name}. This is an SEO OPTIMIZATION PASS for your article.",
            f"Bio Context: {author.bio}",
            f"Keywords: {', '.join(brief.target_keywords)}.",
            f"Secondary Keywords: {', '.join(brief.secondary_keywords) or 'none'}.",
            f"Tone: {brief.tone}. Audience: {brief.audience}.",
            "Task: Refine the content so it reads in your authoritative voice. Improve flow, keep every",
            "Markdown heading and table intact (fix table formatting if broken), and weave the keywords in",
            "naturally based on your industry expertise. Do not drop sections.",
            "Return only the optimized Markdown.",
            "",
            "CONTENT:",
            body,
        ]
    )


def _refine_prompt(text: str, title: str, tone: str, author: Author) -> str:
    return "\n".join(
        [
            f"You are {author.name}, a professional {author.title} with the following background: {author.bio}",
            "RE-SYNTHESIZE the following raw research/notes into your voice.",
            f'Target Article Title: "{title}".',
            f"Instruction: Maintain your professional authority and specific tone ({tone}).",
            f'Raw Notes: "{text}".',
            "Refine the flow, vocabulary, and structure to match your persona. Output only the refined Markdown.",
        ]
    )


def _clean_markdown(text: str) -> str:
    # Models occasionally fence the whole document as ```markdown; inner code blocks stay.
    s = (text or "").strip()
    lines = s.splitlines()
    if len(lines) >= 2 and lines[0].startswith("```") and lines[-1].strip() == "```":
        s = "\n".join(lines[1:-1])
    return s.strip()


class OptimizationAgent(BaseAgent):
    """
    Full second generative pass over an entire body.

    The output is trusted as-is apart from a non-empty check: structure
    (headings/tables) is something the model is asked to keep, not something
    verified here. On any failure the original body comes back unchanged, so
    a garbled partial rewrite can never be committed.
    """

    name = "optimization"

    def __init__(self, llm: LLMClient, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.llm = llm

    async def run(self, body: str, brief: ContentBrief) -> str:
        return await self.optimize(body, brief)

    async def optimize(self, body: str, brief: ContentBrief) -> str:
        trace_in = {"brief_id": brief.id, "chars": len(body or "")}
        if not (body or "").strip():
            return body

        self._trace_start(trace_in)
        try:
            raw = await self.llm.generate_text(prompt=_optimize_prompt(body, brief), tier="pro")
        except Exception as e:
            self._log(f"🟠 Optimization failed; keeping the current body. Error: {e}")
            self._trace_error(trace_in, e)
            return body

        optimized = _clean_markdown(raw)
        if not optimized:
            self._log("🟠 Optimization returned an empty body; keeping the current body.")
            self._trace_end({"changed": False}, {"reason": "empty"})
            return body

        self._trace_end({"changed": optimized != body}, {"chars_after": len(optimized)})
        return optimized

    async def refine_text(self, text: str, *, title: str, tone: str, author: Author) -> str:
        """Persona re-synthesis of raw notes; returns `text` unchanged on failure."""
        if not (text or "").strip():
            return text
        try:
            raw = await self.llm.generate_text(prompt=_refine_prompt(text, title, tone, author), tier="pro")
        except Exception as e:
            self._log(f"🟠 Persona refinement failed; keeping the notes as-is. Error: {e}")
            return text
        return _clean_markdown(raw) or text
