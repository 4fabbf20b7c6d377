"""Streaming article body generation.

One generation = one request = one ordered sequence of fragments, consumed by
a single loop in `StreamingContentGenerator.generate`. Fragments are applied
strictly in arrival order; nothing here fans out or reorders.

The fragment source is pull-based (`next() -> (fragment, done)`) so the
consumer loop owns pacing, abort checks and error handling explicitly.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Iterable, List, Optional, Protocol, Tuple

from agents.image_agent import ImageAssetAgent, build_hero_prompt
from agents.llm_client import WEB_SEARCH_TOOL, GroundingRef, LLMClient, StreamFragment
from agents.seo_analysis_agent import SEOAnalysisAgent
from schemas.article import ArticleImage, Citation, SEOAnalysis
from schemas.brief import ContentBrief
from schemas.outline import ContentOutline


class FragmentSource(Protocol):
    async def next(self) -> Tuple[Optional[StreamFragment], bool]:
        """Return (fragment, False) for each fragment, then (None, True) once closed."""
        ...


class IteratorFragmentSource:
    """Adapts an async iterator of fragments to the pull-based interface."""

    def __init__(self, iterator: AsyncIterator[StreamFragment]) -> None:
        self._it = iterator.__aiter__()
        self._done = False

    async def next(self) -> Tuple[Optional[StreamFragment], bool]:
        if self._done:
            return None, True
        try:
            fragment = await self._it.__anext__()
        except StopAsyncIteration:
            self._done = True
            return None, True
        return fragment, False

    async def aclose(self) -> None:
        self._done = True
        closer = getattr(self._it, "aclose", None)
        if closer is not None:
            await closer()


class CitationSet:
    """
    Citations keyed by URL.

    First-seen order and first-seen title win; duplicates are ignored;
    ids are sequential from 1.
    """

    def __init__(self, existing: Iterable[Citation] = ()) -> None:
        self._items: List[Citation] = []
        self._urls: set[str] = set()
        for c in existing:
            self._add(c.url, c.title, c.snippet)

    def _add(self, url: str, title: str, snippet: Optional[str]) -> bool:
        key = (url or "").strip()
        if not key or key in self._urls:
            return False
        self._urls.add(key)
        self._items.append(
            Citation(id=len(self._items) + 1, url=key, title=(title or "").strip() or key, snippet=snippet)
        )
        return True

    def merge(self, refs: Iterable[GroundingRef]) -> bool:
        """Merge refs; returns True when at least one new citation was added."""
        added = False
        for ref in refs:
            added = self._add(ref.url, ref.title, ref.snippet) or added
        return added

    def to_list(self) -> List[Citation]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


def build_article_prompt(brief: ContentBrief, outline: ContentOutline) -> str:
    author = brief.author
    lines = [
        "Write a comprehensive, authoritative SEO article from the first-person perspective of the author.",
        "AUTHOR PERSONA:",
        f"Name: {author.name}",
        f"Title: {author.title}",
        f"Expertise/Bio: {author.bio}",
        "",
        "ARTICLE STRATEGY:",
        f"Title: {outline.title}.",
        f"Keywords to naturally integrate: {', '.join(brief.target_keywords)}.",
    ]
    if brief.secondary_keywords:
        lines.append(f"Secondary keywords: {', '.join(brief.secondary_keywords)}.")
    lines.extend(
        [
            f"Tone: {brief.tone}. Audience: {brief.audience}.",
            f"Length: {brief.length.value}. Detail level: {brief.detail_level.value}.",
            "",
            "OUTLINE (follow this order exactly):",
            *outline.to_prompt_lines(),
            "",
            "CORE INSTRUCTIONS:",
            "1. Adopt the author's persona completely. Speak with their professional vocabulary and insight.",
            "2. Ground every claim in the expertise described in the bio.",
            "3. Use Markdown formatting.",
            "4. MANDATORY: Include at least TWO detailed data comparison tables.",
            "5. Use web search to ground claims with recent data and cite sources where appropriate.",
        ]
    )
    return "\n".join(lines)


@dataclass
class StreamOutcome:
    body: str
    citations: List[Citation]
    completed: bool
    aborted: bool = False
    error: Optional[BaseException] = None
    fragments: int = 0
    enrichments: List["asyncio.Task"] = field(default_factory=list)


AnalysisCallback = Callable[[str, SEOAnalysis], None]
ImageCallback = Callable[[str, ArticleImage], None]


class StreamingContentGenerator:
    """
    Streams an article body for (brief, outline) and triggers the post-stream
    enrichments: exactly one SEO analysis of the final body and exactly one
    hero image, both fire-and-continue.

    Not restartable: every `generate` call starts from an empty body and an
    empty citation set.
    """

    name = "streaming-content"

    def __init__(
        self,
        *,
        llm: LLMClient,
        analyzer: SEOAnalysisAgent,
        image_agent: Optional[ImageAssetAgent] = None,
        image_aspect_ratio: str = "16:9",
        image_size: str = "1K",
        logger: Callable[[str], None] = print,
    ) -> None:
        self.llm = llm
        self.analyzer = analyzer
        self.image_agent = image_agent
        self.image_aspect_ratio = image_aspect_ratio
        self.image_size = image_size
        self._log = logger

    def open_stream(self, brief: ContentBrief, outline: ContentOutline) -> FragmentSource:
        iterator = self.llm.stream_text(
            prompt=build_article_prompt(brief, outline),
            tier="pro",
            tools=[WEB_SEARCH_TOOL],
            temperature=0.7,
        )
        return IteratorFragmentSource(iterator)

    async def generate(
        self,
        brief: ContentBrief,
        outline: ContentOutline,
        *,
        on_fragment: Optional[Callable[[str, List[Citation]], None]] = None,
        on_analysis: Optional[AnalysisCallback] = None,
        on_hero_image: Optional[ImageCallback] = None,
        abort: Optional[asyncio.Event] = None,
        source: Optional[FragmentSource] = None,
    ) -> StreamOutcome:
        """
        Consume the stream to exhaustion (or abort/error).

        `on_fragment(text, citations)` runs after each fragment with the text
        to append and the current citation list. A mid-stream error keeps the
        partial body and is reported on the outcome; abort stops applying
        fragments but keeps what was applied. Enrichments only run after a
        clean finish.
        """
        src = source or self.open_stream(brief, outline)
        parts: List[str] = []
        citations = CitationSet()
        count = 0

        try:
            while True:
                pulled = None
                if abort is None or not abort.is_set():
                    pulled = await _pull(src, abort)
                if pulled is not None and pulled[1]:
                    break
                # An abort requested while we awaited this fragment wins over applying it.
                if pulled is None or (abort is not None and abort.is_set()):
                    self._log("🟡 Generation aborted; keeping text applied so far.")
                    return StreamOutcome(
                        body="".join(parts), citations=citations.to_list(), completed=False,
                        aborted=True, fragments=count,
                    )

                fragment = pulled[0]
                if fragment is None:
                    continue

                count += 1
                if fragment.text:
                    parts.append(fragment.text)
                new_refs = citations.merge(fragment.grounding_refs) if fragment.grounding_refs else False
                if on_fragment is not None and (fragment.text or new_refs):
                    on_fragment(fragment.text, citations.to_list())
        except Exception as e:
            self._log(f"🟠 Stream interrupted after {count} fragments; partial body kept. Error: {e}")
            return StreamOutcome(
                body="".join(parts), citations=citations.to_list(), completed=False, error=e, fragments=count,
            )
        finally:
            closer = getattr(src, "aclose", None)
            if closer is not None:
                try:
                    await closer()
                except Exception as e:
                    self._log(f"🟠 Closing the stream failed: {e}")

        body = "".join(parts)
        outcome = StreamOutcome(body=body, citations=citations.to_list(), completed=True, fragments=count)
        outcome.enrichments = self.start_enrichments(
            body, brief, outline, on_analysis=on_analysis, on_hero_image=on_hero_image,
        )
        return outcome

    def start_enrichments(
        self,
        body: str,
        brief: ContentBrief,
        outline: ContentOutline,
        *,
        on_analysis: Optional[AnalysisCallback] = None,
        on_hero_image: Optional[ImageCallback] = None,
    ) -> List["asyncio.Task"]:
        tasks: List[asyncio.Task] = [
            asyncio.ensure_future(self._analyze(body, list(brief.target_keywords), on_analysis)),
        ]
        if self.image_agent is not None:
            prompt = build_hero_prompt(title=outline.title, topic=brief.topic, keywords=brief.target_keywords)
            tasks.append(asyncio.ensure_future(self._hero(body, prompt, on_hero_image)))
        return tasks

    async def _analyze(self, body: str, keywords: List[str], callback: Optional[AnalysisCallback]) -> Optional[SEOAnalysis]:
        try:
            analysis = await self.analyzer.analyze(body, keywords)
        except Exception as e:
            self._log(f"🟠 Post-stream SEO analysis failed: {e}")
            return None
        if callback is not None:
            callback(body, analysis)
        return analysis

    async def _hero(self, body: str, prompt: str, callback: Optional[ImageCallback]) -> Optional[ArticleImage]:
        assert self.image_agent is not None
        try:
            image = await self.image_agent.create_image(
                prompt, is_hero=True, aspect_ratio=self.image_aspect_ratio, size=self.image_size,
            )
        except Exception as e:
            self._log(f"🟠 Hero image generation failed: {e}")
            return None
        if callback is not None:
            callback(body, image)
        return image


async def _pull(
    src: FragmentSource, abort: Optional[asyncio.Event]
) -> Optional[Tuple[Optional[StreamFragment], bool]]:
    """
    Next pull from `src`, raced against `abort`.

    Returns None when the abort fired first; the pending pull is cancelled so
    a stalled upstream cannot hold the consumer loop.
    """
    if abort is None:
        return await src.next()

    pull = asyncio.ensure_future(src.next())
    aborted = asyncio.ensure_future(abort.wait())
    try:
        await asyncio.wait({pull, aborted}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        aborted.cancel()
        if not pull.done():
            pull.cancel()
            await asyncio.gather(pull, return_exceptions=True)

    if pull.cancelled():
        return None
    return pull.result()


async def iterate_fragments(fragments: Iterable[StreamFragment]) -> AsyncIterator[StreamFragment]:
    """Async iterator over an in-memory fragment list (replays, scripted runs)."""
    for f in fragments:
        yield f
