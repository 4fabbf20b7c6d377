from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Sequence

from agents.backlink_agent import BacklinkAgent
from agents.llm_client import GroundingRef, LLMStreamError, StreamFragment
from agents.outline_agent import OutlineAgent
from agents.research_agent import ResearchAgent
from agents.title_suggestion_agent import TitleSuggestionAgent
from lib.settings import PipelineSettings
from pipeline.controller import PipelineController
from pipeline.storage import InMemoryDraftStore
from pipeline.streaming import StreamingContentGenerator, iterate_fragments
from schemas.article import ArticleImage, SEOAnalysis
from schemas.brief import ContentBrief


def quiet(_msg: str) -> None:
    pass


def text(t: str) -> StreamFragment:
    return StreamFragment(text=t)


def ref(url: str, title: str = "") -> StreamFragment:
    return StreamFragment(text="", grounding_refs=[GroundingRef(url=url, title=title)])


class FakeLLM:
    """Scripted LLM: each call pops the next queued response (an Exception is raised)."""

    def __init__(
        self,
        *,
        json_responses: Sequence[Any] = (),
        text_responses: Sequence[Any] = (),
        fragments: Sequence[StreamFragment] = (),
    ) -> None:
        self.json_responses = list(json_responses)
        self.text_responses = list(text_responses)
        self.fragments = list(fragments)
        self.calls: list[tuple[str, dict[str, Any]]] = []

    @staticmethod
    def _pop(queue: list[Any]) -> str:
        if not queue:
            raise RuntimeError("service unavailable")
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def generate_json(self, **kwargs: Any) -> str:
        self.calls.append(("json", kwargs))
        return self._pop(self.json_responses)

    async def generate_text(self, **kwargs: Any) -> str:
        self.calls.append(("text", kwargs))
        return self._pop(self.text_responses)

    def stream_text(self, **kwargs: Any):
        self.calls.append(("stream", kwargs))
        return iterate_fragments(self.fragments)


class ScriptedSource:
    """
    Pull-based fragment source.

    `gate_at=i` makes the i-th pull wait for `gate`; `fail_at=i` makes the
    i-th pull raise like a dropped connection.
    """

    def __init__(
        self,
        fragments: Sequence[StreamFragment],
        *,
        gate: Optional[asyncio.Event] = None,
        gate_at: Optional[int] = None,
        fail_at: Optional[int] = None,
    ) -> None:
        self.fragments = list(fragments)
        self.gate = gate
        self.gate_at = gate_at
        self.fail_at = fail_at
        self.pulls = 0
        self.closed = False

    async def next(self):
        i = self.pulls
        self.pulls += 1
        if self.gate is not None and i == self.gate_at:
            await self.gate.wait()
        await asyncio.sleep(0)
        if self.fail_at is not None and i >= self.fail_at:
            raise LLMStreamError("connection reset")
        if i >= len(self.fragments):
            return None, True
        return self.fragments[i], False

    async def aclose(self) -> None:
        self.closed = True


class FakeAnalyzer:
    def __init__(self, *, score: int = 80, fail: bool = False, gate: Optional[asyncio.Event] = None) -> None:
        self.score = score
        self.fail = fail
        self.gate = gate
        self.bodies: List[str] = []

    async def analyze(self, body: str, keywords: list[str]) -> SEOAnalysis:
        self.bodies.append(body)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("analysis down")
        return SEOAnalysis(score=self.score, readability="Good", keyword_density={k: 1.0 for k in keywords})


class FakeImageAgent:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.prompts: List[str] = []

    async def create_image(self, prompt: str, *, is_hero: bool = False, aspect_ratio: str = "16:9", size: str = "1K") -> ArticleImage:
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError("image service down")
        n = len(self.prompts)
        return ArticleImage(id=f"img{n}", url=f"data:image/png;base64,AAA{n}", prompt=prompt, is_hero=is_hero)


class FakeOptimizer:
    def __init__(self, *, result: Optional[str] = None, error: Optional[BaseException] = None) -> None:
        self.result = result
        self.error = error
        self.calls = 0

    async def optimize(self, body: str, brief: ContentBrief) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result if self.result is not None else body

    async def refine_text(self, text: str, *, title: str, tone: str, author: Any) -> str:
        return f"[{author.name}] {text}"


class FakePublisher:
    def __init__(self, *, error: Optional[BaseException] = None) -> None:
        self.error = error
        self.published: list[str] = []

    async def publish(self, draft, integration) -> None:
        if self.error is not None:
            raise self.error
        self.published.append(draft.id)


def make_controller(
    *,
    llm: Optional[FakeLLM] = None,
    store: Optional[InMemoryDraftStore] = None,
    analyzer: Optional[FakeAnalyzer] = None,
    image_agent: Optional[FakeImageAgent] = None,
    optimizer: Optional[FakeOptimizer] = None,
    draft=None,
) -> PipelineController:
    llm = llm or FakeLLM()
    analyzer = analyzer or FakeAnalyzer()
    image_agent = image_agent or FakeImageAgent()
    generator = StreamingContentGenerator(llm=llm, analyzer=analyzer, image_agent=image_agent, logger=quiet)
    return PipelineController(
        store=store or InMemoryDraftStore(),
        llm=llm,
        settings=PipelineSettings(autosave_delay_seconds=0.01),
        research_agent=ResearchAgent(llm, logger=quiet),
        outline_agent=OutlineAgent(llm, logger=quiet),
        analyzer=analyzer,
        optimizer=optimizer or FakeOptimizer(),
        image_agent=image_agent,
        backlink_agent=BacklinkAgent(llm, logger=quiet),
        title_agent=TitleSuggestionAgent(None, logger=quiet),
        generator=generator,
        logger=quiet,
        draft=draft,
    )


async def wait_until(predicate, *, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")
