"""Pipeline controller: one editing session over one draft.

The controller is the only writer of its Draft. Every mutation goes through a
method here, marks the touched field, and re-arms the debounced autosave.

States:
    EMPTY -> BRIEF_READY -> OUTLINE_READY -> GENERATING -> GENERATED
          -> (OPTIMIZING -> GENERATED)* -> FINALIZED

Regenerating re-enters GENERATING from GENERATED and overwrites the body.
Nothing moves back to an earlier state on its own.
"""

from __future__ import annotations

import asyncio
import uuid
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from agents.backlink_agent import BacklinkAgent
from agents.image_agent import ImageAssetAgent, build_hero_prompt
from agents.llm_client import LLMClient
from agents.optimization_agent import OptimizationAgent
from agents.outline_agent import OutlineAgent
from agents.research_agent import ResearchAgent
from agents.seo_analysis_agent import SEOAnalysisAgent
from agents.title_suggestion_agent import TitleSuggestionAgent
from app_logging.run_logger import RunLogger
from integrations.publishing import Publisher
from integrations.serpstat import fetch_backlinks
from lib.settings import PipelineSettings
from lib.text_utils import slugify
from pipeline.errors import (
    DraftBusyError,
    GenerationInProgressError,
    InvalidTransitionError,
    OperationFailedError,
    PipelineError,
)
from pipeline.persistence import DraftPersistenceManager
from pipeline.storage import DraftStore
from pipeline.streaming import FragmentSource, StreamingContentGenerator, StreamOutcome
from schemas.article import (
    ArticleImage,
    BacklinkOpportunity,
    Citation,
    Draft,
    IntegrationDescriptor,
    IntegrationPlatform,
    SEOAnalysis,
)
from schemas.brief import ContentBrief
from schemas.common import Author, BriefStatus
from schemas.outline import ContentOutline
from schemas.title import TitleSuggestionInput, TitleSuggestionOutput


class PipelineState(str, Enum):
    EMPTY = "empty"
    BRIEF_READY = "brief_ready"
    OUTLINE_READY = "outline_ready"
    GENERATING = "generating"
    GENERATED = "generated"
    OPTIMIZING = "optimizing"
    FINALIZED = "finalized"


_TRANSITIONS: Dict[PipelineState, FrozenSet[PipelineState]] = {
    PipelineState.EMPTY: frozenset({PipelineState.BRIEF_READY}),
    # Self-loops: the user may re-run research/outline by hand.
    PipelineState.BRIEF_READY: frozenset({PipelineState.BRIEF_READY, PipelineState.OUTLINE_READY}),
    PipelineState.OUTLINE_READY: frozenset({PipelineState.OUTLINE_READY, PipelineState.GENERATING}),
    PipelineState.GENERATING: frozenset({PipelineState.GENERATED}),
    PipelineState.GENERATED: frozenset(
        {PipelineState.GENERATING, PipelineState.OPTIMIZING, PipelineState.FINALIZED}
    ),
    PipelineState.OPTIMIZING: frozenset({PipelineState.GENERATED}),
    PipelineState.FINALIZED: frozenset(),
}

_BODY_BUSY = (PipelineState.GENERATING, PipelineState.OPTIMIZING)


def can_transition(current: PipelineState, target: PipelineState) -> bool:
    return target in _TRANSITIONS[current]


def state_for_draft(draft: Draft) -> PipelineState:
    """Where a reopened draft resumes."""
    if draft.body.strip() or draft.has_started:
        return PipelineState.GENERATED
    if draft.outline.sections:
        return PipelineState.OUTLINE_READY
    return PipelineState.BRIEF_READY


def new_draft_id() -> str:
    return uuid.uuid4().hex[:13]


def _looks_like_url(value: str) -> bool:
    v = value.strip().lower()
    return v.startswith("http://") or v.startswith("https://")


class PipelineController:
    def __init__(
        self,
        *,
        store: DraftStore,
        llm: Optional[LLMClient] = None,
        settings: Optional[PipelineSettings] = None,
        author: Optional[Author] = None,
        research_agent: Optional[ResearchAgent] = None,
        outline_agent: Optional[OutlineAgent] = None,
        analyzer: Optional[SEOAnalysisAgent] = None,
        optimizer: Optional[OptimizationAgent] = None,
        image_agent: Optional[ImageAssetAgent] = None,
        backlink_agent: Optional[BacklinkAgent] = None,
        title_agent: Optional[TitleSuggestionAgent] = None,
        generator: Optional[StreamingContentGenerator] = None,
        logger: Callable[[str], None] = print,
        run_logger: Optional[RunLogger] = None,
        draft: Optional[Draft] = None,
    ) -> None:
        self.settings = settings or PipelineSettings()
        self.author = author or self.settings.author
        self._log = logger
        self.run_logger = run_logger

        agent_kwargs: Dict[str, Any] = {"logger": logger, "run_logger": run_logger}
        llm = llm or LLMClient()
        self.research_agent = research_agent or ResearchAgent(llm, **agent_kwargs)
        self.outline_agent = outline_agent or OutlineAgent(llm, **agent_kwargs)
        self.analyzer = analyzer or SEOAnalysisAgent(llm, **agent_kwargs)
        self.optimizer = optimizer or OptimizationAgent(llm, **agent_kwargs)
        self.image_agent = image_agent or ImageAssetAgent(**agent_kwargs)
        self.backlink_agent = backlink_agent or BacklinkAgent(llm, **agent_kwargs)
        self.title_agent = title_agent or TitleSuggestionAgent(llm, **agent_kwargs)
        self.generator = generator or StreamingContentGenerator(
            llm=llm,
            analyzer=self.analyzer,
            image_agent=self.image_agent if self.settings.generate_hero_image else None,
            image_aspect_ratio=self.settings.image_aspect_ratio,
            image_size=self.settings.image_size,
            logger=logger,
        )

        self._draft: Optional[Draft] = draft
        self.state = state_for_draft(draft) if draft is not None else PipelineState.EMPTY
        self.last_error: Optional[BaseException] = None

        self._touched: set[str] = set()
        self._abort: Optional[asyncio.Event] = None
        self._generation_task: Optional[asyncio.Task] = None
        self._generation_epoch = 0
        self._enrichments: set[asyncio.Task] = set()

        self.persistence = DraftPersistenceManager(
            store,
            current=lambda: self._draft,
            delay_seconds=self.settings.autosave_delay_seconds,
            logger=logger,
            run_logger=run_logger,
        )

    @classmethod
    def for_draft(cls, draft: Draft, **kwargs: Any) -> "PipelineController":
        """Resume an existing draft; the state is derived from its content."""
        return cls(draft=draft, **kwargs)

    @classmethod
    async def resume(cls, draft_id: str, *, store: DraftStore, **kwargs: Any) -> "PipelineController":
        draft = await asyncio.to_thread(store.get, draft_id)
        if draft is None:
            raise KeyError(f"No stored draft with id {draft_id!r}")
        return cls.for_draft(draft, store=store, **kwargs)

    # --- Accessors ---

    @property
    def draft(self) -> Draft:
        if self._draft is None:
            raise PipelineError("No draft yet; run research first")
        return self._draft

    @property
    def touched_fields(self) -> FrozenSet[str]:
        return frozenset(self._touched)

    # --- Internals ---

    def _check(self, target: PipelineState) -> None:
        if not can_transition(self.state, target):
            raise InvalidTransitionError(self.state.value, target.value)

    def _transition(self, target: PipelineState) -> None:
        self._check(target)
        self._log(f"🔹 {self.state.value} -> {target.value}")
        self.state = target

    def _touch(self, *fields: str) -> None:
        self._touched.update(fields)
        self.persistence.schedule()

    def _trace_start(self, step: str, input: Any) -> None:
        if self.run_logger is not None:
            self.run_logger.start(step, input)

    def _trace_end(self, step: str, output: Any, metrics: Optional[dict[str, Any]] = None) -> None:
        if self.run_logger is not None:
            self.run_logger.end(step, output, metrics)

    def _trace_error(self, step: str, input: Any, err: BaseException) -> None:
        if self.run_logger is not None:
            self.run_logger.error(step, input, err)

    def _track(self, task: asyncio.Task) -> None:
        self._enrichments.add(task)
        task.add_done_callback(self._enrichments.discard)

    def _set_brief_status(self, status: BriefStatus) -> None:
        self.draft.brief = self.draft.brief.validated_copy(status=status)

    # --- Brief & outline ---

    async def research(self, topic_or_url: str, *, draft_id: Optional[str] = None, **brief_fields: Any) -> ContentBrief:
        """
        EMPTY -> BRIEF_READY (or a manual re-run in BRIEF_READY).

        Research never fails the step: the agent falls back to a topic-only
        brief. The draft is created here, before any body text exists.
        """
        self._check(PipelineState.BRIEF_READY)
        query = (topic_or_url or "").strip()
        if not query:
            raise ValueError("topic_or_url must be non-empty")

        self._trace_start("research", {"query": query})
        bundle = await self.research_agent.run(query)
        self._check(PipelineState.BRIEF_READY)

        topic = bundle.topic if _looks_like_url(query) and bundle.topic.strip() else query
        if self._draft is None:
            brief = ContentBrief(
                id=draft_id or new_draft_id(),
                topic=topic,
                slug=slugify(topic) or None,
                research_source_url=query if _looks_like_url(query) else None,
                author=self.author,
                **brief_fields,
            )
        else:
            brief = self._draft.brief.validated_copy(topic=topic, **brief_fields)

        brief = brief.apply_research(bundle).model_copy(update={"status": BriefStatus.brief_ready})
        if self._draft is None:
            self._draft = Draft(id=brief.id, brief=brief, outline=ContentOutline(title=topic))
        else:
            self._draft.brief = brief

        self._transition(PipelineState.BRIEF_READY)
        self._touch("brief")
        self._log(
            f"✅ Brief ready: {len(brief.target_keywords)} target keywords, "
            f"{len(brief.competitor_urls)} competitors, {len(brief.backlink_urls)} backlink candidates"
        )
        self._trace_end("research", brief.to_dict())
        return brief

    async def build_outline(self) -> ContentOutline:
        """BRIEF_READY -> OUTLINE_READY (or a manual re-run in OUTLINE_READY)."""
        self._check(PipelineState.OUTLINE_READY)
        brief = self.draft.brief

        self._trace_start("outline", {"brief_id": brief.id})
        outline = await self.outline_agent.run(brief)
        self._check(PipelineState.OUTLINE_READY)

        self.draft.outline = outline
        self._set_brief_status(BriefStatus.outline_ready)
        self._transition(PipelineState.OUTLINE_READY)
        self._touch("outline", "brief")
        self._log(f"✅ Outline ready: {outline.title!r} ({len(outline.sections)} sections)")
        self._trace_end("outline", outline.to_dict())
        return outline

    def edit_outline(self, outline: ContentOutline) -> None:
        """User edit. Section order is kept exactly as given."""
        if self.state in (PipelineState.EMPTY, PipelineState.FINALIZED):
            raise PipelineError(f"Outline cannot be edited in state {self.state.value}")
        self.draft.outline = outline.model_copy(deep=True)
        if self.state == PipelineState.BRIEF_READY and outline.sections:
            self._set_brief_status(BriefStatus.outline_ready)
            self._transition(PipelineState.OUTLINE_READY)
        self._touch("outline")

    def update_brief(self, **fields: Any) -> ContentBrief:
        if "id" in fields:
            raise ValueError("brief id is immutable")
        if self.state == PipelineState.FINALIZED:
            raise PipelineError("Finalized drafts are read-only")
        self.draft.brief = self.draft.brief.validated_copy(**fields)
        self._touch("brief")
        return self.draft.brief

    # --- Generation ---

    def start_generation(self, *, source: Optional[FragmentSource] = None) -> "asyncio.Task[Draft]":
        """
        OUTLINE_READY/GENERATED -> GENERATING, returning the consumer task.

        Rejects a second start while a stream is in flight. Everything up to
        the task creation runs without yielding, so two starts can't both pass
        the check.
        """
        if self.state == PipelineState.GENERATING:
            raise GenerationInProgressError(f"Draft {self.draft.id} is already generating")
        self._check(PipelineState.GENERATING)

        draft = self.draft
        self._transition(PipelineState.GENERATING)
        draft.has_started = True
        draft.body = ""
        draft.citations = []
        draft.analysis = None
        self._touch("body", "citations", "analysis", "has_started")

        self._generation_epoch += 1
        self._abort = asyncio.Event()
        task = asyncio.ensure_future(self._run_generation(self._generation_epoch, self._abort, source))
        self._generation_task = task
        return task

    async def generate(self, *, source: Optional[FragmentSource] = None) -> Draft:
        return await self.start_generation(source=source)

    def abort_generation(self) -> bool:
        """Stop applying fragments and cancel any pending pull. Already-applied text stays."""
        if self._abort is None or self.state != PipelineState.GENERATING:
            return False
        self._abort.set()
        return True

    def _apply_fragment(self, text: str, citations: List[Citation]) -> None:
        draft = self.draft
        if text:
            draft.body = draft.body + text
        if len(citations) != len(draft.citations):
            draft.citations = list(citations)
        self._touch("body", "citations")

    def _apply_analysis(self, analyzed_body: str, analysis: SEOAnalysis) -> None:
        # The analysis is a cache of (body, keywords); drop it if the body moved on.
        if self._draft is None or self._draft.body != analyzed_body:
            self._log("🟡 Discarding SEO analysis for an outdated body.")
            return
        self._draft.analysis = analysis
        self._touch("analysis")

    def _hero_callback(self, epoch: int) -> Callable[[str, ArticleImage], None]:
        def apply(_body: str, image: ArticleImage) -> None:
            if epoch != self._generation_epoch or self._draft is None:
                self._log("🟡 Discarding hero image from a superseded generation.")
                return
            self.insert_image(image)
        return apply

    async def _run_generation(self, epoch: int, abort: asyncio.Event, source: Optional[FragmentSource]) -> Draft:
        draft = self.draft
        self._trace_start("generation", {"draft_id": draft.id, "epoch": epoch})
        outcome: Optional[StreamOutcome] = None
        try:
            outcome = await self.generator.generate(
                draft.brief,
                draft.outline,
                on_fragment=self._apply_fragment,
                on_analysis=self._apply_analysis,
                on_hero_image=self._hero_callback(epoch),
                abort=abort,
                source=source,
            )
        finally:
            if self._abort is abort:
                self._abort = None
                self._generation_task = None
            if self.state == PipelineState.GENERATING and epoch == self._generation_epoch:
                self._transition(PipelineState.GENERATED)
            self.persistence.schedule()

        for task in outcome.enrichments:
            self._track(task)

        if outcome.completed:
            self._set_brief_status(BriefStatus.content_ready)
            self._touch("brief")
            self.last_error = None
            self._log(f"✅ Generated {len(outcome.body)} chars, {len(outcome.citations)} citations")
            self._trace_end("generation", {"chars": len(outcome.body)}, {"fragments": outcome.fragments})
        elif outcome.error is not None:
            self.last_error = outcome.error
            self._trace_error("generation", {"draft_id": draft.id}, outcome.error)
        else:
            self._trace_end("generation", {"chars": len(outcome.body)}, {"aborted": True})
        return self.draft

    async def wait_for_enrichments(self) -> None:
        while self._enrichments:
            await asyncio.gather(*list(self._enrichments), return_exceptions=True)

    # --- Body edits, optimization, analysis ---

    def edit_body(self, body: str) -> None:
        if self.state in _BODY_BUSY:
            raise DraftBusyError(f"Body is locked while {self.state.value}")
        if self.state != PipelineState.GENERATED:
            raise PipelineError(f"Body cannot be edited in state {self.state.value}")
        self.draft.body = body
        self._touch("body")

    async def optimize(self) -> str:
        """
        GENERATED -> OPTIMIZING -> GENERATED.

        On optimizer failure the body is left exactly as it was and the
        existing analysis stays valid; otherwise the new body is re-analyzed.
        """
        self._check(PipelineState.OPTIMIZING)
        draft = self.draft
        before = draft.body
        if not before.strip():
            raise PipelineError("Nothing to optimize yet")

        self._transition(PipelineState.OPTIMIZING)
        self._trace_start("optimize", {"chars": len(before)})
        try:
            optimized = await self.optimizer.optimize(before, draft.brief)
        except Exception as e:
            self.last_error = e
            self._log(f"🟠 Optimization failed; body unchanged. Error: {e}")
            self._trace_error("optimize", {"chars": len(before)}, e)
            optimized = before
        finally:
            self._transition(PipelineState.GENERATED)

        if not optimized or not optimized.strip() or optimized == before:
            return before

        draft.body = optimized
        self._touch("body")
        self._trace_end("optimize", {"chars": len(optimized)})

        try:
            await self.reanalyze()
        except OperationFailedError as e:
            self.last_error = e
            self._log(f"🟠 Re-analysis after optimization failed: {e}")
        return optimized

    async def reanalyze(self) -> SEOAnalysis:
        """Manual (or post-optimization) SEO analysis of the current body."""
        draft = self.draft
        body = draft.body
        analysis = await self.analyzer.analyze(body, list(draft.brief.target_keywords))
        self._apply_analysis(body, analysis)
        return analysis

    # --- Images ---

    def insert_image(self, image: ArticleImage) -> None:
        """Add an image; a hero replaces any existing hero."""
        self.draft.insert_image(image)
        self._touch("images")

    async def add_image(self, prompt: str) -> ArticleImage:
        """Generate an additional (never hero) image."""
        image = await self.image_agent.create_image(
            prompt,
            is_hero=False,
            aspect_ratio=self.settings.image_aspect_ratio,
            size=self.settings.image_size,
        )
        self.insert_image(image)
        return image

    async def regenerate_hero_image(self, prompt: Optional[str] = None) -> ArticleImage:
        draft = self.draft
        text = prompt or build_hero_prompt(
            title=draft.title, topic=draft.brief.topic, keywords=draft.brief.target_keywords,
        )
        image = await self.image_agent.create_image(
            text,
            is_hero=True,
            aspect_ratio=self.settings.image_aspect_ratio,
            size=self.settings.image_size,
        )
        self.insert_image(image)
        return image

    # --- Supplementary research ---

    async def discover_backlinks(self, integration: Optional[IntegrationDescriptor] = None) -> List[BacklinkOpportunity]:
        brief = self.draft.brief
        found = await self.backlink_agent.run(brief.topic, list(brief.target_keywords))

        if integration is not None and integration.platform == IntegrationPlatform.serpstat:
            query = brief.company_url or brief.research_source_url or brief.topic
            found = found + await fetch_backlinks(query, integration, logger=self._log)

        seen: set[str] = set()
        merged: List[BacklinkOpportunity] = []
        for opp in list(self.draft.backlink_opportunities) + found:
            if opp.url in seen:
                continue
            seen.add(opp.url)
            merged.append(opp)

        self.draft.backlink_opportunities = merged
        self._touch("backlink_opportunities")
        return merged

    async def suggest_titles(self, *, top_n: int = 5) -> TitleSuggestionOutput:
        brief = self.draft.brief
        registry = await self.persistence.list()
        existing = [m.title for m in registry if m.id != self.draft.id]
        primary = brief.target_keywords[0] if brief.target_keywords else brief.topic
        return await self.title_agent.run(
            TitleSuggestionInput(
                topic=brief.topic,
                primary_keyword=primary,
                secondary_keywords=list(brief.secondary_keywords),
                existing_titles=existing,
                return_top_n=top_n,
            )
        )

    async def refine_text(self, text: str) -> str:
        """Re-voice raw notes as the brief's author; does not touch the draft."""
        draft = self.draft
        return await self.optimizer.refine_text(
            text, title=draft.title, tone=draft.brief.tone, author=draft.brief.author,
        )

    # --- Persistence & hand-off ---

    async def load_persisted(self) -> Draft:
        """
        Merge a previously persisted copy into the session's draft.

        Fields this session already touched are kept; a persisted body resumes
        the draft in GENERATED unless a generation is running right now.
        """
        draft_id = self.draft.id
        merged = await self.persistence.open(self._touched)
        if merged is None:
            return self.draft

        self._draft = merged
        if self.state not in _BODY_BUSY and self.state != PipelineState.FINALIZED:
            self.state = max(self.state, state_for_draft(merged), key=_STATE_ORDER.index)
        self._log(f"🔹 Loaded persisted draft {draft_id} (saved {merged.updated_at or 'never'})")
        return merged

    async def flush(self) -> None:
        await self.persistence.flush()

    async def finalize(
        self,
        publisher: Optional[Publisher] = None,
        integration: Optional[IntegrationDescriptor] = None,
    ) -> Draft:
        """
        GENERATED -> FINALIZED once the external collaborator accepts the draft.
        A publisher error leaves the state at GENERATED.
        """
        self._check(PipelineState.FINALIZED)
        await self.wait_for_enrichments()
        await self.persistence.flush()

        draft = self.draft
        if publisher is not None:
            try:
                await publisher.publish(draft.model_copy(deep=True), integration)
            except Exception as e:
                self.last_error = e
                self._trace_error("finalize", {"draft_id": draft.id}, e)
                raise OperationFailedError("Publishing", e) from e

        self._transition(PipelineState.FINALIZED)
        self._trace_end("finalize", {"draft_id": draft.id})
        return draft

    async def close(self) -> None:
        """Let enrichments land, then write whatever is pending."""
        await self.wait_for_enrichments()
        await self.persistence.close()


_STATE_ORDER = [
    PipelineState.EMPTY,
    PipelineState.BRIEF_READY,
    PipelineState.OUTLINE_READY,
    PipelineState.GENERATING,
    PipelineState.GENERATED,
    PipelineState.OPTIMIZING,
    PipelineState.FINALIZED,
]
