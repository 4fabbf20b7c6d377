"""Debounced, race-safe draft persistence.

The in-memory Draft owned by the controller is the source of truth; the
store is a lagging mirror. Bursts of mutations (stream fragments, keystrokes)
collapse into one write: every `schedule()` cancels the pending timer and arms
a new one at now + delay.

Writes never use captured snapshots. Each write takes the write lock, then
reads the *current* draft, so a write issued before a newer mutation can never
land after the newer write.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Collection, Dict, Optional

from app_logging.run_logger import RunLogger
from pipeline.storage import DraftStore, UpsertAck
from schemas.article import ArticleMetadata, Draft


# Fields a reopened session may take from storage. Brief and id always come
# from the session itself.
MERGEABLE_FIELDS = ("outline", "body", "analysis", "images", "citations", "backlink_opportunities")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class SaveStatus(str, Enum):
    idle = "idle"
    saving = "saving"
    saved = "saved"
    error = "error"


def _is_empty(name: str, value: Any) -> bool:
    if value is None:
        return True
    if name == "outline":
        return not value.sections
    if isinstance(value, (str, list, dict)):
        return len(value) == 0
    return False


def merge_persisted(local: Draft, persisted: Optional[Draft], touched: Collection[str]) -> Draft:
    """
    Load-on-open merge.

    Persisted values fill only fields the current session has not touched, and
    only when they are non-empty. A locally started generation (body touched)
    therefore always beats a stale persisted body.
    """
    if persisted is None or persisted.id != local.id:
        return local

    updates: Dict[str, Any] = {}
    for name in MERGEABLE_FIELDS:
        if name in touched:
            continue
        value = getattr(persisted, name)
        if _is_empty(name, value):
            continue
        updates[name] = value

    # has_started never reverts once any session has started generating.
    updates["has_started"] = bool(local.has_started or persisted.has_started or updates.get("body"))
    if persisted.updated_at:
        updates["updated_at"] = persisted.updated_at

    return local.model_copy(update=updates, deep=True)


class DraftPersistenceManager:
    """
    Owns persistence for one editing session's draft.

    `current` returns the live in-memory draft; it is read at write time.
    """

    def __init__(
        self,
        store: DraftStore,
        *,
        current: Optional[Callable[[], Optional[Draft]]] = None,
        delay_seconds: float = 2.0,
        logger: Callable[[str], None] = print,
        run_logger: Optional[RunLogger] = None,
    ) -> None:
        self.store = store
        self._current = current
        self.delay_seconds = float(delay_seconds)
        self._log = logger
        self.run_logger = run_logger

        self.status: SaveStatus = SaveStatus.idle
        self.last_saved_at: Optional[str] = None
        self.last_error: Optional[BaseException] = None
        self.write_count = 0

        self._lock = asyncio.Lock()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._inflight: set[asyncio.Task] = set()
        self._last_content: Optional[Dict[str, Any]] = None

    # --- Store contract ---

    async def upsert(self, draft: Draft) -> UpsertAck:
        return await asyncio.to_thread(self.store.upsert, draft)

    async def get(self, draft_id: str) -> Optional[Draft]:
        return await asyncio.to_thread(self.store.get, draft_id)

    async def list(self) -> list[ArticleMetadata]:
        return await asyncio.to_thread(self.store.list)

    async def open(self, touched: Collection[str] = ()) -> Optional[Draft]:
        """
        Merge whatever was persisted for the current draft into it.

        The current draft is read after the store returns, so mutations made
        while the read was in flight are not lost.
        """
        draft = self._current() if self._current is not None else None
        if draft is None:
            return None
        persisted = await self.get(draft.id)
        local = self._current() if self._current is not None else draft
        merged = merge_persisted(local, persisted, touched)
        if persisted is not None:
            self.mark_persisted(persisted)
        return merged

    def mark_persisted(self, persisted: Draft) -> None:
        """Record the stored copy so an unchanged draft is not rewritten."""
        self._last_content = persisted.content_dict()
        self.last_saved_at = persisted.updated_at

    # --- Debounce ---

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def schedule(self) -> None:
        """(Re)arm the debounce timer. Must be called from the event loop."""
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self.status = SaveStatus.saving
        self._timer = loop.call_later(self.delay_seconds, self._fire)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        self._timer = None
        task = asyncio.ensure_future(self._write_current())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def flush(self) -> Optional[UpsertAck]:
        """Cancel the pending timer and write the current draft now."""
        self.cancel()
        return await self._write_current()

    async def drain(self) -> None:
        """Wait for writes that have already fired."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def close(self) -> None:
        await self.flush()
        await self.drain()

    async def _write_current(self) -> Optional[UpsertAck]:
        async with self._lock:
            draft = self._current() if self._current is not None else None
            if draft is None:
                return None

            content = draft.content_dict()
            if content == self._last_content:
                if self.status == SaveStatus.saving:
                    self.status = SaveStatus.saved
                return None

            snapshot = draft.model_copy(update={"updated_at": _utc_now_iso()}, deep=True)
            self.status = SaveStatus.saving
            try:
                ack = await asyncio.to_thread(self.store.upsert, snapshot)
            except Exception as e:
                # The in-memory draft stays authoritative; the saved marker just doesn't advance.
                self.status = SaveStatus.error
                self.last_error = e
                self._log(f"🟠 Autosave failed for draft {draft.id}; keeping in-memory copy. Error: {e}")
                if self.run_logger is not None:
                    self.run_logger.error("persistence", {"draft_id": draft.id}, e)
                return None

            self._last_content = content
            self.last_error = None
            self.last_saved_at = ack.updated_at
            self.write_count += 1
            draft.updated_at = ack.updated_at
            # A newer mutation may have re-armed the timer while we were writing.
            self.status = SaveStatus.saving if self._timer is not None else SaveStatus.saved
            return ack
