from __future__ import annotations

import asyncio
import unittest

from pipeline.persistence import DraftPersistenceManager, SaveStatus, merge_persisted
from pipeline.storage import InMemoryDraftStore
from schemas.article import Draft, SEOAnalysis
from schemas.brief import ContentBrief
from schemas.outline import ContentOutline, OutlineSection

from pipeline_fakes import quiet


def _draft(draft_id: str = "d1", body: str = "") -> Draft:
    return Draft(
        id=draft_id,
        brief=ContentBrief(id=draft_id, topic="tea"),
        outline=ContentOutline(title="Tea", sections=[OutlineSection(heading="Intro")]),
        body=body,
    )


class _FailingStore(InMemoryDraftStore):
    def upsert(self, draft):
        raise OSError("disk full")


class TestMergePersisted(unittest.TestCase):
    def test_untouched_fields_come_from_storage(self) -> None:
        local = _draft()
        persisted = _draft(body="stored body").model_copy(update={"has_started": True, "updated_at": "2026-01-01T00:00:00Z"})

        merged = merge_persisted(local, persisted, touched=())
        self.assertEqual(merged.body, "stored body")
        self.assertTrue(merged.has_started)
        self.assertEqual(merged.updated_at, "2026-01-01T00:00:00Z")

    def test_touched_fields_beat_storage(self) -> None:
        local = _draft(body="fresh stream").model_copy(update={"has_started": True})
        persisted = _draft(body="stale body")

        merged = merge_persisted(local, persisted, touched={"body"})
        self.assertEqual(merged.body, "fresh stream")

    def test_empty_persisted_values_never_overwrite(self) -> None:
        local = _draft(body="local").model_copy(update={"analysis": SEOAnalysis(score=40)})
        persisted = _draft(body="")

        merged = merge_persisted(local, persisted, touched=())
        self.assertEqual(merged.body, "local")
        self.assertEqual(merged.analysis.score, 40)

    def test_has_started_never_reverts(self) -> None:
        local = _draft().model_copy(update={"has_started": True})
        persisted = _draft()
        self.assertTrue(merge_persisted(local, persisted, touched=()).has_started)

    def test_other_draft_is_ignored(self) -> None:
        local = _draft("a")
        self.assertIs(merge_persisted(local, _draft("b", body="x"), touched=()), local)


class TestDraftPersistenceManager(unittest.IsolatedAsyncioTestCase):
    async def test_bursts_collapse_into_one_write(self) -> None:
        store = InMemoryDraftStore()
        draft = _draft()
        mgr = DraftPersistenceManager(store, current=lambda: draft, delay_seconds=0.05, logger=quiet)

        for chunk in ["a", "b", "c", "d", "e"]:
            draft.body += chunk
            mgr.schedule()
            await asyncio.sleep(0.005)
        self.assertTrue(mgr.pending)

        await asyncio.sleep(0.2)
        await mgr.drain()

        self.assertEqual(store.writes, 1)
        self.assertEqual(store.get("d1").body, "abcde")
        self.assertEqual(mgr.status, SaveStatus.saved)
        self.assertIsNotNone(draft.updated_at)

    async def test_flush_writes_latest_state_and_skips_unchanged(self) -> None:
        store = InMemoryDraftStore()
        draft = _draft()
        mgr = DraftPersistenceManager(store, current=lambda: draft, delay_seconds=10, logger=quiet)

        draft.body = "v1"
        mgr.schedule()
        draft.body = "v2"
        ack = await mgr.flush()

        self.assertTrue(ack.changed)
        self.assertFalse(mgr.pending)
        self.assertEqual(store.get("d1").body, "v2")

        self.assertIsNone(await mgr.flush())
        self.assertEqual(store.writes, 1)

    async def test_failed_write_keeps_memory_authoritative(self) -> None:
        draft = _draft(body="unsaved")
        mgr = DraftPersistenceManager(_FailingStore(), current=lambda: draft, delay_seconds=10, logger=quiet)

        self.assertIsNone(await mgr.flush())
        self.assertEqual(mgr.status, SaveStatus.error)
        self.assertIsInstance(mgr.last_error, OSError)
        self.assertEqual(draft.body, "unsaved")
        self.assertIsNone(mgr.last_saved_at)

    async def test_open_merges_stored_copy(self) -> None:
        store = InMemoryDraftStore()
        store.upsert(_draft(body="stored"))
        local = _draft()
        mgr = DraftPersistenceManager(store, current=lambda: local, logger=quiet)

        merged = await mgr.open(touched=())
        self.assertEqual(merged.body, "stored")
        self.assertIsNotNone(mgr.last_saved_at)

    async def test_no_draft_means_no_write(self) -> None:
        store = InMemoryDraftStore()
        mgr = DraftPersistenceManager(store, current=lambda: None, logger=quiet)
        self.assertIsNone(await mgr.flush())
        self.assertEqual(store.writes, 0)


if __name__ == "__main__":
    unittest.main()
