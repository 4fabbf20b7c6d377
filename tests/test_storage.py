from __future__ import annotations

import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from pipeline.storage import REGISTRY_LIMIT, InMemoryDraftStore, JsonFileDraftStore
from schemas.article import Draft, SEOAnalysis
from schemas.brief import ContentBrief
from schemas.common import Author
from schemas.outline import ContentOutline

from pipeline_fakes import quiet


def _draft(draft_id: str, body: str = "", title: str = "Title") -> Draft:
    return Draft(
        id=draft_id,
        brief=ContentBrief(id=draft_id, topic=f"topic {draft_id}"),
        outline=ContentOutline(title=title),
        body=body,
    )


class TestInMemoryDraftStore(unittest.TestCase):
    def test_upsert_is_idempotent_on_content(self) -> None:
        store = InMemoryDraftStore()
        first = store.upsert(_draft("a", body="x"))
        again = store.upsert(_draft("a", body="x").model_copy(update={"updated_at": "2030-01-01T00:00:00Z"}))

        self.assertTrue(first.changed)
        self.assertFalse(again.changed)
        self.assertEqual(again.updated_at, first.updated_at)
        self.assertEqual(store.writes, 1)

    def test_get_returns_a_copy(self) -> None:
        store = InMemoryDraftStore()
        store.upsert(_draft("a", body="x"))
        got = store.get("a")
        got.body = "mutated"
        self.assertEqual(store.get("a").body, "x")


class TestJsonFileDraftStore(unittest.TestCase):
    def test_round_trip_and_metadata(self) -> None:
        with TemporaryDirectory() as td:
            store = JsonFileDraftStore(Path(td), logger=quiet)
            draft = _draft("abc", body="hello", title="Hello World").model_copy(
                update={"analysis": SEOAnalysis(score=72)}
            )
            ack = store.upsert(draft)

            self.assertTrue(ack.changed)
            loaded = store.get("abc")
            self.assertEqual(loaded.body, "hello")
            self.assertEqual(loaded.updated_at, ack.updated_at)

            meta = store.list()[0]
            self.assertEqual((meta.id, meta.title, meta.score), ("abc", "Hello World", 72))
            self.assertFalse(store.upsert(loaded).changed)

    def test_registry_is_newest_first_and_capped(self) -> None:
        with TemporaryDirectory() as td:
            store = JsonFileDraftStore(Path(td), logger=quiet)
            for i in range(REGISTRY_LIMIT + 2):
                store.upsert(_draft(f"d{i}"))
            store.upsert(_draft("d5", body="edited"))

            ids = [m.id for m in store.list()]
            self.assertEqual(len(ids), REGISTRY_LIMIT)
            self.assertEqual(ids[0], "d5")
            self.assertEqual(ids[1], f"d{REGISTRY_LIMIT + 1}")
            self.assertEqual(ids.count("d5"), 1)

    def test_corrupt_registry_self_heals(self) -> None:
        with TemporaryDirectory() as td:
            store = JsonFileDraftStore(Path(td), logger=quiet)
            store.registry_path.parent.mkdir(parents=True, exist_ok=True)
            store.registry_path.write_text("{not json", encoding="utf-8")

            self.assertEqual(store.list(), [])
            self.assertEqual(json.loads(store.registry_path.read_text(encoding="utf-8")), [])

    def test_corrupt_draft_reads_as_missing(self) -> None:
        with TemporaryDirectory() as td:
            store = JsonFileDraftStore(Path(td), logger=quiet)
            path = store.path_for("bad")
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text('{"id": "bad"}', encoding="utf-8")
            self.assertIsNone(store.get("bad"))
            self.assertIsNone(store.get("missing"))

    def test_author_defaults_and_persists(self) -> None:
        with TemporaryDirectory() as td:
            store = JsonFileDraftStore(Path(td), logger=quiet)
            self.assertEqual(store.get_author(), Author())

            store.save_author(Author(name="Dana Reyes", title="Editor", bio="Coffee writer"))
            self.assertEqual(store.get_author().name, "Dana Reyes")

            store.author_path.write_text("[]", encoding="utf-8")
            self.assertEqual(store.get_author(), Author())


if __name__ == "__main__":
    unittest.main()
