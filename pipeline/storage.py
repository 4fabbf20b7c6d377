from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol

from pydantic import ValidationError

from schemas.article import ArticleMetadata, Draft
from schemas.common import Author


REGISTRY_LIMIT = 50


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class UpsertAck:
    draft_id: str
    changed: bool
    updated_at: Optional[str]


class DraftStore(Protocol):
    """
    Durable draft storage keyed by draft id.

    `upsert` is idempotent on content: re-upserting a draft whose content
    (everything but updated_at) matches the stored copy changes nothing.
    Writes are last-write-wins at whole-draft granularity.
    """

    def get(self, draft_id: str) -> Optional[Draft]: ...

    def upsert(self, draft: Draft) -> UpsertAck: ...

    def list(self) -> List[ArticleMetadata]: ...

    def get_author(self) -> Author: ...

    def save_author(self, author: Author) -> None: ...


def _stamp(draft: Draft) -> Draft:
    return draft.model_copy(update={"updated_at": draft.updated_at or _utc_now_iso()}, deep=True)


def _registry_with(registry: List[ArticleMetadata], meta: ArticleMetadata) -> List[ArticleMetadata]:
    rest = [m for m in registry if m.id != meta.id]
    return ([meta] + rest)[:REGISTRY_LIMIT]


class InMemoryDraftStore:
    """Process-local store; handy for tests and dry runs."""

    def __init__(self) -> None:
        self._drafts: Dict[str, Draft] = {}
        self._registry: List[ArticleMetadata] = []
        self._author: Optional[Author] = None
        self.writes = 0

    def get(self, draft_id: str) -> Optional[Draft]:
        d = self._drafts.get(draft_id)
        return d.model_copy(deep=True) if d is not None else None

    def upsert(self, draft: Draft) -> UpsertAck:
        existing = self._drafts.get(draft.id)
        if existing is not None and existing.content_equals(draft):
            return UpsertAck(draft_id=draft.id, changed=False, updated_at=existing.updated_at)

        stored = _stamp(draft)
        self._drafts[draft.id] = stored
        self._registry = _registry_with(self._registry, stored.to_metadata())
        self.writes += 1
        return UpsertAck(draft_id=draft.id, changed=True, updated_at=stored.updated_at)

    def list(self) -> List[ArticleMetadata]:
        return list(self._registry)

    def get_author(self) -> Author:
        return self._author.model_copy() if self._author else Author()

    def save_author(self, author: Author) -> None:
        self._author = author.model_copy()


class JsonFileDraftStore:
    """
    One JSON file per draft under `<root>/drafts/`, plus:
      - registry.json: newest-first ArticleMetadata list (capped)
      - author.json:   saved author persona

    Files are written to a temp sibling and renamed, so a crash mid-write
    never leaves a truncated draft behind.
    """

    def __init__(self, root: Path, logger: Callable[[str], None] = print) -> None:
        self.root = Path(root)
        self._log = logger

    @property
    def drafts_dir(self) -> Path:
        return self.root / "drafts"

    @property
    def registry_path(self) -> Path:
        return self.root / "registry.json"

    @property
    def author_path(self) -> Path:
        return self.root / "author.json"

    def path_for(self, draft_id: str) -> Path:
        safe = draft_id.strip().replace("/", "-").replace("\\", "-")
        return self.drafts_dir / f"{safe}.json"

    def _write_atomic(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        tmp.replace(path)

    def get(self, draft_id: str) -> Optional[Draft]:
        path = self.path_for(draft_id)
        if not path.exists():
            return None
        try:
            return Draft.model_validate_json(path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError) as e:
            self._log(f"🟠 Stored draft {draft_id} is unreadable; treating it as missing. Error: {e}")
            return None

    def upsert(self, draft: Draft) -> UpsertAck:
        existing = self.get(draft.id)
        if existing is not None and existing.content_equals(draft):
            return UpsertAck(draft_id=draft.id, changed=False, updated_at=existing.updated_at)

        stored = _stamp(draft)
        self._write_atomic(self.path_for(draft.id), stored.model_dump_json(indent=2))
        self._save_registry(_registry_with(self.list(), stored.to_metadata()))
        return UpsertAck(draft_id=draft.id, changed=True, updated_at=stored.updated_at)

    def list(self) -> List[ArticleMetadata]:
        if not self.registry_path.exists():
            return []
        try:
            data = json.loads(self.registry_path.read_text(encoding="utf-8"))
            if isinstance(data, list):
                return [ArticleMetadata.model_validate(x) for x in data]
        except (ValueError, ValidationError):
            pass

        # Self-heal if corrupted
        self._save_registry([])
        return []

    def _save_registry(self, registry: List[ArticleMetadata]) -> None:
        payload = [m.model_dump(mode="json") for m in registry]
        self._write_atomic(self.registry_path, json.dumps(payload, indent=2, ensure_ascii=False))

    def get_author(self) -> Author:
        if not self.author_path.exists():
            return Author()
        try:
            return Author.model_validate_json(self.author_path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError) as e:
            self._log(f"🟠 Saved author is unreadable; using the default persona. Error: {e}")
            return Author()

    def save_author(self, author: Author) -> None:
        self._write_atomic(self.author_path, author.model_dump_json(indent=2))
