import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


def utc_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ") + "-" + uuid.uuid4().hex[:6]


@dataclass
class RunLogger:
    """
    Append-only JSONL run logger for one pipeline session.

    Each call writes one JSON object per line to log_path, so a session that
    dies mid-stream still leaves a readable trail of completed steps.
    """
    run_id: str
    draft_id: str
    log_path: Path

    @classmethod
    def for_draft(cls, *, log_dir: Path, draft_id: str, run_id: Optional[str] = None) -> "RunLogger":
        rid = run_id or new_run_id()
        return cls(run_id=rid, draft_id=draft_id, log_path=log_dir / f"{draft_id}-{rid}.jsonl")

    def _write(self, payload: dict[str, Any]) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        with self.log_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")

    def start(self, agent: str, input: Any) -> None:
        self._write({
            "ts": utc_iso(),
            "run_id": self.run_id,
            "draft_id": self.draft_id,
            "agent": agent,
            "event": "start",
            "status": "ok",
            "input": input,
        })

    def end(self, agent: str, output: Any, metrics: Optional[dict[str, Any]] = None) -> None:
        self._write({
            "ts": utc_iso(),
            "run_id": self.run_id,
            "draft_id": self.draft_id,
            "agent": agent,
            "event": "end",
            "status": "ok",
            "output": output,
            "metrics": metrics or {},
        })

    def error(self, agent: str, input: Any, err: BaseException) -> None:
        self._write({
            "ts": utc_iso(),
            "run_id": self.run_id,
            "draft_id": self.draft_id,
            "agent": agent,
            "event": "error",
            "status": "error",
            "input": input,
            "error": {
                "type": err.__class__.__name__,
                "message": str(err),
            }
        })
