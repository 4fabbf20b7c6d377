from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from schemas.common import Author


def _env_flag(name: str, default: bool = True) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class PipelineSettings:
    """
    Runtime knobs for the authoring pipeline.

    Precedence: YAML config file > environment > defaults.
    Model names live with the LLM client (OPENAI_MODEL_FAST / OPENAI_MODEL_PRO).
    """

    draft_store_dir: Path = Path("output/drafts")
    run_log_dir: Path = Path("output/run_logs")
    autosave_delay_seconds: float = 2.0
    image_aspect_ratio: str = "16:9"
    image_size: str = "1K"
    generate_hero_image: bool = True
    author: Author = field(default_factory=Author)

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(
            draft_store_dir=Path(os.getenv("DRAFT_STORE_DIR", "output/drafts")),
            run_log_dir=Path(os.getenv("RUN_LOG_DIR", "output/run_logs")),
            autosave_delay_seconds=_env_float("AUTOSAVE_DELAY_SECONDS", 2.0),
            image_aspect_ratio=os.getenv("IMAGE_ASPECT_RATIO", "16:9"),
            image_size=os.getenv("IMAGE_SIZE", "1K"),
            generate_hero_image=_env_flag("GENERATE_HERO_IMAGE", True),
        )


def _read_yaml_mapping(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Pipeline config must be a YAML mapping/object: {path}")
    return data


def load_settings(path: Optional[Path] = None) -> PipelineSettings:
    """
    Build settings from the environment, then overlay an optional YAML file
    (explicit `path`, else $PIPELINE_CONFIG when set).
    """
    settings = PipelineSettings.from_env()

    cfg_path = path
    if cfg_path is None and os.getenv("PIPELINE_CONFIG"):
        cfg_path = Path(os.environ["PIPELINE_CONFIG"])
    if cfg_path is None:
        return settings
    if not cfg_path.exists():
        raise FileNotFoundError(f"Missing pipeline config: {cfg_path}")

    data = _read_yaml_mapping(cfg_path)
    known = {f.name for f in fields(PipelineSettings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown pipeline config keys in {cfg_path}: {unknown}")

    updates: dict[str, Any] = {}
    for key, value in data.items():
        if key in ("draft_store_dir", "run_log_dir"):
            updates[key] = Path(str(value))
        elif key == "author":
            updates[key] = Author.model_validate(value or {})
        elif key == "autosave_delay_seconds":
            updates[key] = float(value)
        elif key == "generate_hero_image":
            updates[key] = bool(value)
        else:
            updates[key] = str(value)

    return replace(settings, **updates)
