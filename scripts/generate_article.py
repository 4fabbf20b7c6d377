from __future__ import annotations

import argparse
import asyncio
import os
from dataclasses import replace
from pathlib import Path
from typing import Optional

from app_logging.run_logger import RunLogger
from lib.env import load_env
from lib.settings import PipelineSettings, load_settings
from pipeline.controller import PipelineController, PipelineState, new_draft_id
from pipeline.storage import JsonFileDraftStore


def _require_env(name: str) -> str:
    v = (os.environ.get(name) or "").strip()
    if not v:
        raise SystemExit(
            f"Missing {name}. Set it in your environment (or .env) before running this script."
        )
    return v


def _print_registry(store: JsonFileDraftStore) -> None:
    registry = store.list()
    if not registry:
        print("No drafts yet.")
        return
    for meta in registry:
        print(f"{meta.id}  {meta.status:<10}  score={meta.score:<3}  {meta.updated_at}  {meta.title}")


async def _run(args: argparse.Namespace, settings: PipelineSettings) -> int:
    store = JsonFileDraftStore(settings.draft_store_dir)
    draft_id = args.resume or new_draft_id()
    run_logger = RunLogger.for_draft(log_dir=settings.run_log_dir, draft_id=draft_id)

    if args.resume:
        controller = await PipelineController.resume(
            args.resume, store=store, settings=settings, author=store.get_author(), run_logger=run_logger,
        )
        print(f"🟢 Resuming draft {draft_id} in state {controller.state.value}")
        if controller.state == PipelineState.BRIEF_READY:
            await controller.build_outline()
    else:
        controller = PipelineController(
            store=store, settings=settings, author=store.get_author(), run_logger=run_logger,
        )
        print(f"🟢 Starting draft {draft_id}: {args.topic}")
        await controller.research(args.topic, draft_id=draft_id)
        await controller.build_outline()

    try:
        if not controller.draft.body.strip() or args.regenerate:
            await controller.generate()
            if controller.last_error is not None:
                print(f"🟠 Generation stopped early: {controller.last_error}")
            await controller.wait_for_enrichments()

        if args.optimize:
            await controller.optimize()

        if args.backlinks:
            opportunities = await controller.discover_backlinks()
            print(f"🔹 {len(opportunities)} backlink opportunities")

        if args.titles:
            suggestions = await controller.suggest_titles()
            for cand in suggestions.selected:
                print(f"  [{cand.score:5.1f}] {cand.title}")

        if args.finalize:
            await controller.finalize()
    finally:
        await controller.close()

    draft = controller.draft
    score = draft.analysis.score if draft.analysis else "n/a"
    print(f"✅ Draft {draft.id}: {len(draft.body)} chars, {len(draft.citations)} citations, SEO score {score}")
    print(f"Saved: {store.path_for(draft.id)}")
    print(f"Run log: {run_logger.log_path}")

    if args.markdown_out:
        out = Path(args.markdown_out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(draft.body, encoding="utf-8")
        print(f"Wrote markdown: {out}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Research, outline and stream an SEO article draft")
    ap.add_argument("topic", nargs="?", help="Topic or URL to research")
    ap.add_argument("--resume", metavar="DRAFT_ID", help="Continue a saved draft instead of starting a new one")
    ap.add_argument("--config", help="YAML pipeline config (defaults to $PIPELINE_CONFIG)")
    ap.add_argument("--regenerate", action="store_true", help="Regenerate the body even if one exists")
    ap.add_argument("--optimize", action="store_true", help="Run one optimization pass after generation")
    ap.add_argument("--backlinks", action="store_true", help="Look for backlink opportunities")
    ap.add_argument("--titles", action="store_true", help="Print ranked title suggestions")
    ap.add_argument("--no-hero", action="store_true", help="Skip hero image generation")
    ap.add_argument("--finalize", action="store_true", help="Mark the draft finalized when done")
    ap.add_argument("--markdown-out", help="Also write the body to this Markdown file")
    ap.add_argument("--list", action="store_true", help="List saved drafts and exit")

    args = ap.parse_args(argv)

    load_env()
    settings = load_settings(Path(args.config) if args.config else None)
    if args.no_hero:
        settings = replace(settings, generate_hero_image=False)

    if args.list:
        _print_registry(JsonFileDraftStore(settings.draft_store_dir))
        return 0

    if not args.topic and not args.resume:
        ap.error("a topic is required unless --resume or --list is given")

    _require_env("OPENAI_API_KEY")
    return asyncio.run(_run(args, settings))


if __name__ == "__main__":
    raise SystemExit(main())
