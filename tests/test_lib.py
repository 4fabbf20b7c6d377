from __future__ import annotations

import json
import os
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import mock

from app_logging.run_logger import RunLogger
from lib.env import load_env
from lib.json_extract import extract_json, extract_list, extract_model
from lib.settings import PipelineSettings, load_settings
from lib.text_utils import count_phrase, slugify
from schemas.outline import ContentOutline


class TestJsonExtract(unittest.TestCase):
    def test_object_inside_prose(self) -> None:
        self.assertEqual(extract_json('Sure! {"a": {"b": [1, 2]}} Hope that helps.'), {"a": {"b": [1, 2]}})

    def test_braces_inside_strings_do_not_count(self) -> None:
        self.assertEqual(extract_json('x {"t": "a } b { c"} y'), {"t": "a } b { c"})

    def test_fenced_array(self) -> None:
        self.assertEqual(extract_json('```json\n["a", "b"]\n```'), ["a", "b"])

    def test_garbage_is_none(self) -> None:
        self.assertIsNone(extract_json("no structure {here"))
        self.assertIsNone(extract_json(""))

    def test_invalid_first_span_tries_the_next(self) -> None:
        self.assertEqual(extract_json("{not: json} then {\"ok\": true}"), {"ok": True})

    def test_unclosed_openers_do_not_hide_a_later_object(self) -> None:
        noisy = "[" * 20000 + ' note: "quoted" {"ok": true}'
        self.assertEqual(extract_json(noisy), {"ok": True})

    def test_quotes_in_surrounding_prose_are_ignored(self) -> None:
        self.assertEqual(extract_json('He said "here you go": {"a": 1}'), {"a": 1})

    def test_typed_fallbacks(self) -> None:
        fallback = ContentOutline(title="fallback")
        self.assertIs(extract_model("[]", ContentOutline, lambda: fallback), fallback)
        self.assertEqual(extract_model('{"title": "T"}', ContentOutline, lambda: fallback).title, "T")
        self.assertEqual(extract_list('{"titles": ["a"]}', list), ["a"])
        self.assertEqual(extract_list('{"a": 1, "b": 2}', list), [])


class TestTextUtils(unittest.TestCase):
    def test_slugify(self) -> None:
        self.assertEqual(slugify("  Hello, World's Best  Tea! "), "hello-worlds-best-tea")

    def test_count_phrase_matches_whole_tokens(self) -> None:
        self.assertEqual(count_phrase("Tea time; tea-time and teatime", "tea time"), 2)


class TestSettings(unittest.TestCase):
    def test_yaml_overlays_defaults(self) -> None:
        with TemporaryDirectory() as td:
            path = Path(td) / "pipeline.yaml"
            path.write_text(
                "autosave_delay_seconds: 0.5\n"
                "image_aspect_ratio: '1:1'\n"
                "generate_hero_image: false\n"
                "author:\n  name: Dana Reyes\n",
                encoding="utf-8",
            )
            settings = load_settings(path)

        self.assertEqual(settings.autosave_delay_seconds, 0.5)
        self.assertEqual(settings.image_aspect_ratio, "1:1")
        self.assertFalse(settings.generate_hero_image)
        self.assertEqual(settings.author.name, "Dana Reyes")
        self.assertEqual(settings.author.title, "Senior Strategist")

    def test_unknown_keys_are_rejected(self) -> None:
        with TemporaryDirectory() as td:
            path = Path(td) / "pipeline.yaml"
            path.write_text("autosave_delay: 1\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                load_settings(path)

    def test_non_mapping_and_missing_files(self) -> None:
        with TemporaryDirectory() as td:
            path = Path(td) / "pipeline.yaml"
            path.write_text("- a\n- b\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                load_settings(path)
            with self.assertRaises(FileNotFoundError):
                load_settings(Path(td) / "missing.yaml")

    def test_environment_defaults(self) -> None:
        with mock.patch.dict(os.environ, {"AUTOSAVE_DELAY_SECONDS": "3", "GENERATE_HERO_IMAGE": "no"}):
            settings = PipelineSettings.from_env()
        self.assertEqual(settings.autosave_delay_seconds, 3.0)
        self.assertFalse(settings.generate_hero_image)

        with mock.patch.dict(os.environ, {"AUTOSAVE_DELAY_SECONDS": "soon"}):
            with self.assertRaises(ValueError):
                PipelineSettings.from_env()


class TestEnv(unittest.TestCase):
    def test_load_env_reads_repo_root_file(self) -> None:
        with TemporaryDirectory() as td:
            Path(td, ".env").write_text("PIPELINE_TEST_ONLY_VAR=loaded\n", encoding="utf-8")
            with mock.patch.dict(os.environ, {}, clear=False):
                self.assertTrue(load_env(Path(td)))
                self.assertEqual(os.environ.get("PIPELINE_TEST_ONLY_VAR"), "loaded")

    def test_missing_env_file(self) -> None:
        with TemporaryDirectory() as td:
            self.assertFalse(load_env(Path(td)))


class TestRunLogger(unittest.TestCase):
    def test_events_are_appended_as_jsonl(self) -> None:
        with TemporaryDirectory() as td:
            rl = RunLogger.for_draft(log_dir=Path(td), draft_id="d1", run_id="r1")
            rl.start("research", {"q": "tea"})
            rl.end("research", {"ok": True}, {"fallback": False})
            rl.error("outline", {"q": "tea"}, RuntimeError("boom"))

            lines = [json.loads(x) for x in rl.log_path.read_text(encoding="utf-8").splitlines()]

        self.assertEqual(rl.log_path.name, "d1-r1.jsonl")
        self.assertEqual([x["event"] for x in lines], ["start", "end", "error"])
        self.assertEqual(lines[2]["error"], {"type": "RuntimeError", "message": "boom"})
        self.assertEqual(lines[1]["metrics"], {"fallback": False})


if __name__ == "__main__":
    unittest.main()
