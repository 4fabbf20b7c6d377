from __future__ import annotations

import base64
import threading
import unittest
from io import BytesIO
from types import SimpleNamespace
from typing import Any
from unittest import mock

from PIL import Image

from agents.image_agent import AspectRatio, ImageAssetAgent, build_hero_prompt, render_png
from pipeline.errors import OperationFailedError

from pipeline_fakes import quiet


def _png_b64(width: int = 300, height: int = 200) -> str:
    buf = BytesIO()
    Image.new("RGB", (width, height), (200, 80, 40)).save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


class _FakeImages:
    def __init__(self, data: list[Any]) -> None:
        self.data = data
        self.calls: list[dict[str, Any]] = []

    async def generate(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        return SimpleNamespace(data=self.data)


def _agent(data: list[Any]) -> tuple[ImageAssetAgent, _FakeImages]:
    images = _FakeImages(data)
    return ImageAssetAgent(client=SimpleNamespace(images=images), model="img-m", logger=quiet), images


def _decode(data_uri: str) -> Image.Image:
    prefix = "data:image/png;base64,"
    assert data_uri.startswith(prefix)
    return Image.open(BytesIO(base64.b64decode(data_uri[len(prefix):])))


class TestAspectRatio(unittest.TestCase):
    def test_dimensions(self) -> None:
        self.assertEqual(AspectRatio.parse("16:9").dimensions("1K"), (1024, 576))
        self.assertEqual(AspectRatio.parse("9:16").dimensions("1K"), (576, 1024))
        self.assertEqual(AspectRatio.parse("1:1").dimensions("2K"), (2048, 2048))

    def test_invalid_values(self) -> None:
        for bad in ("", "16x9", "0:1", "a:b"):
            with self.assertRaises(ValueError):
                AspectRatio.parse(bad)
        with self.assertRaises(ValueError):
            AspectRatio.parse("1:1").dimensions("8K")


class TestImageAssetAgent(unittest.IsolatedAsyncioTestCase):
    async def test_output_is_cropped_to_the_requested_ratio(self) -> None:
        agent, images = _agent([SimpleNamespace(b64_json=_png_b64())])
        uri = await agent.generate("a desk", aspect_ratio="16:9", size="1K")

        with _decode(uri) as im:
            self.assertEqual(im.size, (1024, 576))
        self.assertEqual(images.calls[0]["size"], "1536x1024")
        self.assertEqual(images.calls[0]["model"], "img-m")

    async def test_rendering_runs_off_the_event_loop_thread(self) -> None:
        agent, _ = _agent([SimpleNamespace(b64_json=_png_b64())])
        threads: list[int] = []

        def recording_render(*args: Any, **kwargs: Any) -> bytes:
            threads.append(threading.get_ident())
            return render_png(*args, **kwargs)

        with mock.patch("agents.image_agent.render_png", side_effect=recording_render):
            await agent.generate("a desk", aspect_ratio="1:1")

        self.assertEqual(len(threads), 1)
        self.assertNotEqual(threads[0], threading.get_ident())

    async def test_create_image_marks_hero(self) -> None:
        agent, _ = _agent([SimpleNamespace(b64_json=_png_b64())])
        img = await agent.create_image("p", is_hero=True, aspect_ratio="1:1")
        self.assertTrue(img.is_hero)
        self.assertEqual(img.prompt, "p")
        self.assertTrue(img.url.startswith("data:image/png;base64,"))

    async def test_empty_response_raises_operation_failed(self) -> None:
        agent, _ = _agent([])
        with self.assertRaises(OperationFailedError):
            await agent.generate("p")

    async def test_bad_ratio_fails_before_calling_the_service(self) -> None:
        agent, images = _agent([SimpleNamespace(b64_json=_png_b64())])
        with self.assertRaises(ValueError):
            await agent.generate("p", aspect_ratio="wide")
        self.assertEqual(images.calls, [])


class TestHeroPrompt(unittest.TestCase):
    def test_prompt_mentions_title_and_themes(self) -> None:
        prompt = build_hero_prompt(title="Solar Roofs", topic="solar", keywords=["panels", " ", "cost"])
        self.assertIn("Article title: Solar Roofs", prompt)
        self.assertIn("Themes: panels; cost", prompt)
        self.assertIn("No text, no logos", prompt)


if __name__ == "__main__":
    unittest.main()
