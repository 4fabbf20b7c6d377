from __future__ import annotations

import asyncio
import base64
import os
import uuid
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Iterable, Optional

from openai import AsyncOpenAI
from PIL import Image, ImageOps

from agents.base import BaseAgent
from pipeline.errors import OperationFailedError
from schemas.article import ArticleImage


IMAGE_MODEL = os.getenv("OPENAI_IMAGE_MODEL", "gpt-image-1")

# Long edge in pixels for each size label.
SIZE_LONG_EDGE = {"1K": 1024, "2K": 2048}


@dataclass(frozen=True)
class AspectRatio:
    width: int
    height: int

    @staticmethod
    def parse(value: str) -> "AspectRatio":
        try:
            w_s, h_s = (value or "").split(":", 1)
            w, h = int(w_s), int(h_s)
        except ValueError as e:
            raise ValueError(f"Invalid aspect ratio {value!r}; expected 'W:H'") from e
        if w <= 0 or h <= 0:
            raise ValueError(f"Invalid aspect ratio {value!r}; both sides must be positive")
        return AspectRatio(w, h)

    def dimensions(self, size: str) -> tuple[int, int]:
        if size not in SIZE_LONG_EDGE:
            raise ValueError(f"Unsupported image size {size!r}; expected one of {sorted(SIZE_LONG_EDGE)}")
        edge = SIZE_LONG_EDGE[size]
        if self.width >= self.height:
            return edge, max(1, round(edge * self.height / self.width))
        return max(1, round(edge * self.width / self.height)), edge

    def request_size(self) -> str:
        # The API only renders a few canvases; pick the closest orientation and crop after.
        if self.width > self.height:
            return "1536x1024"
        if self.width < self.height:
            return "1024x1536"
        return "1024x1024"


def build_hero_prompt(*, title: str, topic: str, keywords: Iterable[str] = ()) -> str:
    kws = "; ".join([str(k).strip() for k in keywords if str(k).strip()][:6])

    # Keep prompt simple + brand-safe (no logos, no text overlays).
    parts = [
        "Create a high-quality, photorealistic editorial hero image for a long-form article.",
        "No text, no logos, no watermarks.",
        "Clean composition, premium look, natural lighting, shallow depth of field.",
        f"Article title: {title}",
    ]
    if topic and topic.strip() and topic.strip() != title.strip():
        parts.append(f"Topic: {topic.strip()}")
    if kws:
        parts.append(f"Themes: {kws}")
    return "\n".join(parts).strip()


def cover_resize(im: "Image.Image", width: int, height: int) -> "Image.Image":
    return ImageOps.fit(im, (int(width), int(height)), method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))


def to_data_uri(png_bytes: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")


def render_png(raw: bytes, *, aspect_ratio: AspectRatio, size: str) -> bytes:
    width, height = aspect_ratio.dimensions(size)
    with Image.open(BytesIO(raw)) as im:
        im = im.convert("RGB")
        out = cover_resize(im, width, height)
        buf = BytesIO()
        out.save(buf, format="PNG", optimize=True)
    return buf.getvalue()


class ImageAssetAgent(BaseAgent):
    """
    Prompt -> rendered image asset, surfaced as a data: URI.

    Independent of text generation: nothing here reads or writes a draft.
    Transport failures and empty responses raise OperationFailedError.
    """

    name = "image"

    def __init__(
        self,
        *,
        client: Optional[AsyncOpenAI] = None,
        model: str = IMAGE_MODEL,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._client = client
        self.model = model

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI()
        return self._client

    async def _generate_bytes(self, *, prompt: str, request_size: str) -> bytes:
        resp = await self.client.images.generate(model=self.model, prompt=prompt, size=request_size)

        first = resp.data[0] if resp.data else None
        b64 = getattr(first, "b64_json", None) if first is not None else None
        if not b64:
            raise RuntimeError("Image API response did not include base64 data")
        return base64.b64decode(b64)

    async def run(self, prompt: str, *, aspect_ratio: str = "16:9", size: str = "1K") -> str:
        return await self.generate(prompt, aspect_ratio=aspect_ratio, size=size)

    async def generate(self, prompt: str, *, aspect_ratio: str = "16:9", size: str = "1K") -> str:
        ratio = AspectRatio.parse(aspect_ratio)
        trace_in = {"prompt": prompt, "aspect_ratio": aspect_ratio, "size": size}
        self._trace_start(trace_in)
        try:
            raw = await self._generate_bytes(prompt=prompt, request_size=ratio.request_size())
            png = await asyncio.to_thread(render_png, raw, aspect_ratio=ratio, size=size)
        except Exception as e:
            self._trace_error(trace_in, e)
            raise OperationFailedError("Image generation", e) from e

        self._trace_end({"bytes": len(png)})
        return to_data_uri(png)

    async def create_image(
        self,
        prompt: str,
        *,
        is_hero: bool = False,
        aspect_ratio: str = "16:9",
        size: str = "1K",
    ) -> ArticleImage:
        url = await self.generate(prompt, aspect_ratio=aspect_ratio, size=size)
        return ArticleImage(id=uuid.uuid4().hex[:12], url=url, prompt=prompt, is_hero=is_hero)
