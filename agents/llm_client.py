from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Literal, Optional

import openai
from openai import AsyncOpenAI


ModelTier = Literal["fast", "pro"]

MODEL_FAST = os.getenv("OPENAI_MODEL_FAST", "gpt-5-mini")
MODEL_PRO = os.getenv("OPENAI_MODEL_PRO", os.getenv("OPENAI_MODEL", "gpt-5.2"))
DEFAULT_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.2"))

WEB_SEARCH_TOOL: Dict[str, Any] = {"type": "web_search"}


class LLMStreamError(RuntimeError):
    """The text stream failed after it was opened."""


@dataclass(frozen=True)
class GroundingRef:
    url: str
    title: str = ""
    snippet: Optional[str] = None


@dataclass(frozen=True)
class StreamFragment:
    text: str
    grounding_refs: List[GroundingRef] = field(default_factory=list)


def _get(obj: Any, key: str, default: Any = None) -> Any:
    # SDK events carry annotations as plain dicts in some versions, objects in others.
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _is_unsupported_temperature(err: Exception) -> bool:
    msg = str(err).lower()
    return "unsupported" in msg and "temperature" in msg


class LLMClient:
    """
    Thin async wrapper around OpenAI text generation (Responses API).

    Three request shapes cover the pipeline:
      - generate_text: single-shot free text
      - generate_json: single-shot text constrained by a JSON schema
      - stream_text:   incremental text fragments plus url citations

    Compatibility handling:
      - Some models/endpoints don't accept temperature=.
    We try with it first, then retry once without it.
    """

    def __init__(
        self,
        *,
        client: Optional[AsyncOpenAI] = None,
        fast_model: str = MODEL_FAST,
        pro_model: str = MODEL_PRO,
    ) -> None:
        self._client = client
        self.models: Dict[str, str] = {"fast": fast_model, "pro": pro_model}

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI()
        return self._client

    def _kwargs(
        self,
        *,
        tier: ModelTier,
        prompt: str,
        instructions: Optional[str],
        tools: Optional[List[Dict[str, Any]]],
        schema: Optional[Dict[str, Any]],
        schema_name: str,
        temperature: Optional[float],
        max_output_tokens: Optional[int],
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self.models[tier],
            "input": [{"role": "user", "content": prompt}],
        }
        if instructions:
            kwargs["instructions"] = instructions
        if tools:
            kwargs["tools"] = list(tools)
        if schema is not None:
            kwargs["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "schema": schema,
                    "strict": False,
                }
            }
        if temperature is not None:
            kwargs["temperature"] = float(temperature)
        if max_output_tokens is not None:
            kwargs["max_output_tokens"] = int(max_output_tokens)
        return kwargs

    async def _create(self, kwargs: Dict[str, Any]) -> Any:
        try:
            return await self.client.responses.create(**kwargs)
        except openai.BadRequestError as e:
            if "temperature" in kwargs and _is_unsupported_temperature(e):
                retry = dict(kwargs)
                retry.pop("temperature", None)
                return await self.client.responses.create(**retry)
            raise

    async def generate_text(
        self,
        *,
        prompt: str,
        tier: ModelTier = "pro",
        instructions: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = DEFAULT_TEMPERATURE,
        max_output_tokens: Optional[int] = None,
    ) -> str:
        kwargs = self._kwargs(
            tier=tier,
            prompt=prompt,
            instructions=instructions,
            tools=tools,
            schema=None,
            schema_name="",
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )
        resp = await self._create(kwargs)
        return (resp.output_text or "").strip()

    async def generate_json(
        self,
        *,
        prompt: str,
        schema: Optional[Dict[str, Any]] = None,
        schema_name: str = "result",
        tier: ModelTier = "fast",
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = DEFAULT_TEMPERATURE,
    ) -> str:
        """
        Returns the raw text of a JSON-constrained response.

        Parsing is left to the caller (see lib.json_extract) because models
        with tools enabled don't always honour the schema.
        """
        kwargs = self._kwargs(
            tier=tier,
            prompt=prompt,
            instructions=None,
            tools=tools,
            schema=schema,
            schema_name=schema_name,
            temperature=temperature,
            max_output_tokens=None,
        )
        resp = await self._create(kwargs)
        return (resp.output_text or "").strip()

    async def stream_text(
        self,
        *,
        prompt: str,
        tier: ModelTier = "pro",
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = 0.7,
    ) -> AsyncIterator[StreamFragment]:
        """
        Yield fragments in arrival order until the service closes the stream.

        Text deltas become fragments with text; url_citation annotations become
        fragments with grounding refs (and empty text).
        """
        kwargs = self._kwargs(
            tier=tier,
            prompt=prompt,
            instructions=None,
            tools=tools,
            schema=None,
            schema_name="",
            temperature=temperature,
            max_output_tokens=None,
        )
        kwargs["stream"] = True
        stream = await self._create(kwargs)

        # Closing the generator (abort, error, early exit) releases the HTTP response.
        async with stream:
            async for event in stream:
                etype = _get(event, "type", "")

                if etype == "response.output_text.delta":
                    delta = _get(event, "delta", "") or ""
                    if delta:
                        yield StreamFragment(text=delta)

                elif etype == "response.output_text.annotation.added":
                    ann = _get(event, "annotation")
                    if _get(ann, "type") == "url_citation" and _get(ann, "url"):
                        ref = GroundingRef(
                            url=str(_get(ann, "url")),
                            title=str(_get(ann, "title") or ""),
                        )
                        yield StreamFragment(text="", grounding_refs=[ref])

                elif etype == "response.failed":
                    err = _get(_get(event, "response"), "error")
                    raise LLMStreamError(f"Response failed: {_get(err, 'message') or err}")

                elif etype == "error":
                    raise LLMStreamError(f"Stream error: {_get(event, 'message') or 'unknown'}")
