"""
Text-generation client shared by every call-site.

Owns the request timeout, retry/backoff and pacing policy. Callers get
either a usable result or None; nothing raised by the upstream service
crosses this boundary.
"""

import asyncio
import json
import logging
import re
import time
from typing import TypeVar

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from pipeline.config import Settings

logger = logging.getLogger(__name__)

ShapeT = TypeVar("ShapeT", bound=BaseModel)

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


class IntervalGate:
    """Fixed-interval gate: successive callers are spaced at least `min_interval` apart."""

    def __init__(self, min_interval: float = 0.0):
        self.min_interval = min_interval
        self._lock = asyncio.Lock()
        self._next_slot = 0.0

    async def wait(self) -> None:
        if self.min_interval <= 0:
            return
        async with self._lock:
            now = time.monotonic()
            delay = self._next_slot - now
            if delay > 0:
                await asyncio.sleep(delay)
            self._next_slot = max(now, self._next_slot) + self.min_interval


def _strip_markdown_json(text: str) -> str:
    """Remove ```json ... ``` markers wherever they appear."""
    return _FENCE.sub("", text).strip()


def extract_json_object(text: str) -> dict | None:
    """
    Return the first well-formed {...} object in `text`.

    Handles models that wrap the JSON in code fences or surround it with
    commentary.
    """
    text = _strip_markdown_json(text)
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = text.find("{", start + 1)
    return None


def parse_structured(text: str, shape: type[ShapeT]) -> ShapeT | None:
    data = extract_json_object(text)
    if data is None:
        logger.warning("Generation returned no JSON object: %.200r", text)
        return None
    try:
        return shape.model_validate(data)
    except ValidationError as e:
        logger.warning("Generation output does not match %s: %s", shape.__name__, e)
        return None


class GenerationClient:
    def __init__(
        self,
        client: AsyncOpenAI | None,
        *,
        model: str,
        timeout: float = 10.0,
        max_retries: int = 2,
        backoff_base: float = 1.0,
        gate: IntervalGate | None = None,
    ):
        self._client = client
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.gate = gate or IntervalGate()

    @classmethod
    def from_settings(cls, settings: Settings) -> "GenerationClient":
        """Build the AsyncOpenAI client, optionally with a custom base URL."""
        client = None
        if settings.openai_api_key:
            kwargs: dict = {"api_key": settings.openai_api_key, "max_retries": 0}
            if settings.openai_base_url:
                kwargs["base_url"] = settings.openai_base_url
            client = AsyncOpenAI(**kwargs)
        else:
            logger.warning("OPENAI_API_KEY is not set; every generation call will fall back")

        return cls(
            client,
            model=settings.openai_model,
            timeout=settings.generation_timeout_seconds,
            max_retries=settings.generation_max_retries,
            backoff_base=settings.generation_backoff_base_seconds,
            gate=IntervalGate(settings.generation_min_interval_seconds),
        )

    async def generate(
        self,
        system_instruction: str,
        user_content: str,
        shape: type[ShapeT] | None = None,
    ) -> ShapeT | str | None:
        """
        Free text when `shape` is None, otherwise a validated `shape` instance.
        None means the service was unavailable or its output unusable.
        """
        if self._client is None:
            return None

        text = await self._complete_with_retry(system_instruction, user_content, structured=shape is not None)
        if not text or not text.strip():
            return None

        if shape is None:
            return text.strip()
        return parse_structured(text, shape)

    async def _complete_with_retry(self, system_instruction: str, user_content: str, structured: bool) -> str | None:
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                await self.gate.wait()
                return await asyncio.wait_for(
                    self._complete(system_instruction, user_content, structured),
                    timeout=self.timeout,
                )
            except (OpenAIError, asyncio.TimeoutError) as e:
                reason = "timeout" if isinstance(e, asyncio.TimeoutError) else f"{type(e).__name__}: {e}"
                if attempt + 1 >= attempts:
                    logger.warning("Generation unavailable after %d attempts (%s)", attempts, reason)
                    return None
                delay = self.backoff_base * (2 ** attempt)
                logger.info("Generation attempt %d failed (%s); retrying in %.1fs", attempt + 1, reason, delay)
                await asyncio.sleep(delay)
        return None

    async def _complete(self, system_instruction: str, user_content: str, structured: bool) -> str | None:
        kwargs: dict = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_instruction},
                {"role": "user", "content": user_content},
            ],
            "temperature": 0.1,
        }
        if structured:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self._client.chat.completions.create(**kwargs)
        if not response.choices:
            return None
        return response.choices[0].message.content
