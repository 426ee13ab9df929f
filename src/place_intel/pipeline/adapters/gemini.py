"""Google GenAI adapter."""

from __future__ import annotations

import logging

from google import genai
from google.genai import types

log = logging.getLogger(__name__)


class GoogleGenAIAdapter:
    """Calls `client.aio.models.generate_content` and returns the response text."""

    def __init__(self, api_key: str, model: str) -> None:
        self._client = genai.Client(api_key=api_key)
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    async def generate(self, prompt: str, *, temperature: float, max_tokens: int) -> str:
        config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            response_mime_type="application/json",
        )
        response = await self._client.aio.models.generate_content(
            model=self._model,
            contents=prompt,
            config=config,
        )
        text = response.text or ""
        log.debug("Model %s returned %d chars", self._model, len(text))
        return text
