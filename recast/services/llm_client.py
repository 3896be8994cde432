"""
llm_client.py — Chat Completions Client
=======================================
Minimal async client for an OpenAI-compatible `/chat/completions` endpoint,
used by the bundled option generator.

Usage:
    client = LLMClient(url, api_key, model="gpt-4o-mini")
    result = await client.generate("Category: fruits ...", system_prompt="...", temperature=0.7)
    result.output  # "apple, banana, cherry"
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

_TIMEOUT = httpx.Timeout(30.0, connect=5.0)


class LLMServiceError(Exception):
    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(f"[llm] {message}")


@dataclass
class LLMResult:
    output: str


class LLMClient:
    def __init__(
        self,
        url: str,
        api_key: str = "",
        model: str = "gpt-4o-mini",
        timeout: httpx.Timeout | float = _TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.api_key = api_key
        self.model = model
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def generate(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> LLMResult:
        """Single non-streaming completion."""
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        body: dict = {"model": self.model, "messages": messages, "temperature": temperature}
        if max_tokens is not None:
            body["max_tokens"] = max_tokens

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self.url, headers=self._headers(), json=body)
                resp.raise_for_status()
            data = resp.json()
            output = data["choices"][0]["message"]["content"]
        except httpx.HTTPStatusError as e:
            raise LLMServiceError(
                f"HTTP {e.response.status_code}: {e.response.text[:200]}", status=e.response.status_code
            ) from e
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMServiceError(str(e) or type(e).__name__) from e

        if not isinstance(output, str):
            raise LLMServiceError("completion has no text content")
        return LLMResult(output=output)
