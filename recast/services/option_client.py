"""
option_client.py — Option Generator Client
==========================================
Thin wrapper around the external text-generation service.

    POST {OPTION_GENERATOR_URL}
    {"prompt": "fruits", "playerCount": 3, "creativity": "normal"}
    → {"options": ["apple", "banana", "cherry"]}

Returns exactly `player_count` distinct non-empty strings or raises
`GenerationFailed`. Retries are the caller's responsibility.
"""

from __future__ import annotations

import logging

import httpx

from recast.core.errors import GenerationFailed

logger = logging.getLogger(__name__)

_TIMEOUT = httpx.Timeout(30.0, connect=5.0)


def validate_options(options: object, player_count: int) -> list[str]:
    if not isinstance(options, list) or not all(isinstance(o, str) for o in options):
        raise GenerationFailed("Generator returned a malformed option list")
    cleaned = [o.strip() for o in options]
    if len(cleaned) != player_count:
        raise GenerationFailed(
            f"Invalid number of options generated. Expected {player_count}, got {len(cleaned)}"
        )
    if any(not o for o in cleaned):
        raise GenerationFailed("Generator returned an empty option")
    if len(set(cleaned)) != len(cleaned):
        raise GenerationFailed("Generator returned duplicate options")
    return cleaned


class OptionGeneratorClient:
    def __init__(
        self,
        url: str,
        api_key: str = "",
        timeout: httpx.Timeout | float = _TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.api_key = api_key
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def generate(self, prompt: str, player_count: int, creativity: str = "normal") -> list[str]:
        body = {"prompt": prompt, "playerCount": player_count, "creativity": creativity}
        logger.info(f"Generating {player_count} options for prompt: {prompt!r} ({creativity})")
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self.url, headers=self._headers(), json=body)
                resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise GenerationFailed(
                f"Generator HTTP {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise GenerationFailed(f"Generator unavailable: {e}") from e

        if not isinstance(data, dict):
            raise GenerationFailed("Generator returned a malformed response")
        return validate_options(data.get("options"), player_count)
