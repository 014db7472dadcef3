"""Integration helpers for the OpenRouter API."""

from __future__ import annotations

import asyncio
import logging

import httpx

from ..config import Settings
from ..errors import EnrichmentError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are Vetro, a film and television metadata expert cataloguing a private "
    "media library. You always respond with a single JSON object that matches the "
    "documented schema and never include commentary outside JSON."
)

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503})


class OpenRouterClient:
    """Client responsible for talking to OpenRouter."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    @property
    def model(self) -> str:
        return self._settings.openrouter_model

    @property
    def configured(self) -> bool:
        return bool(self._settings.openrouter_api_key)

    async def generate(
        self,
        prompt: str,
        *,
        retry_limit: int | None = None,
        retry_delay: float | None = None,
        temperature: float = 0.2,
    ) -> str:
        """Return the raw text the model produced for ``prompt``.

        Rate limits, server errors and transport failures are retried with a
        fixed delay; anything else fails immediately with ``EnrichmentError``.
        """

        api_key = self._settings.openrouter_api_key
        if not api_key:
            raise EnrichmentError("OpenRouter API key is required for enrichment")

        attempts = retry_limit if retry_limit is not None else self._settings.enrichment_retry_limit
        attempts = max(1, min(int(attempts), 10))
        delay = retry_delay if retry_delay is not None else self._settings.enrichment_retry_delay

        payload = {
            "model": self.model,
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "X-Title": self._settings.app_name,
        }

        attempt = 1
        while True:
            try:
                return await self._complete(payload, headers)
            except EnrichmentError as exc:
                if not exc.transient:
                    raise
                if attempt >= attempts:
                    raise EnrichmentError(
                        f"OpenRouter failed after {attempts} attempt(s): {exc}",
                        transient=True,
                    ) from exc
                logger.warning(
                    "OpenRouter attempt %s/%s failed (%s), retrying in %.1fs",
                    attempt,
                    attempts,
                    exc,
                    delay,
                )
            await asyncio.sleep(delay)
            attempt += 1

    async def ping(self) -> bool:
        """Check the provider answers a trivial prompt."""

        text = await self.generate(
            'Respond with ONLY the JSON object {"status": "OK"} and nothing else.',
            retry_limit=1,
        )
        return "OK" in text

    async def _complete(self, payload: dict[str, object], headers: dict[str, str]) -> str:
        try:
            response = await self._client.post(
                "/chat/completions", json=payload, headers=headers
            )
        except httpx.HTTPError as exc:
            raise EnrichmentError(f"Network error: {exc}", transient=True) from exc

        if response.status_code >= 400:
            raise EnrichmentError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                transient=response.status_code in TRANSIENT_STATUS_CODES,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise EnrichmentError("Provider returned a non-JSON envelope") from exc
        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise EnrichmentError("Model returned no choices")
        message = choices[0].get("message", {}) or {}
        content = message.get("content")
        if not isinstance(content, str) or not content.strip():
            raise EnrichmentError("Model response missing content")
        return content
