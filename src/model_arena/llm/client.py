"""Async client for the OpenAI-compatible upstream that hosts every model.

One ``UpstreamClient`` is shared by all workers of a process; each call
is independent, so a slow or failing model never blocks its siblings.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

from model_arena.config import UpstreamSpec

_logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """The upstream answered with a non-success status or an unusable body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _status_message(status_code: int, body: str, reason: str) -> str:
    return f"HTTP {status_code}: {body or reason or 'Request failed'}"


class UpstreamClient:
    """Chat-completion calls against ``UpstreamSpec.base_url``.

    Parameters
    ----------
    spec:
        Upstream location, system message and timeouts.
    api_key:
        Bearer token sent with every request.
    http_client:
        Optional pre-built ``httpx.AsyncClient`` (tests inject one backed
        by ``httpx.MockTransport``).
    """

    def __init__(
        self,
        spec: UpstreamSpec,
        api_key: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.spec = spec
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if http_client is None:
            http_client = httpx.AsyncClient(
                headers=headers,
                timeout=httpx.Timeout(spec.fetch_timeout, connect=30),
            )
        else:
            http_client.headers.update(headers)
        self._client = http_client
        self._chat_url = f"{spec.base_url.rstrip('/')}/chat/completions"

    # ------------------------------------------------------------------
    # Chat completions
    # ------------------------------------------------------------------

    def _payload(
        self, model: str, prompt: str, temperature: float, stream: bool,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": self.spec.system_message},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "stream": stream,
        }
        if stream:
            payload["stream_options"] = {"include_usage": True}
        return payload

    @asynccontextmanager
    async def stream_chat(
        self, model: str, prompt: str, temperature: float,
    ) -> AsyncIterator[httpx.Response]:
        """Open a streaming completion; yields the connected response.

        Raises ``UpstreamError`` before yielding when the status is not 2xx.
        The response is closed when the context exits.
        """
        async with self._client.stream(
            "POST",
            self._chat_url,
            json=self._payload(model, prompt, temperature, stream=True),
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
        ) as resp:
            if not resp.is_success:
                body = (await resp.aread()).decode(errors="replace").strip()
                _logger.error(
                    "Upstream error for %s: %d %s",
                    model, resp.status_code, body[:500] or resp.reason_phrase,
                )
                raise UpstreamError(
                    _status_message(resp.status_code, body, resp.reason_phrase),
                    status_code=resp.status_code,
                )
            _logger.info("Upstream connected for %s (status %d)", model, resp.status_code)
            yield resp

    async def chat(self, model: str, prompt: str, temperature: float) -> dict[str, Any]:
        """Send a non-streaming completion and return the decoded body."""
        resp = await self._client.post(
            self._chat_url,
            json=self._payload(model, prompt, temperature, stream=False),
        )
        if not resp.is_success:
            body = resp.text.strip()
            _logger.error(
                "Non-stream call failed for %s: %d %s",
                model, resp.status_code, body[:500] or resp.reason_phrase,
            )
            raise UpstreamError(
                _status_message(resp.status_code, body, resp.reason_phrase),
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError("Failed to parse non-streaming response") from e
        if not isinstance(data, dict):
            raise UpstreamError("Failed to parse non-streaming response")
        return data

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def list_models(self) -> Any:
        """Fetch the raw upstream model catalog."""
        resp = await self._client.get(
            self.spec.models_url, timeout=self.spec.models_timeout,
        )
        if not resp.is_success:
            raise UpstreamError(resp.text, status_code=resp.status_code)
        return resp.json()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> UpstreamClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
