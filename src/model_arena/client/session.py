"""Client for a running Model Arena server.

``ArenaClient.generate`` posts one comparison, folds the NDJSON reply
through a ``StreamReconstructor`` and guarantees that every requested
model ends up terminal: completed by the server, or failed locally by
the watchdog, a transport error, ``reset()`` or a truncated body.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable

import httpx

from model_arena.client.reconstructor import StreamReconstructor
from model_arena.types import DEFAULT_TEMPERATURE

_logger = logging.getLogger(__name__)

STREAM_TIMEOUT = "Stream timeout"
STREAM_CANCELLED = "Cancelled"
STREAM_TRUNCATED = "Stream closed before completion"

UpdateCallback = Callable[[StreamReconstructor], None]


class GenerationRequestError(Exception):
    """A comparison could not be requested, or the server refused it."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ArenaClient:
    """Talks to ``/api/generate`` and ``/api/models`` of an arena server.

    Parameters
    ----------
    base_url:
        Root URL of the server, e.g. ``http://127.0.0.1:8000``.
    watchdog_seconds:
        Upper bound on one whole comparison read.
    http_client:
        Optional pre-built ``httpx.AsyncClient``; its ``base_url`` is
        replaced with *base_url*.
    """

    def __init__(
        self,
        base_url: str,
        watchdog_seconds: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if http_client is None:
            http_client = httpx.AsyncClient(timeout=httpx.Timeout(None, connect=10))
        http_client.base_url = base_url
        self._client = http_client
        self.watchdog_seconds = watchdog_seconds
        self._inflight: asyncio.Future | None = None
        self._reset_requested = False

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate(
        self,
        prompt: str,
        models: Iterable[str],
        temperature: float = DEFAULT_TEMPERATURE,
        on_update: UpdateCallback | None = None,
    ) -> StreamReconstructor:
        """Run one comparison and return the reconstructed per-model state.

        Raises ``GenerationRequestError`` only for local validation
        failures.  Server and transport failures are recorded on the
        returned reconstructor (``error``) and applied to every model
        still pending.
        """
        if not prompt or not prompt.strip():
            raise GenerationRequestError("Enter a prompt before generating")
        model_ids = [m for m in models if m]
        if not model_ids:
            raise GenerationRequestError("Choose at least one model to compare")

        recon = StreamReconstructor(model_ids)
        payload = {"prompt": prompt, "models": model_ids, "temperature": temperature}
        _logger.info("Requesting comparison of %d models", len(model_ids))

        self._reset_requested = False
        read = asyncio.ensure_future(self._read(recon, payload, on_update))
        self._inflight = read
        try:
            await asyncio.wait_for(read, timeout=self.watchdog_seconds)
        except asyncio.TimeoutError:
            _logger.warning("Stream timeout after %.0fs, forcing completion", self.watchdog_seconds)
            recon.fail_pending(STREAM_TIMEOUT)
        except asyncio.CancelledError:
            if not self._reset_requested:
                raise
            recon.fail_pending(STREAM_CANCELLED)
        except (httpx.HTTPError, GenerationRequestError) as e:
            message = str(e) or type(e).__name__
            _logger.error("Streaming error: %s", message)
            recon.error = message
            recon.fail_pending(message)
        finally:
            self._inflight = None

        if on_update is not None:
            on_update(recon)
        return recon

    async def _read(
        self,
        recon: StreamReconstructor,
        payload: dict[str, Any],
        on_update: UpdateCallback | None,
    ) -> None:
        async with self._client.stream(
            "POST", "/api/generate", json=payload,
            headers={"Accept": "application/x-ndjson"},
        ) as resp:
            if not resp.is_success:
                body = (await resp.aread()).decode(errors="replace").strip()
                raise GenerationRequestError(
                    body or f"HTTP {resp.status_code}", status_code=resp.status_code,
                )
            async for chunk in resp.aiter_bytes():
                if recon.feed(chunk) and on_update is not None:
                    on_update(recon)
                if recon.ended:
                    break
            if not recon.ended and recon.finish() and on_update is not None:
                on_update(recon)

        if not recon.ended:
            _logger.warning("Stream closed before end event")
            recon.fail_pending(STREAM_TRUNCATED)
        elif recon.pending:
            # end is authoritative; anything still open never reached a terminal
            _logger.warning(
                "Server ended stream with unfinished models: %s", ", ".join(recon.pending),
            )
            recon.fail_pending(STREAM_TIMEOUT)

    def reset(self) -> bool:
        """Cancel the comparison in flight, if any; returns whether one was."""
        if self._inflight is None or self._inflight.done():
            return False
        self._reset_requested = True
        self._inflight.cancel()
        return True

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def list_models(self) -> list[dict[str, str]]:
        """Return ``[{"id", "name"}]`` from the server's catalog endpoint."""
        resp = await self._client.get("/api/models")
        if not resp.is_success:
            try:
                message = resp.json().get("error") or resp.text
            except ValueError:
                message = resp.text
            raise GenerationRequestError(
                message or f"HTTP {resp.status_code}", status_code=resp.status_code,
            )
        return resp.json().get("models", [])

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ArenaClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
