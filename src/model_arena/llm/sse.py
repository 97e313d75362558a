"""Incremental server-sent-event parser for upstream chat-completion streams.

Network reads do not respect frame boundaries, so the parser keeps a
rolling text buffer and only emits a payload once its terminating blank
line has been seen (or the input ends).
"""

from __future__ import annotations

import codecs
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable

_logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"

_LINE_SPLIT = re.compile(r"\r?\n")


@dataclass(frozen=True)
class SSEMessage:
    """One complete SSE payload.

    ``done`` is set for the ``[DONE]`` completion marker, in which case
    ``data`` is ``None``.  Otherwise ``data`` is the decoded JSON value.
    """

    raw: str
    data: Any = None
    done: bool = False


class SSEParser:
    """Turn arbitrary byte fragments into complete SSE payloads.

    Usage::

        parser = SSEParser()
        async for chunk in response.aiter_bytes():
            for message in parser.feed(chunk):
                ...
        for message in parser.finish():
            ...

    Payloads that are not valid JSON are dropped; they are counted in
    ``stats["malformed"]`` and passed to *on_malformed* when given.
    """

    def __init__(self, on_malformed: Callable[[str], Any] | None = None) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._parts: list[str] = []
        self._on_malformed = on_malformed
        self.stats = {"messages": 0, "malformed": 0}

    def feed(self, chunk: bytes) -> list[SSEMessage]:
        """Consume one fragment and return every payload it completed."""
        self._buffer += self._decoder.decode(chunk)
        lines = _LINE_SPLIT.split(self._buffer)
        self._buffer = lines.pop()

        messages: list[SSEMessage] = []
        for line in lines:
            self._consume_line(line, messages)
        return messages

    def finish(self) -> list[SSEMessage]:
        """Flush held-back text at end of input."""
        self._buffer += self._decoder.decode(b"", final=True)
        messages: list[SSEMessage] = []
        if self._buffer:
            for line in _LINE_SPLIT.split(self._buffer):
                self._consume_line(line, messages)
            self._buffer = ""
        self._flush(messages)
        return messages

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _consume_line(self, raw_line: str, out: list[SSEMessage]) -> None:
        line = raw_line.strip()
        if not line:
            self._flush(out)
            return
        # id:, event:, retry: and ":" comments carry nothing we need
        if line.startswith("data:"):
            self._parts.append(line[5:].strip())

    def _flush(self, out: list[SSEMessage]) -> None:
        if not self._parts:
            return
        payload = "\n".join(self._parts).strip()
        self._parts = []
        if not payload:
            return

        if payload == DONE_MARKER:
            self.stats["messages"] += 1
            out.append(SSEMessage(raw=payload, done=True))
            return

        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            self.stats["malformed"] += 1
            _logger.debug("Dropping malformed SSE payload: %.200s", payload)
            if self._on_malformed is not None:
                self._on_malformed(payload)
            return

        self.stats["messages"] += 1
        out.append(SSEMessage(raw=payload, data=data))
