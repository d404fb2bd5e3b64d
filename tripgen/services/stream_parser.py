"""
Incremental parser for `data: <json>` framed chunk streams.

Network reads can split a record anywhere, including inside a multi-byte
UTF-8 sequence, so bytes go through an incremental decoder and only
newline-terminated lines are parsed. The trailing partial line stays
buffered until the next `feed()`.
"""

from __future__ import annotations

import codecs
import json
from typing import Optional, Union

import structlog
from pydantic import ValidationError

from tripgen.domain.schemas import StreamEvent, StreamEventType

logger = structlog.get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

_KNOWN_EVENT_TYPES = {event_type.value for event_type in StreamEventType}


class StreamDeltaParser:
    def __init__(self, chunk_id: Optional[int] = None):
        self.chunk_id = chunk_id
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._pending: list[StreamEvent] = []
        self._finished = False
        self.skipped_lines = 0

    @property
    def finished(self) -> bool:
        """True once the `[DONE]` sentinel line has been seen."""
        return self._finished

    def feed(self, data: Union[bytes, str]) -> None:
        if self._finished:
            return
        text = self._decoder.decode(data) if isinstance(data, bytes) else data
        if not text:
            return
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        for line in lines:
            self._consume_line(line)
            if self._finished:
                self._buffer = ""
                return

    def close(self) -> None:
        """Flush the decoder and parse a final unterminated line, if any."""
        if self._finished:
            return
        tail = self._decoder.decode(b"", final=True)
        remainder = self._buffer + tail
        self._buffer = ""
        if remainder.strip():
            self._consume_line(remainder)

    def drain(self) -> list[StreamEvent]:
        events, self._pending = self._pending, []
        return events

    def _consume_line(self, raw_line: str) -> None:
        line = raw_line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            # Blank separators, comments and other SSE fields carry nothing for us.
            return

        body = line[len(DATA_PREFIX):]
        if body.startswith(" "):
            body = body[1:]
        if body.strip() == DONE_SENTINEL:
            self._finished = True
            return

        try:
            raw = json.loads(body)
        except ValueError:
            self._skip(line, reason="invalid_json")
            return

        if not isinstance(raw, dict):
            self._skip(line, reason="not_an_object")
            return
        if raw.get("type") not in _KNOWN_EVENT_TYPES:
            logger.debug("stream_event_ignored", chunk_id=self.chunk_id, event_type=raw.get("type"))
            return

        try:
            event = StreamEvent.model_validate(raw)
        except ValidationError:
            self._skip(line, reason="schema_mismatch")
            return

        if event.chunk_id is None and self.chunk_id is not None:
            event = event.model_copy(update={"chunk_id": self.chunk_id})
        self._pending.append(event)

    def _skip(self, line: str, *, reason: str) -> None:
        self.skipped_lines += 1
        logger.warning("stream_record_skipped", chunk_id=self.chunk_id, reason=reason, preview=line[:120])
