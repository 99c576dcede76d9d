"""Text codec: Server-Sent Events.

Wire format, one record per event:

    data: {"type":"TEXT_MESSAGE_CONTENT","messageId":"m1","delta":"Hi"}\\n\\n

``type`` is always the first key. A record may span several ``data:``
lines (joined with newlines, per the SSE standard). Comment lines (``:``)
and other SSE fields (``event:``, ``id:``, ``retry:``) are ignored.
"""

from __future__ import annotations

import json
import logging

from ..errors import DecodeError
from ..events import BaseEvent, parse_event
from .base import EventCodec, FrameDecoder

logger = logging.getLogger(__name__)

TEXT_MEDIA_TYPE = "text/event-stream"


class TextFrameDecoder(FrameDecoder):
    """Incremental SSE parser."""

    def __init__(self) -> None:
        self._buffer = b""
        self._data_lines: list[str] = []

    @property
    def buffered(self) -> int:
        return len(self._buffer) + sum(len(line) for line in self._data_lines)

    def feed(self, data: bytes) -> list[BaseEvent]:
        self._buffer += data
        events: list[BaseEvent] = []

        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            raw_line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1 :]

            try:
                line = raw_line.decode("utf-8").rstrip("\r")
            except UnicodeDecodeError as e:
                raise DecodeError(f"Invalid UTF-8 in text frame: {e}") from e

            if not line:
                # Blank line dispatches the record
                if self._data_lines:
                    events.append(self._dispatch())
                continue

            if line.startswith(":"):
                continue

            field, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if field == "data":
                self._data_lines.append(value)
            else:
                logger.debug(f"Ignoring SSE field {field!r}")

        return events

    def _dispatch(self) -> BaseEvent:
        payload = "\n".join(self._data_lines)
        self._data_lines = []
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise DecodeError(f"Invalid JSON in text frame: {e} (data: {payload[:50]})") from e
        return parse_event(data)


class TextEventCodec(EventCodec):
    """Human-readable SSE encoding."""

    media_type = TEXT_MEDIA_TYPE
    name = "text"

    def encode(self, event: BaseEvent) -> bytes:
        payload = json.dumps(event.to_wire(), ensure_ascii=False, separators=(",", ":"))
        return f"data: {payload}\n\n".encode()

    def decoder(self) -> TextFrameDecoder:
        return TextFrameDecoder()
