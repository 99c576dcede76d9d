"""Binary codec: length-prefixed, type-tagged frames.

Frame layout:

    +----------------+----------+-----------------------------------+
    | length: uint32 | tag: u8  | fields...                         |
    | (big-endian)   |          |                                   |
    +----------------+----------+-----------------------------------+

``length`` counts the tag and field bytes. ``tag`` maps 1:1 to EventType.
Each field is:

    field id: u8 | kind: u8 | value

Kinds:
- KIND_STRING: uvarint byte length + UTF-8
- KIND_INT64:  signed 64-bit big-endian (timestamps, milliseconds)
- KIND_JSON:   uvarint byte length + compact JSON (structured values)

Fields left at ``None`` that are optional are omitted. Every field the text
codec carries is carried here. Unknown tags decode into a RawEvent; unknown
field ids are skipped, since the kind byte tells how long their value is.
"""

from __future__ import annotations

import json
import logging
import struct
from typing import Any

from pydantic import ValidationError

from ..errors import DecodeError
from ..events import EVENT_CLASSES, BaseEvent, EventType, RawEvent
from .base import EventCodec, FrameDecoder

logger = logging.getLogger(__name__)

BINARY_MEDIA_TYPE = "application/vnd.agent-events+binary"

MAX_FRAME_BYTES = 16 * 1024 * 1024

_LENGTH = struct.Struct(">I")
_INT64 = struct.Struct(">q")

KIND_STRING = 0x01
KIND_INT64 = 0x02
KIND_JSON = 0x03

EVENT_TAGS: dict[EventType, int] = {
    EventType.RUN_STARTED: 1,
    EventType.RUN_FINISHED: 2,
    EventType.RUN_ERROR: 3,
    EventType.STEP_STARTED: 4,
    EventType.STEP_FINISHED: 5,
    EventType.TEXT_MESSAGE_START: 6,
    EventType.TEXT_MESSAGE_CONTENT: 7,
    EventType.TEXT_MESSAGE_END: 8,
    EventType.TEXT_MESSAGE_CHUNK: 9,
    EventType.TOOL_CALL_START: 10,
    EventType.TOOL_CALL_ARGS: 11,
    EventType.TOOL_CALL_END: 12,
    EventType.TOOL_CALL_CHUNK: 13,
    EventType.TOOL_CALL_RESULT: 14,
    EventType.THINKING_START: 15,
    EventType.THINKING_END: 16,
    EventType.THINKING_TEXT_MESSAGE_START: 17,
    EventType.THINKING_TEXT_MESSAGE_CONTENT: 18,
    EventType.THINKING_TEXT_MESSAGE_END: 19,
    EventType.STATE_SNAPSHOT: 20,
    EventType.STATE_DELTA: 21,
    EventType.MESSAGES_SNAPSHOT: 22,
    EventType.RAW: 23,
    EventType.CUSTOM: 24,
}
TAG_EVENTS: dict[int, EventType] = {tag: event_type for event_type, tag in EVENT_TAGS.items()}

# Field ids are global: the same attribute has the same id in every event
FIELD_IDS: dict[str, int] = {
    "timestamp": 1,
    "raw_event": 2,
    "thread_id": 3,
    "run_id": 4,
    "result": 5,
    "message": 6,
    "code": 7,
    "step_name": 8,
    "message_id": 9,
    "role": 10,
    "delta": 11,
    "tool_call_id": 12,
    "tool_call_name": 13,
    "parent_message_id": 14,
    "content": 15,
    "title": 16,
    "snapshot": 17,
    "messages": 18,
    "event": 19,
    "source": 20,
    "name": 21,
    "value": 22,
}
FIELD_NAMES: dict[int, str] = {field_id: name for name, field_id in FIELD_IDS.items()}

_INT_FIELDS = frozenset({"timestamp"})
_STRING_FIELDS = frozenset(
    {
        "thread_id",
        "run_id",
        "message",
        "code",
        "step_name",
        "message_id",
        "role",
        "delta",
        "tool_call_id",
        "tool_call_name",
        "parent_message_id",
        "content",
        "title",
        "source",
        "name",
    }
)


def encode_uvarint(value: int) -> bytes:
    """Encode a non-negative integer as an unsigned LEB128 varint."""
    if value < 0:
        raise ValueError("uvarint cannot encode negative numbers")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_uvarint(data: bytes, offset: int) -> tuple[int, int]:
    """Decode a uvarint at ``offset``; return ``(value, new_offset)``."""
    result = 0
    shift = 0
    while True:
        if offset >= len(data):
            raise DecodeError("Truncated varint in binary frame")
        byte = data[offset]
        offset += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, offset
        shift += 7
        if shift > 63:
            raise DecodeError("Varint too long in binary frame")


def _field_kind(name: str, value: Any) -> int:
    if name in _INT_FIELDS and isinstance(value, int):
        return KIND_INT64
    if name in _STRING_FIELDS and isinstance(value, str):
        return KIND_STRING
    return KIND_JSON


def _encode_value(kind: int, value: Any) -> bytes:
    if kind == KIND_INT64:
        return _INT64.pack(value)
    if kind == KIND_STRING:
        raw = value.encode("utf-8")
    else:
        raw = json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return encode_uvarint(len(raw)) + raw


def _decode_value(kind: int, body: bytes, offset: int) -> tuple[Any, int]:
    if kind == KIND_INT64:
        end = offset + _INT64.size
        if end > len(body):
            raise DecodeError("Truncated int64 field in binary frame")
        return _INT64.unpack_from(body, offset)[0], end

    if kind not in (KIND_STRING, KIND_JSON):
        raise DecodeError(f"Unknown field kind {kind:#04x} in binary frame")

    length, offset = decode_uvarint(body, offset)
    end = offset + length
    if end > len(body):
        raise DecodeError("Truncated field value in binary frame")
    try:
        text = body[offset:end].decode("utf-8")
        value = text if kind == KIND_STRING else json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Invalid field value in binary frame: {e}") from e
    return value, end


def encode_body(event: BaseEvent) -> bytes:
    """Encode the tag and fields of ``event`` (everything after the length prefix)."""
    parts = [bytes([EVENT_TAGS[event.type]])]
    for name, _, value in event.wire_fields():
        kind = _field_kind(name, value)
        parts.append(bytes([FIELD_IDS[name], kind]))
        parts.append(_encode_value(kind, value))
    return b"".join(parts)


def decode_body(body: bytes) -> BaseEvent:
    """Decode the tag and fields of one frame."""
    if not body:
        raise DecodeError("Empty binary frame")

    tag = body[0]
    event_type = TAG_EVENTS.get(tag)
    if event_type is None:
        logger.debug(f"Unknown event tag {tag}, decoding as RAW")
        return RawEvent(event={"tag": tag, "payload": body[1:].hex()}, source=f"unknown:{tag}")

    fields: dict[str, Any] = {}
    offset = 1
    while offset < len(body):
        if offset + 2 > len(body):
            raise DecodeError("Truncated field header in binary frame")
        field_id, kind = body[offset], body[offset + 1]
        value, offset = _decode_value(kind, body, offset + 2)
        name = FIELD_NAMES.get(field_id)
        if name is None:
            logger.debug(f"Skipping unknown field id {field_id} in {event_type.value}")
            continue
        fields[name] = value

    cls = EVENT_CLASSES[event_type]
    try:
        return cls.model_validate(fields)
    except ValidationError as e:
        raise DecodeError(f"Invalid {event_type.value} frame: {e}") from e


class BinaryFrameDecoder(FrameDecoder):
    """Incremental decoder for length-prefixed frames."""

    def __init__(self, max_frame_bytes: int = MAX_FRAME_BYTES) -> None:
        self._buffer = bytearray()
        self._max_frame_bytes = max_frame_bytes

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[BaseEvent]:
        self._buffer.extend(data)
        events: list[BaseEvent] = []

        while len(self._buffer) >= _LENGTH.size:
            (length,) = _LENGTH.unpack_from(self._buffer, 0)
            if length > self._max_frame_bytes:
                raise DecodeError(
                    f"Binary frame of {length} bytes exceeds limit of {self._max_frame_bytes}"
                )
            end = _LENGTH.size + length
            if len(self._buffer) < end:
                break
            body = bytes(self._buffer[_LENGTH.size : end])
            del self._buffer[:end]
            events.append(decode_body(body))

        return events


class BinaryEventCodec(EventCodec):
    """Compact binary encoding."""

    media_type = BINARY_MEDIA_TYPE
    name = "binary"

    def __init__(self, max_frame_bytes: int = MAX_FRAME_BYTES) -> None:
        self._max_frame_bytes = max_frame_bytes

    def encode(self, event: BaseEvent) -> bytes:
        body = encode_body(event)
        if len(body) > self._max_frame_bytes:
            raise ValueError(
                f"{event.type.value} frame of {len(body)} bytes exceeds limit "
                f"of {self._max_frame_bytes}"
            )
        return _LENGTH.pack(len(body)) + body

    def decoder(self) -> BinaryFrameDecoder:
        return BinaryFrameDecoder(self._max_frame_bytes)
