"""Wire encodings for event streams.

Two semantically equivalent codecs behind one interface:
- text:   Server-Sent Events (``text/event-stream``)
- binary: length-prefixed type-tagged frames
  (``application/vnd.agent-events+binary``)

The server picks the codec from the request's ``Accept`` header; the client
picks the decoder from the response's ``Content-Type``.
"""

from __future__ import annotations

from ..errors import TransportError
from .base import EventCodec, FrameDecoder
from .binary import BINARY_MEDIA_TYPE, BinaryEventCodec, BinaryFrameDecoder
from .text import TEXT_MEDIA_TYPE, TextEventCodec, TextFrameDecoder

CODECS: dict[str, type[EventCodec]] = {
    TextEventCodec.name: TextEventCodec,
    BinaryEventCodec.name: BinaryEventCodec,
}


def get_codec(name: str) -> EventCodec:
    """Get a codec by configuration name ("text" or "binary").

    Raises:
        ValueError: If the name is unknown
    """
    try:
        return CODECS[name]()
    except KeyError:
        raise ValueError(f"Unknown encoding {name!r} (expected one of {sorted(CODECS)})") from None


def accept_header(preferred: str) -> str:
    """Build the Accept header a client sends for its preferred encoding."""
    if preferred == BinaryEventCodec.name:
        return f"{BINARY_MEDIA_TYPE}, {TEXT_MEDIA_TYPE};q=0.5"
    return TEXT_MEDIA_TYPE


def _parse_accept(accept: str) -> list[tuple[str, float]]:
    ranges: list[tuple[str, float]] = []
    for index, part in enumerate(accept.split(",")):
        media, *params = (piece.strip() for piece in part.split(";"))
        if not media:
            continue
        quality = 1.0
        for param in params:
            key, _, value = param.partition("=")
            if key.strip() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        # Stable ordering: higher q first, then header order
        ranges.append((media.lower(), quality - index * 1e-6))
    return sorted(ranges, key=lambda item: item[1], reverse=True)


def negotiate(accept: str | None) -> EventCodec:
    """Pick a codec for an ``Accept`` header. Defaults to text."""
    if not accept:
        return TextEventCodec()
    for media, quality in _parse_accept(accept):
        if quality <= 0:
            continue
        if media == BINARY_MEDIA_TYPE:
            return BinaryEventCodec()
        if media in (TEXT_MEDIA_TYPE, "text/*", "*/*"):
            return TextEventCodec()
    return TextEventCodec()


def codec_for_content_type(content_type: str | None) -> EventCodec:
    """Pick the decoder for a response ``Content-Type``.

    Raises:
        TransportError: If the content type is not an event stream
    """
    media = (content_type or "").split(";")[0].strip().lower()
    if media == BINARY_MEDIA_TYPE:
        return BinaryEventCodec()
    if media == TEXT_MEDIA_TYPE:
        return TextEventCodec()
    raise TransportError(f"Unsupported response content type {content_type!r}")


__all__ = [
    "BINARY_MEDIA_TYPE",
    "TEXT_MEDIA_TYPE",
    "BinaryEventCodec",
    "BinaryFrameDecoder",
    "EventCodec",
    "FrameDecoder",
    "TextEventCodec",
    "TextFrameDecoder",
    "accept_header",
    "codec_for_content_type",
    "get_codec",
    "negotiate",
]
