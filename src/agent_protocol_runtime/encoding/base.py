"""Codec abstraction shared by the wire encodings.

A codec turns events into self-delimited frames and back. Decoding is
incremental: bytes are fed to a FrameDecoder as they arrive from the wire
and complete events are returned as soon as their frame is complete.

Implementations:
- TextEventCodec: Server-Sent Events, one ``data:`` record per event
- BinaryEventCodec: length-prefixed, type-tagged compact frames

Both decode the same logical stream into identical event values.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from ..errors import DecodeError
from ..events import BaseEvent


class FrameDecoder(ABC):
    """Incremental decoder for one stream."""

    @abstractmethod
    def feed(self, data: bytes) -> list[BaseEvent]:
        """Consume bytes and return every event whose frame is now complete.

        Raises:
            DecodeError: If a complete frame is malformed
        """
        ...

    @property
    @abstractmethod
    def buffered(self) -> int:
        """Number of bytes held for an incomplete frame."""
        ...

    def finish(self) -> None:
        """Signal end of stream.

        Raises:
            DecodeError: If an incomplete frame is left over
        """
        if self.buffered:
            raise DecodeError(f"Stream ended inside a frame ({self.buffered} bytes pending)")


class EventCodec(ABC):
    """Paired encoder/decoder for one wire representation."""

    #: Content type announced on HTTP responses
    media_type: str = ""

    #: Short name used in configuration ("text" | "binary")
    name: str = ""

    @abstractmethod
    def encode(self, event: BaseEvent) -> bytes:
        """Encode one event as one complete frame."""
        ...

    @abstractmethod
    def decoder(self) -> FrameDecoder:
        """Create a fresh incremental decoder."""
        ...

    def encode_all(self, events: Iterable[BaseEvent]) -> bytes:
        """Encode a sequence of events into one contiguous byte string."""
        return b"".join(self.encode(event) for event in events)

    def decode_all(self, data: bytes) -> list[BaseEvent]:
        """Decode a complete byte string.

        Raises:
            DecodeError: If any frame is malformed or the data ends mid-frame
        """
        decoder = self.decoder()
        events = decoder.feed(data)
        decoder.finish()
        return events
