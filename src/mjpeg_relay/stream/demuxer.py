"""
Frame Demuxer
=============

Splits a multipart/x-mixed-replace byte stream into JPEG frames.

The upstream body looks like:

    --boundary\\r\\n
    Content-Type: image/jpeg\\r\\n
    Content-Length: 12345\\r\\n
    \\r\\n
    <JPEG bytes>\\r\\n
    --boundary\\r\\n
    ...

Only the boundary and the JPEG SOI marker are used for framing; part
headers and trailing CRLFs are never parsed.

Design Rules:
    - One demuxer per upstream connection attempt (no carried state)
    - Search always runs over the accumulated buffer, so a boundary
      split across two chunks is found once the second chunk arrives
    - Segments without an SOI marker are dropped silently
"""

import logging
import re
from typing import Iterator, Optional

from mjpeg_relay.stream.errors import BufferOverflowError, ProtocolMismatch
from mjpeg_relay.stream.frame import Frame


logger = logging.getLogger(__name__)


SOI_MARKER = b"\xff\xd8"

_BOUNDARY_RE = re.compile(r"boundary=([^;]*)", re.IGNORECASE)


def boundary_token(content_type: Optional[str]) -> bytes:
    """
    Build the boundary token from a Content-Type header value.

    Args:
        content_type: Raw header value, e.g.
            "multipart/x-mixed-replace;boundary=boundarydonotcross"

    Returns:
        The delimiter bytes, prefixed with the multipart dashes.

    Raises:
        ProtocolMismatch: If the header or its boundary parameter is
            missing or empty.
    """
    if not content_type:
        raise ProtocolMismatch("Response has no Content-Type header")

    match = _BOUNDARY_RE.search(content_type)
    if match is None:
        raise ProtocolMismatch(
            f"No boundary parameter in Content-Type: {content_type!r}"
        )

    value = match.group(1).strip().strip('"')
    if not value:
        raise ProtocolMismatch(
            f"Empty boundary parameter in Content-Type: {content_type!r}"
        )

    return b"--" + value.encode("latin-1")


class FrameDemuxer:
    """
    Incremental multipart demuxer.

    Bytes go in through feed(); complete frames come out of the iterator
    it returns. Every segment between two boundaries that holds an SOI
    marker becomes one Frame, starting at that marker.

    Attributes:
        boundary: Delimiter bytes (see boundary_token)
        max_buffer_size: Cap on unconsumed bytes, 0 = unbounded
        frames_emitted: Frames yielded so far
        segments_dropped: Non-empty segments that held no SOI marker

    Example:
        demuxer = FrameDemuxer(boundary_token(response.headers["content-type"]))

        async for chunk in response.aiter_bytes():
            for frame in demuxer.feed(chunk):
                await broadcast(frame)
    """

    def __init__(self, boundary: bytes, max_buffer_size: int = 0) -> None:
        if not boundary:
            raise ValueError("boundary must not be empty")
        if max_buffer_size < 0:
            raise ValueError("max_buffer_size must be >= 0")

        self.boundary = bytes(boundary)
        self.max_buffer_size = max_buffer_size

        self._buffer = bytearray()
        self.frames_emitted: int = 0
        self.segments_dropped: int = 0

    @property
    def buffered(self) -> int:
        """Bytes received but not yet consumed by a boundary."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> Iterator[Frame]:
        """
        Append a chunk and return the frames it completes.

        The chunk is buffered immediately; frames are cut out lazily as
        the returned iterator is consumed. Frames left unconsumed stay in
        the buffer and come out of the next feed() call.

        The size cap applies to what is left once every complete part has
        been cut out, so one large chunk holding many parts is accepted.

        Raises:
            BufferOverflowError: When the returned iterator is exhausted
                and the remaining bytes exceed max_buffer_size.
        """
        self._buffer += chunk
        return self._drain()

    def _drain(self) -> Iterator[Frame]:
        while True:
            index = self._buffer.find(self.boundary)
            if index == -1:
                self._check_size()
                return

            segment = bytes(self._buffer[:index])
            del self._buffer[: index + len(self.boundary)]

            if not segment:
                continue

            start = segment.find(SOI_MARKER)
            if start == -1:
                self.segments_dropped += 1
                logger.debug(f"Dropped {len(segment)}-byte segment without SOI marker")
                continue

            frame = Frame(sequence=self.frames_emitted, data=segment[start:])
            self.frames_emitted += 1
            yield frame

    def _check_size(self) -> None:
        if self.max_buffer_size and len(self._buffer) > self.max_buffer_size:
            size = len(self._buffer)
            self._buffer.clear()
            raise BufferOverflowError(
                f"Stream buffer grew to {size} bytes without a boundary "
                f"(limit {self.max_buffer_size})"
            )
