"""
Frame Data Model
=================

Internal frame representation for the relay pipeline.

Design Rules:
    - This is the ONLY frame format passed to the fan-out
    - Does NOT decode or validate the JPEG beyond its SOI marker
    - Immutable once emitted by the demuxer
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Frame:
    """
    One JPEG image cut out of the upstream multipart stream.

    Attributes:
        sequence: Position of the frame within its upstream connection
        data: JPEG bytes, starting at the SOI marker (0xFFD8)
    """

    sequence: int
    data: bytes

    def __len__(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the full image."""
        return f"Frame(sequence={self.sequence}, size={len(self.data)})"
