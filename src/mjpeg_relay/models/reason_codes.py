"""
Failure Reasons
===============

Fixed set of machine-readable codes for upstream attempt failures.

Every failed or finished upstream attempt maps to exactly ONE reason.
All of them are handled the same way by the controller (log, release,
retry while clients are connected); the code exists for logs and metrics.
"""

from enum import Enum


class FailureReason(str, Enum):
    """
    Why an upstream attempt ended.

    Attributes:
        UPSTREAM_UNREACHABLE: Transport error or timeout
        UPSTREAM_REJECTED: Upstream answered with a non-200 status
        PROTOCOL_MISMATCH: 200 response that is not a multipart stream
        STREAM_ENDED_CLEANLY: Upstream closed the body normally
    """

    UPSTREAM_UNREACHABLE = "UPSTREAM_UNREACHABLE"
    UPSTREAM_REJECTED = "UPSTREAM_REJECTED"
    PROTOCOL_MISMATCH = "PROTOCOL_MISMATCH"
    STREAM_ENDED_CLEANLY = "STREAM_ENDED_CLEANLY"
