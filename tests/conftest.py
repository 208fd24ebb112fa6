"""
Test Configuration
==================

Pytest fixtures and helpers for the relay tests.

The upstream camera is faked with httpx.MockTransport; async code is
driven with asyncio.run so no extra pytest plugin is needed.
"""

import asyncio
from typing import Callable

import pytest


BOUNDARY = b"--frame"
CONTENT_TYPE = "multipart/x-mixed-replace;boundary=frame"

JPEG_1 = b"\xff\xd8\xff\xe0first-image\xff\xd9"
JPEG_2 = b"\xff\xd8\xff\xe0second-image\xff\xd9"
JPEG_3 = b"\xff\xd8\xff\xe0third-image\xff\xd9"


def make_part(jpeg: bytes, boundary: bytes = BOUNDARY) -> bytes:
    """One multipart part as mjpg-streamer sends it."""
    return (
        boundary
        + b"\r\nContent-Type: image/jpeg\r\n"
        + f"Content-Length: {len(jpeg)}\r\n\r\n".encode()
        + jpeg
        + b"\r\n"
    )


def make_stream(*jpegs: bytes, boundary: bytes = BOUNDARY) -> bytes:
    """Parts for every image plus a closing boundary so the last one is emitted."""
    return b"".join(make_part(j, boundary) for j in jpegs) + boundary + b"\r\n"


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll predicate on the running loop until it holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def sample_stream() -> bytes:
    """Three frames separated by a non-image preamble segment."""
    return (
        BOUNDARY
        + b"\r\nContent-Type: text/plain\r\n\r\nno image here\r\n"
        + make_stream(JPEG_1, JPEG_2, JPEG_3)
    )
