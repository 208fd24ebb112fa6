"""
Stream Controller
=================

Owns the single upstream M-JPEG fetch.

This module provides the StreamController class which:
    - Issues GET <base url>?action=stream when asked to start
    - Validates the response (status 200 + multipart boundary)
    - Feeds body chunks into a fresh FrameDemuxer per attempt
    - Hands every frame to an async callback (the fan-out)
    - Retries after a fixed backoff while clients are connected
    - Aborts the request deterministically on stop()

State machine:
    IDLE -> CONNECTING -> STREAMING -> (RETRY_SCHEDULED -> CONNECTING)* -> IDLE

Design Rules:
    - All transitions run on the event loop thread, never in parallel
    - Every attempt carries a generation number; stop() bumps it so a
      superseded read can never broadcast or schedule a retry
    - Upstream failures are never fatal, they only end the attempt
    - The timeout is enforced here, around the response headers and
      around every body chunk, whatever the HTTP transport does
"""

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional

import httpx

from mjpeg_relay.models.reason_codes import FailureReason
from mjpeg_relay.models.state import ConnectionState
from mjpeg_relay.stream.demuxer import FrameDemuxer, boundary_token
from mjpeg_relay.stream.errors import (
    ProtocolMismatch,
    StreamEndedCleanly,
    UpstreamError,
    UpstreamRejected,
    UpstreamUnreachable,
)
from mjpeg_relay.stream.frame import Frame


logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_RETRY_DELAY_SECONDS = 5.0


def build_stream_url(base_url: str) -> str:
    """Return base_url with the query parameter action=stream set."""
    url = httpx.URL(base_url)
    return str(url.copy_set_param("action", "stream"))


class ControllerMetrics:
    """Metrics for StreamController observability."""

    __slots__ = (
        "connect_attempts",
        "retries_scheduled",
        "frames_relayed",
        "bytes_received",
        "segments_dropped",
        "last_failure",
        "last_failure_detail",
    )

    def __init__(self) -> None:
        self.connect_attempts: int = 0
        self.retries_scheduled: int = 0
        self.frames_relayed: int = 0
        self.bytes_received: int = 0
        self.segments_dropped: int = 0
        self.last_failure: Optional[FailureReason] = None
        self.last_failure_detail: str = ""

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "connect_attempts": self.connect_attempts,
            "retries_scheduled": self.retries_scheduled,
            "frames_relayed": self.frames_relayed,
            "bytes_received": self.bytes_received,
            "segments_dropped": self.segments_dropped,
            "last_failure": self.last_failure.value if self.last_failure else None,
            "last_failure_detail": self.last_failure_detail,
        }


class StreamController:
    """
    Demand-driven upstream connection manager.

    Attributes:
        stream_url: Full upstream URL (including action=stream)
        timeout: Connect and read-inactivity timeout in seconds
        retry_delay: Fixed backoff before a retry, in seconds
        max_buffer_size: Demuxer buffer cap in bytes, 0 = unbounded
        metrics: Operational metrics

    Example:
        controller = StreamController(
            stream_url=build_stream_url("http://192.168.1.100"),
            on_frame=broadcaster.broadcast,
            demand=registry.__len__,
        )

        controller.start()      # first client connected
        ...
        await controller.stop() # last client left
    """

    def __init__(
        self,
        stream_url: str,
        on_frame: Callable[[Frame], Awaitable[object]],
        demand: Callable[[], int],
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        max_buffer_size: int = 0,
    ) -> None:
        """
        Initialize stream controller.

        Args:
            stream_url: Upstream URL to GET
            on_frame: Awaited once per demuxed frame, in stream order
            demand: Returns the number of connected clients
            client: HTTP client to use. If None, one is created and
                closed by close().
            timeout: Connect / read-inactivity timeout (seconds)
            retry_delay: Backoff before retrying (seconds)
            max_buffer_size: Demuxer buffer cap (bytes, 0 = unbounded)
        """
        self.stream_url = stream_url
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.max_buffer_size = max_buffer_size

        self._on_frame = on_frame
        self._demand = demand
        self._client = client if client is not None else httpx.AsyncClient()
        self._owns_client = client is None

        # State
        self._state: ConnectionState = ConnectionState.IDLE
        self._generation: int = 0
        self._task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None

        # Metrics
        self.metrics = ControllerMetrics()

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    def start(self) -> None:
        """
        Open the upstream connection if none is active.

        No-op unless the controller is IDLE. Must be called from the
        event loop.
        """
        if self._state is not ConnectionState.IDLE:
            logger.debug(f"Upstream stream already active ({self._state.value})")
            return

        self._generation += 1
        self._state = ConnectionState.CONNECTING
        self.metrics.connect_attempts += 1

        logger.info(f"Connecting to M-JPEG stream: {self.stream_url}")
        self._task = asyncio.create_task(
            self._run(self._generation),
            name=f"upstream_stream_{self._generation}",
        )

    async def stop(self) -> None:
        """
        Abort the upstream connection and any pending retry.

        No-op when IDLE. The state is IDLE as soon as this is called;
        the awaited part only waits for the request to be torn down.
        """
        if self._state is ConnectionState.IDLE:
            return

        logger.info("Stopping M-JPEG stream")
        self._generation += 1
        self._state = ConnectionState.IDLE

        tasks = [t for t in (self._task, self._retry_task) if t is not None]
        self._task = None
        self._retry_task = None

        current = asyncio.current_task()
        for task in tasks:
            task.cancel()
        for task in tasks:
            if task is current:
                continue
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def close(self) -> None:
        """Stop streaming and release the HTTP client if we created it."""
        await self.stop()
        if self._owns_client:
            await self._client.aclose()

    async def _run(self, generation: int) -> None:
        """One upstream attempt, from request to failure or cancellation."""
        try:
            await self._stream(generation)
        except UpstreamError as e:
            self._handle_failure(generation, e)
        except httpx.TimeoutException as e:
            self._handle_failure(
                generation,
                UpstreamUnreachable(f"Connection to {self.stream_url} timed out ({e!r})"),
            )
        except httpx.HTTPError as e:
            self._handle_failure(
                generation,
                UpstreamUnreachable(
                    f"Error fetching M-JPEG stream from {self.stream_url}: {e!r}"
                ),
            )
        except Exception as e:
            logger.exception(f"Unexpected error in upstream stream: {e}")
            self._handle_failure(
                generation,
                UpstreamUnreachable(
                    f"Unexpected error streaming from {self.stream_url}: {e!r}"
                ),
            )

    async def _stream(self, generation: int) -> None:
        request = self._client.build_request(
            "GET",
            self.stream_url,
            timeout=httpx.Timeout(self.timeout),
        )
        try:
            response = await asyncio.wait_for(
                self._client.send(request, stream=True),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise UpstreamUnreachable(
                f"Connection to {self.stream_url} timed out "
                f"(no response within {self.timeout:g}s)"
            )

        try:
            await self._consume(generation, response)
        finally:
            await response.aclose()

    async def _consume(self, generation: int, response: httpx.Response) -> None:
        content_type = response.headers.get("content-type")
        logger.info(
            f"Connected to M-JPEG stream. Status: {response.status_code}, "
            f"Content-Type: {content_type}"
        )

        if response.status_code != 200:
            raise UpstreamRejected(
                f"Upstream server at {self.stream_url} returned an error: "
                f"{response.status_code}",
                status_code=response.status_code,
            )

        try:
            boundary = boundary_token(content_type)
        except ProtocolMismatch:
            logger.error(
                f"Could not find stream boundary in response from {self.stream_url}. "
                "This often means the source URL is incorrect or the wrong port "
                "is being used. Please ensure the URL points to a valid M-JPEG "
                "stream, not a standard web page."
            )
            raise

        demuxer = FrameDemuxer(boundary, max_buffer_size=self.max_buffer_size)
        self._state = ConnectionState.STREAMING

        chunks = response.aiter_bytes()
        try:
            while True:
                try:
                    chunk = await asyncio.wait_for(chunks.__anext__(), timeout=self.timeout)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError:
                    raise UpstreamUnreachable(
                        f"Connection to {self.stream_url} timed out "
                        f"(no data for {self.timeout:g}s)"
                    )

                self.metrics.bytes_received += len(chunk)
                for frame in demuxer.feed(chunk):
                    if generation != self._generation:
                        return
                    await self._on_frame(frame)
                    self.metrics.frames_relayed += 1
        finally:
            self.metrics.segments_dropped += demuxer.segments_dropped
            await chunks.aclose()

        raise StreamEndedCleanly(f"M-JPEG stream from {self.stream_url} ended")

    def _handle_failure(self, generation: int, error: UpstreamError) -> None:
        """Log, go IDLE, and retry if anyone is still watching."""
        if generation != self._generation:
            # Superseded by stop(); nothing to report.
            return

        self.metrics.last_failure = error.reason
        self.metrics.last_failure_detail = str(error)
        self._task = None
        self._state = ConnectionState.IDLE

        if isinstance(error, StreamEndedCleanly):
            logger.info(str(error))
        else:
            logger.warning(f"{error.reason.value}: {error}")

        demand = self._demand()
        if demand <= 0:
            logger.info("No clients connected, not retrying")
            return

        self.metrics.retries_scheduled += 1
        self._state = ConnectionState.RETRY_SCHEDULED
        logger.info(
            f"Retrying connection in {self.retry_delay:g} seconds "
            f"({demand} client(s) waiting)"
        )
        self._retry_task = asyncio.create_task(
            self._retry_later(self._generation),
            name="upstream_retry",
        )

    async def _retry_later(self, generation: int) -> None:
        await asyncio.sleep(self.retry_delay)
        if generation != self._generation or self._state is not ConnectionState.RETRY_SCHEDULED:
            return
        self._retry_task = None
        self._state = ConnectionState.IDLE
        self.start()
