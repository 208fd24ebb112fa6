"""
MJPEG Relay Main Application
============================

FastAPI entry point for the M-JPEG to WebSocket relay.

One upstream M-JPEG source is fetched only while at least one WebSocket
client is connected; every JPEG frame is sent to every client as one
binary message.

Endpoints:
    GET  /health    - Liveness check with uptime
    GET  /metrics   - Connection state and counters
    ANY  /*         - Plain-text "server is running" message
    WS   /*         - Frame stream (one binary message per JPEG)
"""

import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
from fastapi import FastAPI, WebSocket
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError
from starlette.websockets import WebSocketDisconnect

from mjpeg_relay import __version__
from mjpeg_relay.config import (
    ConfigurationError,
    Settings,
    load_config,
    setup_logging,
)
from mjpeg_relay.relay import (
    Broadcaster,
    ClientRegistry,
    DemandTracker,
    WebSocketClient,
)
from mjpeg_relay.stream import StreamController, build_stream_url


logger = logging.getLogger(__name__)


STATUS_MESSAGE = "MJPG-to-WebSocket server is running."


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Build the relay application.

    Args:
        settings: Loaded settings (stream.url must be set)
        client: HTTP client for the upstream fetch. If None, the
            controller creates its own.

    Returns:
        FastAPI app; components live on app.state once the lifespan runs.
    """
    if not settings.stream.url:
        raise ConfigurationError("stream.url is required")

    stream_url = build_stream_url(settings.stream.url)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        registry = ClientRegistry()
        broadcaster = Broadcaster(
            registry,
            max_pending_frames=settings.relay.max_pending_frames,
        )
        controller = StreamController(
            stream_url=stream_url,
            on_frame=broadcaster.broadcast,
            demand=registry.__len__,
            client=client,
            timeout=settings.stream.timeout_seconds,
            retry_delay=settings.stream.retry_delay_seconds,
            max_buffer_size=settings.stream.max_buffer_bytes,
        )
        registry.tracker = DemandTracker(controller)

        app.state.registry = registry
        app.state.broadcaster = broadcaster
        app.state.controller = controller
        app.state.startup_time = time.time()

        logger.info(f"Proxying M-JPEG stream from: {stream_url}")
        logger.info("Waiting for clients to connect to start stream...")

        yield

        logger.info("Shutting down...")
        await controller.close()
        await broadcaster.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="mjpeg-relay",
        description="M-JPEG over HTTP to WebSocket relay",
        version=__version__,
        lifespan=lifespan,
    )

    # =========================================================================
    # HTTP Endpoints
    # =========================================================================

    @app.get("/health")
    async def health() -> JSONResponse:
        """Liveness check - always 200 while the process is up."""
        return JSONResponse({
            "status": "healthy",
            "uptime_seconds": round(time.time() - app.state.startup_time, 1),
        })

    @app.get("/metrics")
    async def metrics() -> JSONResponse:
        """Upstream state plus controller and fan-out counters."""
        controller: StreamController = app.state.controller
        broadcaster: Broadcaster = app.state.broadcaster

        return JSONResponse({
            "uptime_seconds": round(time.time() - app.state.startup_time, 1),
            "stream_url": controller.stream_url,
            "state": controller.state.value,
            **controller.metrics.to_dict(),
            **broadcaster.metrics(),
        })

    @app.api_route(
        "/{path:path}",
        methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        response_class=PlainTextResponse,
    )
    async def status(path: str) -> str:
        """Any other HTTP request gets the plain-text status line."""
        return STATUS_MESSAGE

    # =========================================================================
    # WebSocket Endpoint
    # =========================================================================

    @app.websocket("/{path:path}")
    async def frame_stream(websocket: WebSocket, path: str) -> None:
        """Register the client and hold the socket open until it leaves."""
        registry: ClientRegistry = app.state.registry
        broadcaster: Broadcaster = app.state.broadcaster

        await websocket.accept()
        client = WebSocketClient(websocket)
        registry.add(client)

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.warning(f"WebSocket error for {client!r}: {e}")
        finally:
            await registry.remove(client)
            await broadcaster.detach(client)

    return app


# =============================================================================
# Main Entry Point
# =============================================================================

def run() -> None:
    """Console entry point: load settings and serve until interrupted."""
    import uvicorn

    try:
        settings = load_config()
    except ConfigurationError as e:
        setup_logging(Settings())
        logger.critical(f"FATAL: {e}")
        logger.critical(
            "Please set it to the base URL of your M-JPEG stream source "
            "(e.g., a Creality K1 printer's IP address)."
        )
        logger.critical('Example: export MJPEG_STREAM_URL="http://192.168.1.100"')
        sys.exit(1)
    except ValidationError as e:
        setup_logging(Settings())
        logger.critical(f"FATAL: invalid configuration: {e}")
        sys.exit(1)

    setup_logging(settings)
    app = create_app(settings)

    logger.info(
        f"Server listening on http://{settings.server.host}:{settings.server.port}"
    )
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
    )


if __name__ == "__main__":
    run()
