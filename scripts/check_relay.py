#!/usr/bin/env python3
"""
Relay Check Script
==================

Standalone WebSocket client for checking a running relay end to end.

This script:
    1. Connects to the relay as an ordinary viewer
    2. Counts frames (binary messages) for a configurable duration
    3. Logs throughput every N seconds
    4. Reports a final summary and exits non-zero if nothing arrived

Connecting is what makes the relay open its upstream, so this exercises
the whole path: demand tracking, upstream fetch, demuxing, fan-out.

Usage:
    python scripts/check_relay.py --duration 30
    python scripts/check_relay.py --url ws://printer-relay.local:8080/
"""

import argparse
import asyncio
import logging
import sys
import time

import websockets


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


SOI_MARKER = b"\xff\xd8"


async def run_check(url: str, duration: int, report_interval: int) -> dict:
    """
    Watch the relay for `duration` seconds.

    Returns:
        Summary dict (frames, bytes, non_jpeg, avg_fps, duration)
    """
    logger.info("=" * 60)
    logger.info(f"Relay URL: {url}")
    logger.info(f"Duration: {duration} seconds")
    logger.info("=" * 60)

    frames = 0
    total_bytes = 0
    non_jpeg = 0

    start_time = time.time()
    last_report_time = start_time
    last_frame_count = 0

    async with websockets.connect(url, max_size=None) as ws:
        logger.info("Connected, waiting for frames...")
        while True:
            remaining = duration - (time.time() - start_time)
            if remaining <= 0:
                break

            try:
                message = await asyncio.wait_for(ws.recv(), timeout=remaining)
            except asyncio.TimeoutError:
                break

            if isinstance(message, bytes):
                frames += 1
                total_bytes += len(message)
                if not message.startswith(SOI_MARKER):
                    non_jpeg += 1

            time_since_report = time.time() - last_report_time
            if time_since_report >= report_interval:
                fps = (frames - last_frame_count) / time_since_report
                logger.info(
                    f"Frames: {frames}  FPS: {fps:.1f}  "
                    f"Bytes: {total_bytes}  Non-JPEG: {non_jpeg}"
                )
                last_report_time = time.time()
                last_frame_count = frames

    total_time = time.time() - start_time
    avg_fps = frames / total_time if total_time > 0 else 0

    logger.info("=" * 60)
    logger.info("SUMMARY")
    logger.info(f"Frames received: {frames}")
    logger.info(f"Bytes received: {total_bytes}")
    logger.info(f"Average FPS: {avg_fps:.1f}")
    logger.info(f"Messages without SOI marker: {non_jpeg}")
    logger.info("=" * 60)

    return {
        "duration": total_time,
        "frames": frames,
        "bytes": total_bytes,
        "non_jpeg": non_jpeg,
        "avg_fps": avg_fps,
    }


def main():
    parser = argparse.ArgumentParser(description="Watch a running MJPEG relay")
    parser.add_argument(
        "--url",
        type=str,
        default="ws://localhost:8080/",
        help="WebSocket URL of the relay (default: ws://localhost:8080/)",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=30,
        help="Seconds to watch (default: 30)",
    )
    parser.add_argument(
        "--report-interval",
        type=int,
        default=5,
        help="Seconds between progress reports (default: 5)",
    )

    args = parser.parse_args()

    result = asyncio.run(run_check(
        url=args.url,
        duration=args.duration,
        report_interval=args.report_interval,
    ))

    sys.exit(0 if result["frames"] > 0 else 1)


if __name__ == "__main__":
    main()
