"""
Webcam device layer.

The controller only sees the ``CameraDevice``/``CameraStream`` protocols; the
OpenCV implementation below opens a local capture device, reads frames on a
background task and exposes the latest one for single-frame scans and the
MJPEG preview.
"""

from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import base64
import logging
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional, Protocol, Tuple

import cv2
import numpy as np

from ..config import CameraSettings
from ..errors import CameraNotFoundError, CameraOtherError, CameraPermissionError

logger = logging.getLogger(__name__)

PLACEHOLDER_JPEG = base64.b64decode(
    b"/9j/4AAQSkZJRgABAQAAAQABAAD/2wBDAAgGBgcGBQgHBwcJCQgKDBQNDAsLDBkSEw8UHRofHh0aHBwgJC4nICIsIxwcKDcpLDAxNDQ0Hyc5PTgyPC4zNDL/2wBDAQkJCQwLDBgNDRgyIRwhMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjL/wAARCAABAAEDASIAAhEBAxEB/8QAHwAAAQUBAQEBAQEAAAAAAAAAAAECAwQFBgcICQoL/8QAtRAAAgEDAwIEAwUFBAQAAAF9AQIDAAQRBRIhMUEGE1FhByJxFDKBkaEII0KxwRVS0fAkM2JyggkKFhcYGRolJicoKSo0NTY3ODk6Q0RFRkdISUpTVFVWV1hZWmNkZWZnaGlqc3R1dnd4eXqDhIWGh4iJipKTlJWWl5iZmqKjpKWmp6ipqrKztLW2t7i5usLDxMXGx8jJytLT1NXW19jZ2uHi4+Tl5ufo6erx8vP09fb3+Pn6/8QAHwEAAwEBAQEBAQEBAQAAAAAAAAECAwQFBgcICQoL/8QAtREAAgECBAQDBAcFBAQAAQJ3AAECAxEEBSExBhJBUQdhcRMiMoEIFEKRobHBCSMzUvAVYnLRChYkNOEl8RcYGRomJygpKjU2Nzg5OkNERUZHSElKU1RVVldYWVpjZGVmZ2hpanN0dXZ3eHl6goOEhYaHiImKkpOUlZaXmJmaoqOkpaanqKmqsrO0tba3uLm6wsPExcbHyMnK0tPU1dbX2Nna4uPk5ebn6Onq8vP09fb3+Pn6/9oADAMBAAIRAxEAPwD5/ooooA//2Q=="
)


@dataclass(frozen=True)
class CameraConstraints:
    width: int
    height: int
    facing_mode: str = "user"
    frame_rate: int = 30

    @classmethod
    def from_settings(cls, settings: CameraSettings) -> "CameraConstraints":
        return cls(
            width=settings.width,
            height=settings.height,
            facing_mode=settings.facing_mode,
            frame_rate=settings.frame_rate,
        )


class CameraStream(Protocol):
    """A live, exclusively-owned video stream."""

    async def wait_ready(self) -> None:
        """Resolve once the device has delivered a live frame."""

    @property
    def frame_size(self) -> Tuple[int, int]:
        """(width, height) of the current frame, (0, 0) before any frame."""

    @property
    def buffered_frames(self) -> int:
        """Frames delivered since acquisition."""

    @property
    def alive(self) -> bool:
        """False once the device stops delivering fresh frames."""

    def latest_frame(self) -> Optional[np.ndarray]:
        """Copy of the most recent frame, if any."""


class CameraDevice(Protocol):
    async def acquire(self, constraints: CameraConstraints) -> CameraStream:
        ...

    async def release(self, stream: CameraStream) -> None:
        ...


class OpenCVCameraStream:
    """Frames from an opened ``cv2.VideoCapture``, read on a background task."""

    def __init__(self, capture: cv2.VideoCapture, settings: CameraSettings) -> None:
        self._capture = capture
        self._settings = settings
        self._ready = asyncio.Event()
        self._latest: Optional[np.ndarray] = None
        self._buffered = 0
        self._size: Tuple[int, int] = (0, 0)
        self._last_frame_at: Optional[float] = None
        self._closed = False
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._preview_subscribers: list[asyncio.Queue[bytes]] = []
        self._last_preview_ts = 0.0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def frame_size(self) -> Tuple[int, int]:
        return self._size

    @property
    def buffered_frames(self) -> int:
        return self._buffered

    @property
    def alive(self) -> bool:
        if self._closed or self._reader_task is None or self._reader_task.done():
            return False
        if self._last_frame_at is None:
            return True
        return time.monotonic() - self._last_frame_at <= self._settings.stale_frame_seconds

    def start(self) -> None:
        if self._reader_task:
            return
        self._reader_task = asyncio.create_task(self._read_loop(), name="camera-reader")

    async def wait_ready(self) -> None:
        await self._ready.wait()

    def latest_frame(self) -> Optional[np.ndarray]:
        if self._latest is None:
            return None
        return self._latest.copy()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        task, self._reader_task = self._reader_task, None
        if task:
            # the reader exits on its own after the read in flight returns
            try:
                await asyncio.wait_for(task, timeout=1.0)
            except asyncio.TimeoutError:
                logger.warning("Camera reader did not stop in time, cancelling")
            except Exception as e:
                logger.warning("Error during camera reader shutdown: %s", e)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._capture.release)
        self._latest = None
        logger.info("Camera stream closed")

    async def _read_loop(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while not self._closed:
                ok, frame = await loop.run_in_executor(None, self._capture.read)
                if self._closed:
                    break
                if not ok or frame is None or frame.size == 0:
                    await asyncio.sleep(self._settings.readiness_poll_interval_seconds)
                    continue

                self._latest = frame
                self._buffered += 1
                self._last_frame_at = time.monotonic()
                height, width = frame.shape[:2]
                self._size = (int(width), int(height))
                if not self._ready.is_set():
                    logger.info("📷 First frame received (%dx%d)", width, height)
                    self._ready.set()

                if self._preview_subscribers:
                    await self._publish_preview(frame)
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Camera reader crashed")
        finally:
            logger.debug("Camera reader stopped after %d frames", self._buffered)

    async def _publish_preview(self, frame: np.ndarray) -> None:
        loop = asyncio.get_running_loop()
        now = loop.time()
        if now - self._last_preview_ts < self._settings.preview_fps_limit:
            return
        self._last_preview_ts = now
        jpeg = await loop.run_in_executor(None, self._encode_jpeg, frame)
        if jpeg is None:
            return
        for q in list(self._preview_subscribers):
            if q.full():
                try:
                    q.get_nowait()
                except QueueEmpty:
                    pass
            q.put_nowait(jpeg)

    def _encode_jpeg(self, frame: np.ndarray) -> Optional[bytes]:
        try:
            ret, enc = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, self._settings.preview_jpeg_quality])
            return enc.tobytes() if ret else None
        except cv2.error as e:
            logger.warning("Frame serialization error: %s", e)
            return None

    async def preview_stream(self, maxsize: int = 2) -> AsyncIterator[bytes]:
        """Stream JPEG preview frames until the stream is closed."""
        q: asyncio.Queue[bytes] = asyncio.Queue(maxsize=maxsize)
        self._preview_subscribers.append(q)
        try:
            while not self._closed:
                try:
                    yield await asyncio.wait_for(q.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue
        finally:
            self._preview_subscribers.remove(q)


class OpenCVCameraDevice:
    """Local webcam opened through OpenCV."""

    def __init__(self, settings: CameraSettings) -> None:
        self.settings = settings

    async def acquire(self, constraints: CameraConstraints) -> OpenCVCameraStream:
        self._check_device_node()
        loop = asyncio.get_running_loop()
        capture = await loop.run_in_executor(None, self._open_capture, constraints)
        stream = OpenCVCameraStream(capture, self.settings)
        stream.start()
        logger.info(
            "Camera %s opened (%dx%d @ %dfps requested)",
            self.settings.device_index,
            constraints.width,
            constraints.height,
            constraints.frame_rate,
        )
        return stream

    async def release(self, stream: CameraStream) -> None:
        if isinstance(stream, OpenCVCameraStream):
            await stream.close()

    def _device_node(self) -> Optional[Path]:
        if not sys.platform.startswith("linux"):
            return None
        return Path(f"/dev/video{self.settings.device_index}")

    def _check_device_node(self) -> None:
        node = self._device_node()
        if node is None:
            return
        if not node.exists():
            raise CameraNotFoundError(log_message=f"{node} does not exist")
        if not os.access(node, os.R_OK | os.W_OK):
            raise CameraPermissionError(log_message=f"{node} is not readable by this process")

    def _open_capture(self, constraints: CameraConstraints) -> cv2.VideoCapture:
        capture = cv2.VideoCapture(self.settings.device_index)
        if not capture.isOpened():
            capture.release()
            raise CameraOtherError(f"could not open camera {self.settings.device_index}")

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        capture.set(cv2.CAP_PROP_FPS, constraints.frame_rate)
        if constraints.facing_mode != "user":
            logger.debug("Facing mode %r ignored by OpenCV capture", constraints.facing_mode)
        return capture


__all__ = [
    "PLACEHOLDER_JPEG",
    "CameraConstraints",
    "CameraStream",
    "CameraDevice",
    "OpenCVCameraStream",
    "OpenCVCameraDevice",
]
