"""Camera/scan lifecycle orchestration for the emoscan kiosk."""
from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Union

from .config import Settings, get_settings
from .emotions import ScanResult, build_scan_result
from .errors import (
    CameraError,
    CameraOtherError,
    CameraRefused,
    EmoscanError,
    ModelLoadError,
    NoFaceDetected,
    ScanEngineError,
    ScanRefused,
)
from .guard import InFlightGuard
from .inference.base import InferenceEngine, ModelProvider
from .sensors.camera import CameraConstraints, CameraDevice, CameraStream
from .state import ControllerEvent, Intent, LifecycleState, can_transition

logger = logging.getLogger(__name__)

_MODELS_PENDING = {LifecycleState.IDLE, LifecycleState.MODELS_LOADING, LifecycleState.MODELS_FAILED}
_CAMERA_LIVE = {LifecycleState.CAMERA_ON, LifecycleState.SCANNING}


def _local_now() -> datetime:
    return datetime.now().astimezone()


class LifecycleController:
    """Owns the camera stream, gates scans and publishes state to UI shells.

    Intents arrive either through the coroutine methods (``start_camera``,
    ``stop_camera``, ``scan``, ``dispatch``) or as messages via ``submit``.
    None of them raise for user-facing failures; outcomes are published as
    ``ControllerEvent`` objects to every registered UI queue.
    """

    def __init__(
        self,
        *,
        models: ModelProvider,
        engine: InferenceEngine,
        camera: CameraDevice,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self.settings = settings or get_settings()
        self._models = models
        self._engine = engine
        self._camera = camera
        self._clock = clock

        self._state: LifecycleState = LifecycleState.IDLE
        self._state_started_at: float = time.time()
        self._stream: Optional[CameraStream] = None
        self._scan_result: Optional[ScanResult] = None
        self._scan_count: int = 0
        self._last_notice: Optional[Dict[str, Any]] = None

        self._start_guard = InFlightGuard("camera-start")
        self._scan_guard = InFlightGuard("scan")
        self._stop_event = asyncio.Event()

        self._ui_subscribers: List[asyncio.Queue[ControllerEvent]] = []
        self._intents: asyncio.Queue[Intent] = asyncio.Queue()
        self._intent_task: Optional[asyncio.Task[None]] = None
        self._intent_handlers: Set[asyncio.Task[Any]] = set()
        self._load_task: Optional[asyncio.Task[None]] = None

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def scan_result(self) -> Optional[ScanResult]:
        return self._scan_result

    @property
    def scan_count(self) -> int:
        return self._scan_count

    @property
    def models_ready(self) -> bool:
        return self._state not in _MODELS_PENDING

    @property
    def stream(self) -> Optional[CameraStream]:
        return self._stream

    def snapshot(self, *, user_name: Optional[str] = None) -> Dict[str, Any]:
        result = self._scan_result
        return {
            "state": self._state.value,
            "state_age_seconds": round(time.time() - self._state_started_at, 3),
            "models_ready": self.models_ready,
            "camera_on": self._state in _CAMERA_LIVE,
            "scanning": self._state is LifecycleState.SCANNING,
            "scan_count": self._scan_count,
            "scan_result": result.to_payload(user_name) if result else None,
            "confidence_threshold": self.settings.scan.confidence_threshold,
            "last_notice": self._last_notice,
        }

    # ------------------------------------------------------------------
    # Startup / teardown
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Begin model loading and intent processing."""
        if self._load_task is not None:
            return
        logger.info("🚀 Starting lifecycle controller")
        await self._transition(LifecycleState.MODELS_LOADING)
        self._load_task = asyncio.create_task(self._load_models(), name="model-loader")
        if not self._intent_task or self._intent_task.done():
            self._intent_task = asyncio.create_task(self._intent_loop(), name="intent-dispatcher")

    async def wait_until_loaded(self) -> bool:
        if self._load_task is not None:
            await asyncio.shield(self._load_task)
        return self.models_ready

    async def close(self) -> None:
        """Release the camera on every exit path; safe to call repeatedly."""
        logger.info("Stopping lifecycle controller")
        self._stop_event.set()

        if self._intent_task and not self._intent_task.done():
            self._intent_task.cancel()
            try:
                await self._intent_task
            except asyncio.CancelledError:
                pass
        self._intent_task = None

        if self._intent_handlers:
            # in-flight starts observe the stop event and release what they acquired
            _, pending = await asyncio.wait(
                set(self._intent_handlers), timeout=self.settings.camera.readiness_max_wait_seconds + 1.0
            )
            for task in pending:
                task.cancel()

        if self._load_task and not self._load_task.done():
            self._load_task.cancel()
            try:
                await self._load_task
            except asyncio.CancelledError:
                pass

        self._scan_result = None
        if self._state in _CAMERA_LIVE or self._state is LifecycleState.CAMERA_STARTING:
            await self._transition(LifecycleState.CAMERA_STOPPED)
        await self._release_stream()
        logger.info("Lifecycle controller stopped")

    async def __aenter__(self) -> "LifecycleController":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # UI channel
    # ------------------------------------------------------------------

    def register_ui(self) -> asyncio.Queue[ControllerEvent]:
        queue: asyncio.Queue[ControllerEvent] = asyncio.Queue(maxsize=self.settings.performance.ui_event_queue_size)
        self._ui_subscribers.append(queue)
        return queue

    def unregister_ui(self, queue: asyncio.Queue[ControllerEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    async def _broadcast(self, event: ControllerEvent) -> None:
        """Broadcast event to all UI subscribers, dropping the oldest when full."""
        for queue in list(self._ui_subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)

    async def _notify(self, error: EmoscanError) -> None:
        if isinstance(error, ModelLoadError):
            logger.error("❌ %s: %s", error.code, error)
        else:
            logger.warning("%s: %s", error.code, error)
        self._last_notice = {"code": error.code, "message": error.user_message, "at": time.time()}
        await self._broadcast(
            ControllerEvent(
                type="notice",
                state=self._state,
                data={"code": error.code, "message": error.user_message},
                error=error.user_message,
            )
        )

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def submit(self, intent: Union[Intent, str]) -> None:
        """Queue an intent; handled asynchronously by the dispatcher task."""
        self._intents.put_nowait(Intent(intent))

    async def dispatch(self, intent: Union[Intent, str]) -> Any:
        intent = Intent(intent)
        if intent is Intent.START:
            return await self.start_camera()
        if intent is Intent.STOP:
            return await self.stop_camera()
        return await self.scan()

    async def _intent_loop(self) -> None:
        while True:
            intent = await self._intents.get()
            # handlers run as tasks so a slow start never blocks a stop
            task = asyncio.create_task(self.dispatch(intent), name=f"intent-{intent.value}")
            self._intent_handlers.add(task)
            task.add_done_callback(self._intent_done)

    def _intent_done(self, task: asyncio.Task[Any]) -> None:
        self._intent_handlers.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Intent handler crashed", exc_info=task.exception())

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    async def _load_models(self) -> None:
        try:
            await self._models.load_models(self.settings.models.base_url)
        except ModelLoadError as exc:
            await self._transition(LifecycleState.MODELS_FAILED)
            await self._notify(exc)
            return
        except Exception as exc:
            logger.exception("Unexpected error while loading models")
            await self._transition(LifecycleState.MODELS_FAILED)
            await self._notify(ModelLoadError(log_message=str(exc)))
            return
        await self._transition(LifecycleState.MODELS_READY)
        logger.info("✓ AI models loaded successfully")

    # ------------------------------------------------------------------
    # Camera
    # ------------------------------------------------------------------

    async def start_camera(self) -> bool:
        state = self._state
        if state in _CAMERA_LIVE:
            logger.debug("Start ignored, camera already on")
            return False
        if state is LifecycleState.MODELS_FAILED:
            await self._notify(CameraRefused("AI models failed to load. Restart the app to try again."))
            return False
        if state in _MODELS_PENDING:
            await self._notify(CameraRefused())
            return False

        token = self._start_guard.try_acquire()
        if token is None:
            logger.info("Start ignored, camera start already in flight")
            return False
        try:
            return await self._start_camera_guarded()
        finally:
            self._start_guard.release(token)

    async def _start_camera_guarded(self) -> bool:
        self._stop_event.clear()
        await self._transition(LifecycleState.CAMERA_STARTING)
        logger.info("📷 Starting camera...")

        constraints = CameraConstraints.from_settings(self.settings.camera)
        try:
            stream = await self._camera.acquire(constraints)
        except CameraError as exc:
            await self._rollback_start(exc)
            return False
        except Exception as exc:
            logger.exception("Unexpected camera acquisition failure")
            await self._rollback_start(CameraOtherError(str(exc)))
            return False
        self._stream = stream
        logger.info("✓ Camera access granted")

        ready = False
        if not self._stop_event.is_set():
            ready = await self._await_first_frame(stream)

        if self._stop_event.is_set():
            logger.info("Camera stop requested during start, releasing")
            await self._release_stream()
            if self._state is LifecycleState.CAMERA_STARTING:
                await self._transition(LifecycleState.CAMERA_STOPPED)
            return False

        if not ready:
            await self._release_stream()
            await self._rollback_start(CameraOtherError("the camera produced no frames"))
            return False

        self._scan_result = None
        await self._transition(LifecycleState.CAMERA_ON)
        logger.info("✓ Camera ready")
        return True

    async def _await_first_frame(self, stream: CameraStream) -> bool:
        """Wait for the readiness signal, then fall back to polling frame size."""
        cam = self.settings.camera
        ready_task = asyncio.ensure_future(stream.wait_ready())
        stop_task = asyncio.ensure_future(self._stop_event.wait())
        try:
            done, _ = await asyncio.wait(
                {ready_task, stop_task},
                timeout=cam.readiness_timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            ready_task.cancel()
            stop_task.cancel()

        if stop_task in done:
            return False
        if ready_task in done:
            if ready_task.exception() is None:
                return True
            logger.warning("Readiness signal failed: %s", ready_task.exception())

        logger.warning(
            "No readiness signal after %.1fs, polling frame dimensions", cam.readiness_timeout_seconds
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(cam.readiness_max_wait_seconds - cam.readiness_timeout_seconds, 0.0)
        while not self._stop_event.is_set():
            width, height = stream.frame_size
            if width > 0 and height > 0:
                # possible false-ready
                logger.warning("Promoting camera to ready from polled %dx%d frame", width, height)
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(cam.readiness_poll_interval_seconds)
        return False

    async def _rollback_start(self, error: EmoscanError) -> None:
        if self._state is LifecycleState.CAMERA_STARTING:
            if self._stop_event.is_set():
                await self._transition(LifecycleState.CAMERA_STOPPED)
            else:
                await self._transition(LifecycleState.MODELS_READY)
        else:
            logger.info("Start failed after the controller moved to %s", self._state.value)
        await self._notify(error)

    async def stop_camera(self) -> bool:
        state = self._state
        if state is LifecycleState.CAMERA_STARTING:
            logger.info("🛑 Stop requested while camera is starting")
            self._stop_event.set()
            return True
        if state not in _CAMERA_LIVE:
            logger.debug("Stop ignored in state %s", state.value)
            return False

        logger.info("🛑 Stopping camera...")
        self._stop_event.set()
        self._scan_result = None
        await self._transition(LifecycleState.CAMERA_STOPPED)
        await self._release_stream()
        return True

    async def _release_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            await self._camera.release(stream)
        except Exception:
            logger.exception("Failed to release camera stream")

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------

    def _scan_refusal(self) -> Optional[ScanRefused]:
        if not self.models_ready:
            return ScanRefused("AI models are still loading. Please wait...")
        if self._state is LifecycleState.SCANNING or self._scan_guard.busy:
            return ScanRefused("A scan is already in progress.")
        if self._state is not LifecycleState.CAMERA_ON or self._stream is None:
            return ScanRefused("Start the camera before scanning.")
        if not self._stream.alive:
            return ScanRefused("The camera stopped delivering frames. Stop and restart the camera.")
        if self._stream.buffered_frames < self.settings.camera.min_buffered_frames:
            return ScanRefused()
        return None

    async def scan(self) -> Optional[ScanResult]:
        refusal = self._scan_refusal()
        if refusal is not None:
            await self._notify(refusal)
            return None

        token = self._scan_guard.try_acquire()
        if token is None:
            await self._notify(ScanRefused("A scan is already in progress."))
            return None
        try:
            await self._transition(LifecycleState.SCANNING)
            logger.info("🔍 Scanning...")
            return await self._run_scan(self._stream)
        finally:
            self._scan_guard.release(token)

    async def _run_scan(self, stream: CameraStream) -> Optional[ScanResult]:
        frame = stream.latest_frame()
        if frame is None:
            return await self._fail_scan(ScanEngineError(log_message="no frame available"))
        height, width = frame.shape[:2]

        try:
            face = await self._engine.detect(frame)
        except ScanEngineError as exc:
            return await self._fail_scan(exc)
        except Exception as exc:
            logger.exception("Inference engine raised unexpectedly")
            return await self._fail_scan(ScanEngineError(log_message=str(exc)))

        if self._state is not LifecycleState.SCANNING:
            logger.info("Camera stopped during scan, discarding outcome")
            return None

        if face is None:
            await self._transition(LifecycleState.CAMERA_ON)
            await self._notify(NoFaceDetected())
            return None

        result = build_scan_result(
            face,
            width,
            height,
            self._clock(),
            excellent_ratio=self.settings.scan.excellent_ratio,
            good_ratio=self.settings.scan.good_ratio,
        )
        self._scan_result = result
        self._scan_count += 1
        await self._transition(LifecycleState.CAMERA_ON)

        data = result.to_payload()
        data["scan_count"] = self._scan_count
        data["meets_confidence_threshold"] = result.confidence >= self.settings.scan.confidence_threshold
        await self._broadcast(ControllerEvent(type="scan_result", state=self._state, data=data))
        logger.info(
            "✓ Scan complete: %s (%.0f%%, quality=%s, face=%s)",
            result.emotion,
            result.confidence * 100,
            result.quality,
            result.face_size,
        )
        return result

    async def _fail_scan(self, error: EmoscanError) -> None:
        if self._state is LifecycleState.SCANNING:
            await self._transition(LifecycleState.CAMERA_ON)
        await self._notify(error)
        return None

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _transition(self, target: LifecycleState) -> None:
        current = self._state
        if current is target:
            return
        if not can_transition(current, target):
            raise RuntimeError(f"Illegal lifecycle transition {current.value} -> {target.value}")
        self._state = target
        self._state_started_at = time.time()
        logger.info("Lifecycle %s → %s", current.value, target.value)
        await self._broadcast(ControllerEvent(type="state", data=self.snapshot(), state=target))


__all__ = ["LifecycleController"]
