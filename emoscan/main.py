"""FastAPI entry-point for the emoscan controller."""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional

import psutil
from fastapi import APIRouter, FastAPI, Request, Response, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel

from .config import Settings, get_settings
from .controller import LifecycleController
from .inference.ferplus import FerPlusEmotionModel
from .logging_config import configure_logging
from .sensors.camera import PLACEHOLDER_JPEG, OpenCVCameraDevice, OpenCVCameraStream
from .session import SessionIdentity
from .state import Intent

logger = logging.getLogger(__name__)

router = APIRouter()


class IntentRequest(BaseModel):
    intent: Intent


class SessionRequest(BaseModel):
    name: str = ""


def _controller(request: Request) -> LifecycleController:
    return request.app.state.controller


def _user_name(request: Request) -> Optional[str]:
    settings: Settings = request.app.state.settings
    return request.cookies.get(settings.session_cookie_name)


def _state_response(request: Request) -> JSONResponse:
    return JSONResponse(_controller(request).snapshot(user_name=_user_name(request)))


@router.get("/healthz")
async def healthcheck(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "state": _controller(request).state.value})


@router.get("/state")
async def get_state(request: Request) -> JSONResponse:
    return _state_response(request)


@router.post("/intents")
async def post_intent(payload: IntentRequest, request: Request) -> JSONResponse:
    await _controller(request).dispatch(payload.intent)
    return _state_response(request)


@router.post("/camera/start")
async def camera_start(request: Request) -> JSONResponse:
    await _controller(request).start_camera()
    return _state_response(request)


@router.post("/camera/stop")
async def camera_stop(request: Request) -> JSONResponse:
    await _controller(request).stop_camera()
    return _state_response(request)


@router.post("/scan")
async def scan(request: Request) -> JSONResponse:
    await _controller(request).scan()
    return _state_response(request)


@router.get("/session")
async def get_session(request: Request) -> JSONResponse:
    return JSONResponse({"name": _user_name(request), "onboarded": _user_name(request) is not None})


@router.post("/session")
async def post_session(payload: SessionRequest, request: Request, response: Response) -> dict:
    settings: Settings = request.app.state.settings
    identity = SessionIdentity.from_input(payload.name, fallback=settings.default_user_name)
    # no max_age: the cookie lives only as long as the browser session
    response.set_cookie(settings.session_cookie_name, identity.name, httponly=True, samesite="lax")
    logger.info("Session named %r", identity.name)
    return {"name": identity.name, "onboarded": True}


@router.get("/debug/performance")
async def debug_performance() -> JSONResponse:
    """Get real-time CPU and memory usage."""
    try:
        cpu_percent = psutil.cpu_percent(interval=0.1)
        memory = psutil.virtual_memory()

        return JSONResponse({
            "cpu_percent": round(cpu_percent, 1),
            "memory_percent": round(memory.percent, 1),
            "memory_used_mb": round(memory.used / (1024 * 1024), 1),
            "memory_total_mb": round(memory.total / (1024 * 1024), 1)
        })
    except Exception as e:
        logger.error("Performance monitoring error: %s", e)
        return JSONResponse(
            {"error": str(e)},
            status_code=500
        )


@router.get("/preview")
async def preview_stream(request: Request) -> StreamingResponse:
    """Stream the live camera as MJPEG, a placeholder while the camera is off."""
    boundary = "frame"
    controller = _controller(request)
    settings: Settings = request.app.state.settings

    def part(frame: bytes) -> bytes:
        header = (
            f"--{boundary}\r\n"
            f"Content-Type: image/jpeg\r\n"
            f"Content-Length: {len(frame)}\r\n\r\n"
        ).encode("ascii")
        return header + frame + b"\r\n"

    async def frame_iterator() -> AsyncIterator[bytes]:
        try:
            while not await request.is_disconnected():
                stream = controller.stream
                if isinstance(stream, OpenCVCameraStream):
                    async for frame in stream.preview_stream(settings.performance.preview_queue_size):
                        yield part(frame)
                        if await request.is_disconnected():
                            return
                else:
                    yield part(PLACEHOLDER_JPEG)
                    await asyncio.sleep(0.5)
        except Exception as e:
            logger.error("Preview stream error: %s", e)

    media_type = f"multipart/x-mixed-replace; boundary={boundary}"
    return StreamingResponse(frame_iterator(), media_type=media_type)


@router.websocket("/ws/ui")
async def ui_socket(ws: WebSocket) -> None:
    controller: LifecycleController = ws.app.state.controller
    await ws.accept()
    queue = controller.register_ui()

    async def receive_intents() -> None:
        try:
            while True:
                message = await ws.receive_json()
                try:
                    controller.submit(message.get("intent", ""))
                except (AttributeError, ValueError):
                    logger.warning("Ignoring malformed UI message: %s", message)
        except WebSocketDisconnect:
            logger.debug("UI websocket disconnected")
        except ValueError as e:
            logger.warning("UI websocket sent invalid JSON: %s", e)

    receiver = asyncio.create_task(receive_intents(), name="ui-intent-receiver")
    try:
        await ws.send_json({"type": "snapshot", **controller.snapshot()})
        while not receiver.done():
            try:
                event = await asyncio.wait_for(queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            try:
                await ws.send_json(event.to_payload())
            except Exception as e:
                logger.debug("WebSocket send failed (client disconnected): %s", e)
                break
    except WebSocketDisconnect:
        pass
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.error("Unexpected error in UI websocket: %s", e)
    finally:
        receiver.cancel()
        controller.unregister_ui(queue)
        try:
            await ws.close()
        except Exception:
            pass


def create_app(
    settings: Optional[Settings] = None,
    controller: Optional[LifecycleController] = None,
) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="emoscan-controller", version="0.1.0")

    model: Optional[FerPlusEmotionModel] = None
    if controller is None:
        model = FerPlusEmotionModel(settings.models, settings.scan)
        controller = LifecycleController(
            models=model,
            engine=model,
            camera=OpenCVCameraDevice(settings.camera),
            settings=settings,
        )
    app.state.settings = settings
    app.state.controller = controller

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Catch-all exception handler to prevent application crashes."""
        logger.exception("Unhandled exception in %s: %s", request.url.path, exc)
        return PlainTextResponse(
            f"Internal server error: {str(exc)}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle request validation errors gracefully."""
        logger.warning("Validation error in %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)}
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def on_startup() -> None:
        try:
            await controller.start()
            logger.info("Application started successfully (models loading in background)")
        except Exception as e:
            logger.exception("Failed to start controller: %s", e)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        try:
            await controller.close()
            if model is not None:
                model.close()
            logger.info("Application shutdown complete")
        except Exception as e:
            logger.exception("Error during shutdown: %s", e)

    app.include_router(router)
    return app


settings: Settings = get_settings()
configure_logging(settings)
app = create_app(settings)
