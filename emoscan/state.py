"""Shared controller state definitions for the emoscan kiosk."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Mapping, Optional


class LifecycleState(str, enum.Enum):
    """
    Camera/scan lifecycle states:

    1. IDLE             - Process started, nothing loaded yet
    2. MODELS_LOADING   - Face/expression models being fetched
    3. MODELS_READY     - Models loaded, camera off
    4. MODELS_FAILED    - Model load failed (terminal until restart)
    5. CAMERA_STARTING  - Device acquired, waiting for first live frame
    6. CAMERA_ON        - Live frames available, scans permitted
    7. SCANNING         - One still frame being classified
    8. CAMERA_STOPPED   - Camera released after use (re-startable)
    """
    IDLE = "idle"
    MODELS_LOADING = "models_loading"
    MODELS_READY = "models_ready"
    MODELS_FAILED = "models_failed"
    CAMERA_STARTING = "camera_starting"
    CAMERA_ON = "camera_on"
    SCANNING = "scanning"
    CAMERA_STOPPED = "camera_stopped"


class Intent(str, enum.Enum):
    """User intents emitted by the UI shell."""
    START = "start"
    STOP = "stop"
    SCAN = "scan"


TRANSITIONS: Mapping[LifecycleState, FrozenSet[LifecycleState]] = {
    LifecycleState.IDLE: frozenset({LifecycleState.MODELS_LOADING}),
    LifecycleState.MODELS_LOADING: frozenset({LifecycleState.MODELS_READY, LifecycleState.MODELS_FAILED}),
    LifecycleState.MODELS_READY: frozenset({LifecycleState.CAMERA_STARTING}),
    LifecycleState.MODELS_FAILED: frozenset(),
    LifecycleState.CAMERA_STARTING: frozenset(
        {LifecycleState.CAMERA_ON, LifecycleState.MODELS_READY, LifecycleState.CAMERA_STOPPED}
    ),
    LifecycleState.CAMERA_ON: frozenset({LifecycleState.SCANNING, LifecycleState.CAMERA_STOPPED}),
    LifecycleState.SCANNING: frozenset({LifecycleState.CAMERA_ON, LifecycleState.CAMERA_STOPPED}),
    LifecycleState.CAMERA_STOPPED: frozenset({LifecycleState.CAMERA_STARTING}),
}


def can_transition(current: LifecycleState, target: LifecycleState) -> bool:
    return target in TRANSITIONS[current]


@dataclass
class ControllerEvent:
    """Event payload distributed to UI clients over the local WebSocket."""

    type: str
    data: Dict[str, Any]
    state: LifecycleState
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type, "state": self.state.value, "data": self.data}
        if self.error:
            payload["error"] = self.error
        return payload


__all__ = ["LifecycleState", "Intent", "TRANSITIONS", "can_transition", "ControllerEvent"]
