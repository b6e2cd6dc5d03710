"""
Lifecycle transition table and event payloads.
"""
import pytest

from emoscan.state import TRANSITIONS, ControllerEvent, LifecycleState, can_transition


def test_every_state_has_an_entry():
    assert set(TRANSITIONS) == set(LifecycleState)


def test_models_failed_is_terminal():
    assert TRANSITIONS[LifecycleState.MODELS_FAILED] == frozenset()


@pytest.mark.parametrize(
    "current, target",
    [
        (LifecycleState.IDLE, LifecycleState.MODELS_LOADING),
        (LifecycleState.MODELS_READY, LifecycleState.CAMERA_STARTING),
        (LifecycleState.CAMERA_STARTING, LifecycleState.MODELS_READY),
        (LifecycleState.CAMERA_ON, LifecycleState.SCANNING),
        (LifecycleState.SCANNING, LifecycleState.CAMERA_STOPPED),
        (LifecycleState.CAMERA_STOPPED, LifecycleState.CAMERA_STARTING),
    ],
)
def test_allowed(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize(
    "current, target",
    [
        (LifecycleState.IDLE, LifecycleState.CAMERA_STARTING),
        (LifecycleState.MODELS_LOADING, LifecycleState.CAMERA_STARTING),
        (LifecycleState.MODELS_READY, LifecycleState.SCANNING),
        (LifecycleState.CAMERA_STOPPED, LifecycleState.SCANNING),
        (LifecycleState.MODELS_FAILED, LifecycleState.MODELS_READY),
    ],
)
def test_forbidden(current, target):
    assert not can_transition(current, target)


def test_event_payload():
    event = ControllerEvent(type="notice", data={"code": "no_face"}, state=LifecycleState.CAMERA_ON, error="No face")
    assert event.to_payload() == {
        "type": "notice",
        "state": "camera_on",
        "data": {"code": "no_face"},
        "error": "No face",
    }
    assert "error" not in ControllerEvent(type="state", data={}, state=LifecycleState.IDLE).to_payload()
