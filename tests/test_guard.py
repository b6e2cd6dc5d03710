"""
In-flight guard tokens.
"""
from emoscan.guard import InFlightGuard


def test_second_acquire_is_refused():
    guard = InFlightGuard("camera-start")
    token = guard.try_acquire()
    assert token is not None
    assert guard.busy
    assert guard.try_acquire() is None


def test_release_frees_guard():
    guard = InFlightGuard("scan")
    token = guard.try_acquire()
    guard.release(token)
    assert not guard.busy
    assert guard.try_acquire() is not None


def test_double_release_is_harmless():
    guard = InFlightGuard("scan")
    token = guard.try_acquire()
    guard.release(token)
    guard.release(token)
    assert not guard.busy


def test_stale_token_cannot_release_new_holder():
    guard = InFlightGuard("scan")
    stale = guard.try_acquire()
    guard.release(stale)
    current = guard.try_acquire()

    guard.release(stale)

    assert guard.busy
    assert current != stale
    guard.release(current)
    assert not guard.busy


def test_guards_are_independent():
    start, scan = InFlightGuard("camera-start"), InFlightGuard("scan")
    assert start.try_acquire() is not None
    assert scan.try_acquire() is not None
