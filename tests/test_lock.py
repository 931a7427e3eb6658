from __future__ import annotations

import pytest

from zm_platform.orchestrator._lock import AbortFlag, SyncLock


def test_second_acquire_is_refused() -> None:
    lock = SyncLock()
    assert lock.try_acquire()
    assert lock.held
    assert not lock.try_acquire()
    lock.release()
    assert not lock.held
    assert lock.try_acquire()
    lock.release()


def test_hold_releases_on_error() -> None:
    lock = SyncLock()
    with pytest.raises(RuntimeError):
        with lock.hold() as got:
            assert got
            raise RuntimeError("boom")
    assert not lock.held


def test_hold_reports_busy_without_releasing_owner() -> None:
    lock = SyncLock()
    with lock.hold() as outer:
        assert outer
        with lock.hold() as inner:
            assert not inner
        assert lock.held
    assert not lock.held


def test_abort_flag() -> None:
    f = AbortFlag()
    assert not f.is_set()
    f.request()
    assert f.is_set()
    f.clear()
    assert not f.is_set()
