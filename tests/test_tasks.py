"""Tests for cancellable background tasks."""

import time

import pytest

from odyssey.tasks import CancellableTask, CancelToken


def test_run_in_calling_thread():
    task = CancellableTask(lambda token: 42)
    assert task.run() == 42
    assert task.done()


def test_error_is_reraised_on_wait():
    def boom(token):
        raise ValueError("bad")

    task = CancellableTask(boom).start()
    with pytest.raises(ValueError, match="bad"):
        task.wait(timeout=2)


def test_cancel_interrupts_sleep():
    def sleeper(token: CancelToken):
        return token.sleep(30)

    task = CancellableTask(sleeper).start()
    started = time.monotonic()
    task.cancel()
    assert task.wait(timeout=2) is False
    assert time.monotonic() - started < 2
    assert task.cancelled


def test_wait_times_out_while_running():
    task = CancellableTask(lambda token: token.sleep(30)).start()
    try:
        with pytest.raises(TimeoutError):
            task.wait(timeout=0.01)
    finally:
        task.cancel()
        task.wait(timeout=2)


def test_cannot_start_twice():
    task = CancellableTask(lambda token: None).start()
    with pytest.raises(RuntimeError):
        task.start()
    task.wait(timeout=2)


def test_zero_sleep_reports_cancellation():
    token = CancelToken()
    assert token.sleep(0)
    token.cancel()
    assert not token.sleep(0)
