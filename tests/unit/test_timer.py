"""Unit tests for RepeatingTimer."""

import pytest
import threading
import time

from voicememo.audio.timer import RepeatingTimer


@pytest.mark.unit
class TestRepeatingTimer:
    """Test cases for RepeatingTimer."""

    def test_fires_repeatedly(self):
        calls = []
        timer = RepeatingTimer(0.01, lambda: calls.append(time.time()))

        timer.start()
        time.sleep(0.15)
        timer.cancel()

        assert len(calls) >= 3
        assert not timer.is_running

    def test_no_calls_after_cancel(self):
        calls = []
        timer = RepeatingTimer(0.01, lambda: calls.append(1))
        timer.start()
        time.sleep(0.05)
        timer.cancel()

        count = len(calls)
        time.sleep(0.05)
        assert len(calls) == count

    def test_restartable(self):
        calls = []
        timer = RepeatingTimer(0.01, lambda: calls.append(1), name="Restartable")

        timer.start()
        time.sleep(0.05)
        timer.cancel()
        first = len(calls)

        timer.start()
        time.sleep(0.05)
        timer.cancel()

        assert first > 0
        assert len(calls) > first

    def test_start_twice_keeps_one_thread(self):
        timer = RepeatingTimer(0.01, lambda: None, name="Single")
        timer.start()
        timer.start()
        try:
            assert [t.name for t in threading.enumerate()].count("Single") == 1
        finally:
            timer.cancel()

    def test_callback_errors_do_not_stop_timer(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")

        timer = RepeatingTimer(0.01, flaky)
        timer.start()
        time.sleep(0.1)
        timer.cancel()

        assert len(calls) >= 2

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            RepeatingTimer(0, lambda: None)

    def test_cancel_without_start(self):
        RepeatingTimer(0.01, lambda: None).cancel()
