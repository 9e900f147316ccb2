"""Tests for framelab.control."""

import threading
import time

import pytest

from framelab.control import ControlState, ControlToken
from framelab.error_handling import Cancelled


class TestTransitions:
    """State writes and the cancellation latch."""

    def test_starts_running(self):
        token = ControlToken()

        assert token.state is ControlState.RUNNING
        assert not token.is_paused
        assert not token.is_cancelled

    def test_pause_and_resume(self):
        token = ControlToken()

        token.pause()
        assert token.is_paused

        token.resume()
        assert token.state is ControlState.RUNNING

    def test_repeated_writes_are_harmless(self):
        token = ControlToken()

        token.pause()
        token.pause()
        token.resume()
        token.resume()

        assert token.state is ControlState.RUNNING

    def test_cancel_from_paused(self):
        token = ControlToken()
        token.pause()

        token.cancel()

        assert token.is_cancelled

    def test_cancel_is_sticky(self):
        token = ControlToken()
        token.cancel()

        token.resume()
        token.pause()

        assert token.state is ControlState.CANCELLED

    def test_reset_clears_cancel(self):
        token = ControlToken()
        token.cancel()

        token.reset()

        assert token.state is ControlState.RUNNING


class TestCheckpoint:
    """Cooperative waiting and cancellation."""

    def test_running_checkpoint_returns_immediately(self):
        token = ControlToken()

        start = time.monotonic()
        token.checkpoint()

        assert time.monotonic() - start < 0.05

    def test_cancelled_checkpoint_raises(self):
        token = ControlToken()
        token.cancel()

        with pytest.raises(Cancelled):
            token.checkpoint()

    def test_checkpoint_blocks_until_resumed(self):
        token = ControlToken(poll_interval=0.01)
        token.pause()
        timer = threading.Timer(0.2, token.resume)
        timer.start()

        start = time.monotonic()
        token.checkpoint()
        elapsed = time.monotonic() - start
        timer.join()

        assert elapsed >= 0.15

    def test_cancel_while_paused_raises(self):
        token = ControlToken(poll_interval=0.01)
        token.pause()
        timer = threading.Timer(0.1, token.cancel)
        timer.start()

        with pytest.raises(Cancelled):
            token.checkpoint()
        timer.join()
