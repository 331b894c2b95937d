from __future__ import annotations

from parley.app.state import MicState, MicStateTracker


def test_mic_tracker_happy_path() -> None:
    tracker = MicStateTracker()
    assert tracker.state == MicState.OFF
    assert not tracker.active

    assert tracker.set_starting()
    assert tracker.state == MicState.STARTING
    assert tracker.active

    tracker.set_on()
    assert tracker.state == MicState.ON

    assert tracker.set_stopping()
    assert tracker.state == MicState.STOPPING
    assert not tracker.active

    tracker.set_off()
    assert tracker.state == MicState.OFF


def test_mic_tracker_rejects_overlapping_transitions() -> None:
    tracker = MicStateTracker()
    assert not tracker.set_stopping()
    assert tracker.set_starting()
    assert not tracker.set_starting()


def test_mic_tracker_failure_clears_on_restart() -> None:
    tracker = MicStateTracker()
    tracker.set_starting()
    tracker.set_failed("boom")
    assert tracker.state == MicState.OFF
    assert tracker.last_error == "boom"

    tracker.set_starting()
    assert tracker.state == MicState.STARTING
    assert tracker.last_error is None
