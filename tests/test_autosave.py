from __future__ import annotations

import logging

from hira.autosave import Debouncer


def test_trigger_collapses_bursts_into_one_call(timers):
    calls = []
    debouncer = Debouncer(0.5, calls.append, timer_factory=timers)

    debouncer.trigger(1)
    debouncer.trigger(2)
    debouncer.trigger(3)

    assert debouncer.pending
    assert [t.cancelled for t in timers.created] == [True, True, False]
    assert all(t.daemon and t.started for t in timers.created)

    timers.created[-1].fire()
    assert calls == [3]
    assert not debouncer.pending


def test_flush_runs_pending_call_immediately(timers):
    calls = []
    debouncer = Debouncer(0.5, calls.append, timer_factory=timers)

    assert debouncer.flush() is False
    debouncer.trigger("draft")
    assert debouncer.flush() is True
    assert calls == ["draft"]
    assert timers.created[0].cancelled


def test_cancel_drops_pending_call(timers):
    calls = []
    debouncer = Debouncer(0.5, calls.append, timer_factory=timers)
    debouncer.trigger("draft")
    debouncer.cancel()
    timers.created[0].function()
    assert calls == []
    assert not debouncer.pending


def test_callback_errors_are_logged_not_raised(timers, caplog):
    def boom():
        raise RuntimeError("backend down")

    debouncer = Debouncer(0.5, boom, timer_factory=timers)
    debouncer.trigger()
    with caplog.at_level(logging.WARNING, logger="hira.autosave"):
        timers.created[0].fire()
    assert "Auto-save failed" in caplog.text
