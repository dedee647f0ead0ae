"""Unit tests for delayed invocation."""

import datetime

import tkbridge
from tkbridge.errors import ErrorMode


class TestAfter:
    """Tests for after, after_idle and after_cancel."""

    def test_fires_once_on_update(self, bridge, fake_tcl):
        calls = []
        timer = bridge.after(10, lambda: calls.append("fired"))
        assert timer.tcl_id == "after#1"
        assert fake_tcl.after_queue[0][1] == f"eventDispatcher {timer.handler_id}"

        bridge.update()
        assert calls == ["fired"]
        assert timer.fired
        assert timer.handler_id not in bridge.handlers

    def test_timedelta_delay(self, bridge, fake_tcl):
        bridge.after(datetime.timedelta(seconds=1.5), lambda: None)
        assert fake_tcl.scripts[-1].startswith("after 1500 ")

    def test_after_idle(self, bridge, fake_tcl):
        events = []
        bridge.after_idle(events.append)
        assert fake_tcl.scripts[-1].startswith("after idle ")
        bridge.update()
        assert len(events) == 1

    def test_cancel_before_firing(self, bridge, fake_tcl):
        calls = []
        timer = bridge.after(10, lambda: calls.append(1))
        bridge.after_cancel(timer)

        assert timer.cancelled
        assert fake_tcl.after_queue == []
        assert timer.handler_id not in bridge.handlers
        bridge.update()
        assert calls == []

    def test_cancel_after_firing_is_noop(self, bridge, fake_tcl):
        timer = bridge.after(10, lambda: None)
        bridge.update()
        evaluated = len(fake_tcl.scripts)

        bridge.after_cancel(timer)
        bridge.after_cancel(timer)
        assert not timer.cancelled
        assert len(fake_tcl.scripts) == evaluated

    def test_module_functions_use_current_bridge(self, bridge):
        calls = []
        timer = tkbridge.after(5, lambda: calls.append(1))
        tkbridge.after_cancel(timer)
        tkbridge.after_idle(lambda: calls.append(2))
        tkbridge.update()
        assert calls == [2]

    def test_sleep(self, bridge, fake_tcl):
        bridge.sleep(datetime.timedelta(milliseconds=20))
        assert fake_tcl.scripts[-1] == "after 20"

    def test_failed_schedule_drops_handler(self, make_bridge, fake_tcl):
        bridge = make_bridge(error_mode=ErrorMode.COLLECT)
        bridge.initialize()
        fake_tcl.commands["after"] = lambda words: (1, "after failed")
        registered = len(bridge.handlers)

        timer = bridge.after(10, lambda: None)
        assert timer.tcl_id == ""
        assert timer.handler_id not in bridge.handlers
        assert len(bridge.handlers) == registered
        assert [e.message for e in bridge.clear_errors()] == ["after failed"]
