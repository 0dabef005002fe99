"""Tests for the refresh scheduler."""

import pytest

from fakes import FakeTimer
from sysgopher.scheduler import RefreshScheduler
from sysgopher.uithread import Marshaller


@pytest.fixture(autouse=True)
def reset_timers():
    FakeTimer.created.clear()
    yield
    FakeTimer.created.clear()


@pytest.fixture
def marshaller():
    m = Marshaller()
    m.bind()
    return m


class Cycles:
    """Records run_cycle calls and lets the test finish them."""

    def __init__(self) -> None:
        self.calls = []

    def __call__(self, token, done) -> None:
        self.calls.append((token, done))

    def finish(self, index: int = -1) -> None:
        self.calls[index][1]()


def make_scheduler(marshaller, cycles, interval=5.0, enabled=True):
    return RefreshScheduler(marshaller, cycles, interval, enabled=enabled, timer_factory=FakeTimer)


class TestTrigger:
    """Tests for the single in-flight guard."""

    def test_trigger_runs_cycle(self, marshaller):
        cycles = Cycles()
        scheduler = make_scheduler(marshaller, cycles)

        assert scheduler.trigger()
        assert scheduler.in_flight
        assert len(cycles.calls) == 1

        cycles.finish()
        assert not scheduler.in_flight

    def test_overlapping_triggers_are_dropped(self, marshaller):
        cycles = Cycles()
        scheduler = make_scheduler(marshaller, cycles)

        results = [scheduler.trigger() for _ in range(5)]

        assert results == [True, False, False, False, False]
        assert len(cycles.calls) == 1

    def test_trigger_after_done(self, marshaller):
        cycles = Cycles()
        scheduler = make_scheduler(marshaller, cycles)
        scheduler.trigger()
        cycles.finish()

        assert scheduler.trigger()
        assert len(cycles.calls) == 2

    def test_failing_cycle_releases_flag(self, marshaller):
        def broken(token, done):
            raise RuntimeError("submit failed")

        scheduler = make_scheduler(marshaller, broken)
        with pytest.raises(RuntimeError):
            scheduler.trigger()
        assert not scheduler.in_flight


class TestTimer:
    """Tests for the auto-refresh timer."""

    def test_start_arms_timer(self, marshaller):
        scheduler = make_scheduler(marshaller, Cycles())
        scheduler.start()

        assert scheduler.timer_armed
        assert FakeTimer.created[0].interval == 5.0
        assert FakeTimer.created[0].daemon

    def test_disabled_or_zero_interval_does_not_arm(self, marshaller):
        make_scheduler(marshaller, Cycles(), enabled=False).start()
        make_scheduler(marshaller, Cycles(), interval=0).start()
        assert FakeTimer.created == []

    def test_tick_rearms_once_and_triggers(self, marshaller):
        cycles = Cycles()
        scheduler = make_scheduler(marshaller, cycles)
        scheduler.start()

        FakeTimer.created[0].fire()
        assert cycles.calls == []
        marshaller.drain()

        assert len(cycles.calls) == 1
        assert len(FakeTimer.created) == 2
        assert scheduler.timer_armed

    def test_tick_while_in_flight_is_skipped(self, marshaller):
        cycles = Cycles()
        scheduler = make_scheduler(marshaller, cycles)
        scheduler.start()
        scheduler.trigger()

        FakeTimer.created[0].fire()
        marshaller.drain()

        assert len(cycles.calls) == 1
        assert len(FakeTimer.created) == 2

    def test_stale_tick_is_ignored(self, marshaller):
        cycles = Cycles()
        scheduler = make_scheduler(marshaller, cycles)
        scheduler.start()
        scheduler.set_interval(2.0)

        FakeTimer.created[0].fire()
        marshaller.drain()

        assert cycles.calls == []
        assert len(FakeTimer.created) == 2
        assert FakeTimer.created[0].cancelled

    def test_set_interval_rearms(self, marshaller):
        scheduler = make_scheduler(marshaller, Cycles())
        scheduler.start()
        scheduler.set_interval(1.0)

        assert scheduler.interval == 1.0
        assert FakeTimer.created[-1].interval == 1.0

    def test_set_interval_zero_disarms(self, marshaller):
        scheduler = make_scheduler(marshaller, Cycles())
        scheduler.start()
        scheduler.set_interval(0)
        assert not scheduler.timer_armed


class TestToggle:
    """Tests for enabling and disabling auto-refresh."""

    def test_toggle_off_cancels_in_flight_cycle(self, marshaller):
        cycles = Cycles()
        scheduler = make_scheduler(marshaller, cycles)
        scheduler.start()
        scheduler.trigger()
        token, done = cycles.calls[0]

        assert scheduler.toggle() is False
        assert token.cancelled
        assert not scheduler.timer_armed

        # The cancelled cycle still runs until it calls done
        assert scheduler.in_flight
        assert not scheduler.trigger()
        assert len(cycles.calls) == 1

        done()
        assert not scheduler.in_flight
        assert scheduler.trigger()
        assert len(cycles.calls) == 2

    def test_toggle_on_rearms(self, marshaller):
        scheduler = make_scheduler(marshaller, Cycles(), enabled=False)
        scheduler.start()

        assert scheduler.toggle() is True
        assert scheduler.enabled
        assert scheduler.timer_armed

    def test_tick_after_disable_is_ignored(self, marshaller):
        cycles = Cycles()
        scheduler = make_scheduler(marshaller, cycles)
        scheduler.start()
        timer = FakeTimer.created[0]

        scheduler.set_enabled(False)
        timer.fire()
        marshaller.drain()

        assert cycles.calls == []


class TestClose:
    """Tests for RefreshScheduler.close."""

    def test_close_stops_everything(self, marshaller):
        cycles = Cycles()
        scheduler = make_scheduler(marshaller, cycles)
        scheduler.start()
        scheduler.trigger()
        timer = FakeTimer.created[0]

        scheduler.close()

        assert scheduler.closed
        assert cycles.calls[0][0].cancelled
        assert not scheduler.trigger()
        timer.fire()
        marshaller.drain()
        assert len(cycles.calls) == 1
