"""Shared fakes for the test suite."""

import pytest

from camlink.config.defaults import AppDefaults


class FakeHandle:
    def __init__(self, scheduler, when, callback):
        self.scheduler = scheduler
        self.when = when
        self.callback = callback
        self.cancelled = False
        self.cancel_calls = 0

    def cancel(self):
        self.cancel_calls += 1
        self.cancelled = True


class FakeScheduler:
    """Deterministic replacement for loop.call_later driven by advance()."""

    def __init__(self):
        self.now = 0.0
        self.handles = []

    def __call__(self, delay, callback):
        handle = FakeHandle(self, self.now + delay, callback)
        self.handles.append(handle)
        return handle

    def advance(self, seconds):
        self.now += seconds
        due = [h for h in self.handles if not h.cancelled and h.when <= self.now]
        for handle in due:
            self.handles.remove(handle)
            handle.callback()

    def fire_all(self):
        """Run every pending callback, including cancelled ones (a late timer)."""
        pending, self.handles = self.handles, []
        for handle in pending:
            handle.callback()

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled]


class Recorder:
    """notify() sink that records (connection_id, event, data)."""

    def __init__(self):
        self.calls = []

    def __call__(self, connection_id, event, data=None):
        self.calls.append((connection_id, event, data))
        return True

    def events_for(self, connection_id):
        return [event for cid, event, _ in self.calls if cid == connection_id]

    def data_for(self, connection_id, event):
        return [d for cid, e, d in self.calls if cid == connection_id and e == event]


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def settings():
    return AppDefaults(
        SESSION_TIMEOUT=30.0,
        POLL_TIMEOUT=1.0,
        POLL_IDLE_TIMEOUT=60.0,
        POLL_REAP_INTERVAL=60.0,
    )
