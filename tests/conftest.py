"""Shared fixtures for the Sankey Studio test suite."""

import pytest

from sankey_core import DiagramStore, Flow


class FakeHandle:
    def __init__(self, callback):
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Manual scheduler: callbacks run only when the test calls `run_pending()`."""

    def __init__(self):
        self.handles: list[FakeHandle] = []
        self.delays: list[float] = []

    def call_later(self, delay, callback):
        handle = FakeHandle(callback)
        self.handles.append(handle)
        self.delays.append(delay)
        return handle

    @property
    def live(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.cancelled]

    def run_pending(self) -> int:
        """Fire every uncancelled callback once. Returns how many ran."""
        ready = self.live
        self.handles = []
        for handle in ready:
            handle.callback()
        return len(ready)


@pytest.fixture
def store():
    return DiagramStore()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def sample_flows():
    return [
        Flow(id="f1", source="Revenue", target="Gross Profit", value=60),
        Flow(id="f2", source="Revenue", target="Cost of Sales", value=40),
        Flow(id="f3", source="Gross Profit", target="Net Income", value=60),
    ]


@pytest.fixture
def populated_store(store, sample_flows):
    store.set_flows(sample_flows)
    return store
