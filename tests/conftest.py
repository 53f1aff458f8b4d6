"""Pytest configuration and fixtures."""
import threading

import pytest

from ciflow.context import RunContext, TriggerEvent
from ciflow.history import HistoryStore
from ciflow.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(quiet=True))
    yield
    set_console(Console())


@pytest.fixture
def context():
    return RunContext(event=TriggerEvent("push", branch="devel"))


@pytest.fixture
def history(tmp_path):
    store = HistoryStore(f"sqlite:///{tmp_path / 'history.db'}")
    yield store
    store.close()


class Recorder:
    """Job bodies that log what ran, thread-safely."""

    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def ok(self, ctx):
        with self._lock:
            self.calls.append(ctx.instance.id)

    def fail(self, ctx):
        with self._lock:
            self.calls.append(ctx.instance.id)
        raise RuntimeError(f"{ctx.instance.id} broke")

    def ran(self, iid):
        return iid in self.calls


@pytest.fixture
def recorder():
    return Recorder()
