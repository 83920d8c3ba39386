"""Tests for per-site single-flight workflow dispatch."""

import pytest

from errors import WorkflowBusyError
from services.dispatcher import WorkflowDispatcher


class DeferredSpawn:
    """Collects spawned jobs so the test decides when they run."""

    def __init__(self):
        self.jobs = []

    def __call__(self, fn, *args):
        self.jobs.append((fn, args))

    def run_all(self):
        while self.jobs:
            fn, args = self.jobs.pop(0)
            fn(*args)


class TestSingleFlight:

    def test_second_submit_for_same_site_is_rejected(self):
        spawn = DeferredSpawn()
        dispatcher = WorkflowDispatcher(spawn=spawn)

        dispatcher.submit("site-1", "create", lambda: None)
        with pytest.raises(WorkflowBusyError) as exc:
            dispatcher.submit("site-1", "delete", lambda: None)

        assert exc.value.running == "create"
        assert len(spawn.jobs) == 1

    def test_other_sites_are_independent(self):
        dispatcher = WorkflowDispatcher(spawn=DeferredSpawn())
        dispatcher.submit("site-1", "create", lambda: None)
        dispatcher.submit("site-2", "create", lambda: None)
        assert dispatcher.is_busy("site-1")
        assert dispatcher.is_busy("site-2")

    def test_key_released_after_completion(self):
        spawn = DeferredSpawn()
        dispatcher = WorkflowDispatcher(spawn=spawn)
        calls = []

        handle = dispatcher.submit("site-1", "create", calls.append, "ran")
        spawn.run_all()

        assert calls == ["ran"]
        assert handle.done
        assert not dispatcher.is_busy("site-1")

    def test_key_released_after_crash(self):
        spawn = DeferredSpawn()
        dispatcher = WorkflowDispatcher(spawn=spawn)

        def boom():
            raise RuntimeError("provider exploded")

        handle = dispatcher.submit("site-1", "create", boom)
        spawn.run_all()

        assert handle.done
        assert "provider exploded" in handle.error
        assert not dispatcher.is_busy("site-1")

    def test_multi_key_submit_is_all_or_nothing(self):
        dispatcher = WorkflowDispatcher(spawn=DeferredSpawn())
        dispatcher.submit("target", "create", lambda: None)

        with pytest.raises(WorkflowBusyError):
            dispatcher.submit(("source", "target"), "clone", lambda: None)
        assert not dispatcher.is_busy("source")

    def test_hold_blocks_background_submit(self):
        dispatcher = WorkflowDispatcher(spawn=DeferredSpawn())
        with dispatcher.hold("site-1", "backup"):
            assert dispatcher.running("site-1") == "backup"
            with pytest.raises(WorkflowBusyError):
                dispatcher.submit("site-1", "delete", lambda: None)
        assert not dispatcher.is_busy("site-1")

    def test_spawn_failure_releases_keys(self):
        def broken_spawn(fn, *args):
            raise RuntimeError("no workers")

        dispatcher = WorkflowDispatcher(spawn=broken_spawn)
        with pytest.raises(RuntimeError):
            dispatcher.submit("site-1", "create", lambda: None)
        assert not dispatcher.is_busy("site-1")
