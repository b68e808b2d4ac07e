"""Integration tests for the daemon loop against a fake package manager."""

import os
import signal
import threading

import pytest

from flatly.exceptions import ExternalToolError
from flatly.modules.daemon import DaemonLoop
from flatly.modules.locking import state_lock
from flatly.modules.policy import REFUSE_EMPTY_DECLARATION
from flatly.types import DaemonState, OutcomeType

CALC = "org.gnome.Calculator"
FIREFOX = "org.mozilla.firefox"
GIMP = "org.gimp.GIMP"


@pytest.fixture
def loop(store, manager, settings, tmp_path):
    return DaemonLoop(store, manager, settings, lock_file=tmp_path / "flatly.lock")


def _bootstrapped(loop):
    report = loop.tick()
    assert report.skipped_reason == "bootstrapped"
    return report


class TestBootstrap:
    """Tests for the first ever run."""

    def test_fresh_environment_writes_installed_set(self, loop, store, manager):
        assert store.read() == (frozenset(), False)

        report = _bootstrapped(loop)

        assert store.read() == (frozenset({CALC, FIREFOX}), True)
        assert report.persisted_count == 2
        assert loop.previous == {CALC, FIREFOX}
        assert manager.actions() == []

    def test_existing_file_is_loaded_without_acting(self, loop, store, manager):
        store.write([GIMP])

        report = loop.tick()

        assert not report.reconciled
        assert loop.previous == {GIMP}
        assert manager.actions() == []

    def test_bootstrap_failure_retries_next_tick(self, loop, store, manager):
        manager.list_error = "flatpak is broken"

        report = loop.tick()
        assert "flatpak is broken" in report.skipped_reason
        assert not store.exists()

        manager.list_error = None
        _bootstrapped(loop)
        assert store.exists()


class TestReconcile:
    """Tests for ticks after the declaration changes."""

    def test_unchanged_declaration_does_nothing(self, loop, store, manager):
        _bootstrapped(loop)
        manager.calls.clear()

        report = loop.tick()

        assert not report.reconciled
        assert manager.calls == []
        assert store.list_backups() == []

    def test_edit_is_applied_and_persisted(self, loop, store, manager):
        _bootstrapped(loop)
        store.write([CALC, GIMP])

        report = loop.tick()

        assert report.reconciled
        assert report.delta.to_install == {GIMP}
        assert report.delta.to_remove == {FIREFOX}
        assert sorted(manager.installed) == [CALC, GIMP]
        assert store.read() == (frozenset({CALC, GIMP}), True)
        assert loop.previous == {CALC, GIMP}
        assert len(store.list_backups()) == 1

    def test_converged_after_reconcile(self, loop, store, manager):
        _bootstrapped(loop)
        store.write([CALC, GIMP])
        loop.tick()
        manager.calls.clear()

        report = loop.tick()

        assert not report.reconciled
        assert manager.actions() == []

    def test_failed_package_does_not_block_others(self, loop, store, manager):
        manager.fail_install = {"bad/../name"}
        _bootstrapped(loop)
        store.write([CALC, FIREFOX, "valid-pkg", "bad/../name"])

        report = loop.tick()

        outcomes = {o.package: o.outcome for o in report.result.outcomes}
        assert outcomes == {"bad/../name": OutcomeType.FAILED, "valid-pkg": OutcomeType.INSTALLED}
        assert "valid-pkg" in manager.installed
        # state now mirrors what is actually installed
        assert store.read() == (frozenset({CALC, FIREFOX, "valid-pkg"}), True)

    def test_backups_disabled(self, loop, store, settings):
        loop.settings = settings.model_copy(update={"backups_enabled": False})
        _bootstrapped(loop)
        store.write([CALC])

        loop.tick()

        assert store.list_backups() == []

    def test_backup_retention(self, loop, store, settings, manager):
        loop.settings = settings.model_copy(update={"max_backups": 1})
        _bootstrapped(loop)
        for declared in ([CALC], [CALC, GIMP], [GIMP]):
            store.write(declared)
            loop.tick()

        assert len(store.list_backups()) == 1


class TestFailures:
    """Tests for cycles that abort and recover."""

    def test_corrupt_file_aborts_cycle_and_recovers(self, loop, store, manager):
        _bootstrapped(loop)
        store.active_file.write_text("[not json", encoding="utf-8")

        report = loop.tick()

        assert "Failed to parse" in report.skipped_reason
        assert loop.previous == {CALC, FIREFOX}
        assert manager.actions() == []
        assert loop.state == DaemonState.IDLE

        store.write([CALC, FIREFOX, GIMP])
        assert loop.tick().reconciled
        assert GIMP in manager.installed

    def test_refresh_failure_keeps_previous(self, loop, store, manager):
        _bootstrapped(loop)
        store.write([CALC, FIREFOX, GIMP])
        original_list = manager.list_installed
        failures = iter([ExternalToolError("list failed")])

        def flaky_list():
            error = next(failures, None)
            if error is not None:
                raise error
            return original_list()

        manager.list_installed = flaky_list

        report = loop.tick()
        assert report.skipped_reason == "list failed"
        assert loop.previous == {CALC, FIREFOX}
        assert GIMP in manager.installed

        # retried: install is skipped because it already happened
        report = loop.tick()
        assert report.reconciled
        assert [o.outcome for o in report.result.outcomes] == [OutcomeType.SKIPPED_ALREADY_PRESENT]
        assert store.read() == (frozenset({CALC, FIREFOX, GIMP}), True)

    def test_emptied_declaration_is_refused(self, loop, store, manager):
        _bootstrapped(loop)
        store.write([])

        report = loop.tick()

        assert report.skipped_reason == REFUSE_EMPTY_DECLARATION
        assert manager.actions() == []
        assert loop.previous == {CALC, FIREFOX}

    def test_emptied_declaration_allowed(self, loop, store, manager, settings):
        loop.settings = settings.model_copy(update={"allow_empty_declaration": True})
        _bootstrapped(loop)
        store.write([])

        report = loop.tick()

        assert report.reconciled
        assert manager.installed == []
        assert store.read() == (frozenset(), True)

    def test_lock_held_elsewhere_skips_cycle(self, loop, store, manager, tmp_path):
        with state_lock(tmp_path / "flatly.lock", timeout=0):
            report = loop.tick()

        assert "Another flatly process" in report.skipped_reason
        assert not store.exists()


class TestRun:
    """Tests for the loop itself."""

    def test_max_ticks(self, loop):
        loop.run(max_ticks=3)
        assert loop.cycle_count == 3
        assert loop.state == DaemonState.STOPPED

    def test_stop_interrupts_sleep(self, store, manager, settings, tmp_path):
        slow = settings.model_copy(update={"interval_seconds": 3600})
        loop = DaemonLoop(store, manager, slow, lock_file=tmp_path / "flatly.lock")

        worker = threading.Thread(target=loop.run, daemon=True)
        worker.start()
        loop.stop()
        worker.join(timeout=5)

        assert not worker.is_alive()
        assert loop.stopping
        assert loop.state == DaemonState.STOPPED

    def test_signal_handler_stops_loop(self, loop):
        loop._signal_handler(signal.SIGTERM, None)

        loop.run()

        assert loop.stopping
        assert loop.cycle_count == 0
        assert loop.state == DaemonState.STOPPED

    def test_sigterm_interrupts_sleep(self, store, manager, settings, tmp_path):
        slow = settings.model_copy(update={"interval_seconds": 3600})
        loop = DaemonLoop(store, manager, slow, lock_file=tmp_path / "flatly.lock")
        saved = {signum: signal.getsignal(signum) for signum in (signal.SIGTERM, signal.SIGINT)}
        first_tick = threading.Event()
        original_tick = loop.tick

        def tick():
            report = original_tick()
            first_tick.set()
            return report

        loop.tick = tick
        try:
            loop.install_signal_handlers()
            worker = threading.Thread(target=loop.run, daemon=True)
            worker.start()
            assert first_tick.wait(timeout=5)
            os.kill(os.getpid(), signal.SIGTERM)
            worker.join(timeout=5)
        finally:
            for signum, handler in saved.items():
                signal.signal(signum, handler)

        assert not worker.is_alive()
        assert loop.stopping
        assert loop.cycle_count == 1
        assert loop.state == DaemonState.STOPPED

    def test_without_lock_file(self, store, manager, settings):
        loop = DaemonLoop(store, manager, settings)
        assert loop.tick().skipped_reason == "bootstrapped"
