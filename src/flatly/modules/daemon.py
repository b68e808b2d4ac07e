"""Daemon Loop.

Periodically re-reads the declaration and reconciles changes. Each
tick runs to completion under the state lock before the next one
starts; the wait between ticks can be interrupted by ``stop()`` or a
termination signal.
"""

import logging
import signal
import threading
from contextlib import nullcontext
from pathlib import Path
from typing import Any

from flatly.config import FlatlySettings
from flatly.exceptions import ExternalToolError, LockError, StateIOError
from flatly.types import CycleReport, DaemonState, PackageSet

from .locking import state_lock
from .package_manager import PackageManager
from .pipeline import bootstrap_state, reconcile
from .state_store import StateStore


logger = logging.getLogger("flatly.daemon")


class DaemonLoop:
    """Drives the system toward ``active.json`` until stopped.

    Args:
        store: State store for ``active.json``.
        manager: Package manager to act through.
        settings: Runtime settings (interval, lock timeout, backups).
        lock_file: Advisory lock shared with one-shot commands. ``None``
            disables locking.
    """

    def __init__(
        self,
        store: StateStore,
        manager: PackageManager,
        settings: FlatlySettings,
        lock_file: Path | None = None,
    ) -> None:
        self.store = store
        self.manager = manager
        self.settings = settings
        self.lock_file = lock_file

        self.previous: PackageSet | None = None
        self._state = DaemonState.IDLE
        self._cycle_count = 0
        self._stop = threading.Event()

    @property
    def state(self) -> DaemonState:
        return self._state

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    def stop(self) -> None:
        """Ask the loop to exit after the current tick."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def install_signal_handlers(self) -> None:
        """Stop on SIGTERM/SIGINT. Must be called from the main thread."""
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

    def _signal_handler(self, signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        self.stop()

    def _locked(self):
        if self.lock_file is None:
            return nullcontext()
        return state_lock(self.lock_file, timeout=self.settings.lock_timeout)

    def tick(self) -> CycleReport:
        """Run one cycle: bootstrap if needed, otherwise reconcile changes.

        Failures reading or writing state, or querying the package manager,
        abort only this cycle; ``previous`` is left as it was so the next
        tick retries.
        """
        self._cycle_count += 1
        try:
            with self._locked():
                current, existed = self.store.read()

                if not existed:
                    self._state = DaemonState.BOOTSTRAPPING
                    self.previous = bootstrap_state(self.store, self.manager)
                    return CycleReport(
                        skipped_reason="bootstrapped",
                        persisted_count=len(self.previous),
                    )

                if self.previous is None:
                    logger.info(f"Loaded {len(current)} declared packages from {self.store.active_file}")
                    self.previous = current
                    return CycleReport()

                if current != self.previous:
                    self._state = DaemonState.RECONCILING
                report, self.previous = reconcile(
                    self.store, self.manager, self.previous, current, self.settings
                )
                return report

        except LockError as e:
            logger.warning(f"Skipping cycle: {e}")
            return CycleReport(skipped_reason=str(e))
        except (StateIOError, ExternalToolError) as e:
            logger.error(f"Cycle aborted, retrying in {self.settings.interval_seconds:.0f}s: {e}")
            return CycleReport(skipped_reason=str(e))
        finally:
            self._state = DaemonState.STOPPED if self._stop.is_set() else DaemonState.IDLE

    def run(self, max_ticks: int | None = None) -> None:
        """Tick until stopped.

        Args:
            max_ticks: Stop after this many ticks; ``None`` runs forever.
        """
        logger.info(
            f"flatly daemon started (interval: {self.settings.interval_seconds:.0f}s, "
            f"state: {self.store.active_file})"
        )

        ticks = 0
        while not self._stop.is_set():
            self.tick()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            self._stop.wait(timeout=self.settings.interval_seconds)

        self._state = DaemonState.STOPPED
        logger.info(f"flatly daemon stopped ({self._cycle_count} cycles)")

