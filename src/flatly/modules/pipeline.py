"""Reconciliation Pipeline.

Every entry point (daemon ticks and the one-shot add/remove commands)
goes through these functions, so they share one diff/apply/persist path.
State is only written after the package manager has been driven.
"""

import logging

from flatly.config import FlatlySettings
from flatly.exceptions import ExternalToolError, StateIOError
from flatly.types import CycleReport, OutcomeType, PackageOutcome, PackageSet

from .package_manager import PackageManager
from .policy import should_reconcile
from .reconcile_engine import apply_delta, diff_packages, install_package, remove_package, summarize_outcomes
from .state_store import StateStore


logger = logging.getLogger("flatly.pipeline")


def bootstrap_state(store: StateStore, manager: PackageManager) -> PackageSet:
    """Seed the state file from what is installed right now.

    Nothing is installed or removed: there is no earlier declaration to
    reconcile against.

    Returns:
        The installed set that was written.

    Raises:
        ExternalToolError: If the installed set cannot be listed.
        StateIOError: If the state file cannot be written.
    """
    logger.info("🌱 No state file found, bootstrapping from installed applications...")
    installed = manager.list_installed()
    path = store.write(installed)
    logger.info(f"   ✓ {path} created with {len(installed)} installed packages")
    return frozenset(installed)


def refresh_state(store: StateStore, manager: PackageManager) -> PackageSet:
    """Overwrite the state file with the full installed set.

    Raises:
        ExternalToolError: If the installed set cannot be listed.
        StateIOError: If the state file cannot be written.
    """
    installed = manager.list_installed()
    store.write(installed)
    logger.info(f"   ✓ {store.active_file.name} updated with {len(installed)} installed packages")
    return frozenset(installed)


def backup_state(store: StateStore, settings: FlatlySettings) -> None:
    """Back up the state file before it is rewritten.

    Backup problems are logged and never stop a reconciliation.
    """
    if not settings.backups_enabled:
        return
    try:
        store.backup()
        store.prune_backups(settings.max_backups)
    except StateIOError as e:
        logger.error(f"   Error creating backup: {e}")


def reconcile(
    store: StateStore,
    manager: PackageManager,
    previous: PackageSet,
    current: PackageSet,
    settings: FlatlySettings,
) -> tuple[CycleReport, PackageSet]:
    """Run one reconciliation pass from ``previous`` to ``current``.

    Args:
        store: Where the resulting state is persisted.
        manager: Package manager to act through.
        previous: Set as of the last reconciliation.
        current: Set as declared now.
        settings: Runtime settings.

    Returns:
        ``(report, settled)`` where ``settled`` is the set the next pass
        should treat as previous.

    Raises:
        ExternalToolError: If the installed set cannot be listed afterwards.
        StateIOError: If the new state cannot be written.
    """
    delta = diff_packages(previous, current)
    go, reason = should_reconcile(
        previous, current, delta, allow_empty=settings.allow_empty_declaration
    )
    if not go:
        if reason:
            logger.warning(f"⚠️  {reason}")
            return CycleReport(skipped_reason=reason, delta=delta), previous
        return CycleReport(delta=delta), current

    logger.info("=" * 60)
    logger.info("🔄 RECONCILING")
    logger.info(f"   {len(delta.to_install)} to install, {len(delta.to_remove)} to remove")

    logger.info("💾 Step 1: Backing up state...")
    backup_state(store, settings)

    logger.info("📦 Step 2: Applying changes...")
    result = apply_delta(delta, manager)
    counts = summarize_outcomes(result)
    logger.info(f"   ✓ Outcomes: {', '.join(f'{k.value}={v}' for k, v in counts.items()) or 'none'}")
    for failure in result.failed:
        logger.error(f"   ✗ {failure.package}: {failure.reason}")

    logger.info("📝 Step 3: Persisting installed state...")
    settled = refresh_state(store, manager)
    logger.info("=" * 60)

    report = CycleReport(
        reconciled=True,
        delta=delta,
        result=result,
        persisted_count=len(settled),
    )
    return report, settled


def _one_shot(
    store: StateStore,
    manager: PackageManager,
    settings: FlatlySettings,
    outcome: PackageOutcome,
) -> PackageOutcome:
    if outcome.outcome == OutcomeType.FAILED:
        raise ExternalToolError(outcome.reason or f"{outcome.package} failed", package=outcome.package)

    if store.exists():
        backup_state(store, settings)
    refresh_state(store, manager)
    return outcome


def run_add(
    store: StateStore,
    manager: PackageManager,
    name: str,
    settings: FlatlySettings,
) -> PackageOutcome:
    """Install one package and refresh the persisted state.

    Raises:
        ExternalToolError: If the install fails. State is left untouched.
        StateIOError: If the refreshed state cannot be written.
    """
    logger.info(f"➕ Adding {name}")
    return _one_shot(store, manager, settings, install_package(manager, name))


def run_remove(
    store: StateStore,
    manager: PackageManager,
    name: str,
    settings: FlatlySettings,
) -> PackageOutcome:
    """Uninstall one package and refresh the persisted state.

    Raises:
        ExternalToolError: If the uninstall fails. State is left untouched.
        StateIOError: If the refreshed state cannot be written.
    """
    logger.info(f"➖ Removing {name}")
    return _one_shot(store, manager, settings, remove_package(manager, name))
