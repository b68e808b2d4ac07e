"""Delta Executor.

Applies a PackageDelta through a PackageManager, one package at a time.
A failing package is recorded and the batch carries on.
"""

import logging

from flatly.exceptions import ExternalToolError
from flatly.modules.package_manager import PackageManager
from flatly.types import ActionType, AppliedResult, OutcomeType, PackageDelta, PackageOutcome


logger = logging.getLogger("flatly.executor")


def remove_package(manager: PackageManager, name: str) -> PackageOutcome:
    """Uninstall one package unless it is already absent.

    Args:
        manager: Package manager to act through.
        name: Package identifier.

    Returns:
        REMOVED, SKIPPED_ALREADY_ABSENT or FAILED outcome.
    """
    try:
        if not manager.is_installed(name):
            logger.info(f"   - {name} is not installed, skipping")
            return PackageOutcome(
                package=name,
                action=ActionType.REMOVE,
                outcome=OutcomeType.SKIPPED_ALREADY_ABSENT,
            )
        manager.uninstall(name)
    except ExternalToolError as e:
        logger.warning(f"   ✗ {name}: {e}")
        return PackageOutcome(
            package=name,
            action=ActionType.REMOVE,
            outcome=OutcomeType.FAILED,
            reason=str(e),
        )

    return PackageOutcome(package=name, action=ActionType.REMOVE, outcome=OutcomeType.REMOVED)


def install_package(manager: PackageManager, name: str) -> PackageOutcome:
    """Install one package unless it is already present.

    Args:
        manager: Package manager to act through.
        name: Package identifier.

    Returns:
        INSTALLED, SKIPPED_ALREADY_PRESENT or FAILED outcome.
    """
    try:
        if manager.is_installed(name):
            logger.info(f"   - {name} is already installed, skipping")
            return PackageOutcome(
                package=name,
                action=ActionType.INSTALL,
                outcome=OutcomeType.SKIPPED_ALREADY_PRESENT,
            )
        manager.install(name)
    except ExternalToolError as e:
        logger.warning(f"   ✗ {name}: {e}")
        return PackageOutcome(
            package=name,
            action=ActionType.INSTALL,
            outcome=OutcomeType.FAILED,
            reason=str(e),
        )

    return PackageOutcome(package=name, action=ActionType.INSTALL, outcome=OutcomeType.INSTALLED)


def apply_delta(delta: PackageDelta, manager: PackageManager) -> AppliedResult:
    """Apply a delta: removals first, then installs, each in sorted order.

    Args:
        delta: Packages to remove and install.
        manager: Package manager to act through.

    Returns:
        AppliedResult with one outcome per package in the delta.
    """
    outcomes: list[PackageOutcome] = []

    for name in sorted(delta.to_remove):
        logger.info(f"Package removed from declaration: {name}")
        outcomes.append(remove_package(manager, name))

    for name in sorted(delta.to_install):
        logger.info(f"Package added to declaration: {name}")
        outcomes.append(install_package(manager, name))

    return AppliedResult(outcomes=outcomes)
