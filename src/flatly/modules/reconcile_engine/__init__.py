"""Reconcile Engine Package - set difference and delta application.

``diff_packages`` is a pure function; only ``apply_delta`` touches the
system, and only through a PackageManager.
"""

from collections.abc import Iterable

from flatly.types import AppliedResult, OutcomeType, PackageDelta

from .executor import apply_delta, install_package, remove_package


def diff_packages(
    previous: Iterable[str],
    current: Iterable[str],
) -> PackageDelta:
    """Compute what changed between two package sets.

    Packages present in both sets are never part of the delta.

    Args:
        previous: The set as of the last reconciliation.
        current: The set as declared now.

    Returns:
        PackageDelta with ``current - previous`` to install and
        ``previous - current`` to remove.
    """
    previous_set = frozenset(previous)
    current_set = frozenset(current)

    return PackageDelta(
        to_install=current_set - previous_set,
        to_remove=previous_set - current_set,
    )


def summarize_outcomes(result: AppliedResult) -> dict[OutcomeType, int]:
    """Count outcomes by type.

    Args:
        result: Result of an apply pass.

    Returns:
        Mapping of outcome type to count, only for types that occurred.
    """
    by_type: dict[OutcomeType, int] = {}
    for outcome in result.outcomes:
        by_type[outcome.outcome] = by_type.get(outcome.outcome, 0) + 1
    return by_type


__all__ = [
    "apply_delta",
    "diff_packages",
    "install_package",
    "remove_package",
    "summarize_outcomes",
]
