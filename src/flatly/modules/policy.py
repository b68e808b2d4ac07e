"""Reconcile Policy - when to act and how to report drift.

Applies the safety rules that decide whether a declaration change is
acted on, and builds the read-only drift report.
"""

from collections.abc import Iterable

from flatly.types import PackageDelta, StatusReport

REFUSE_EMPTY_DECLARATION = (
    "Declared set is empty; refusing to uninstall every package "
    "(set allow_empty_declaration to permit this)"
)


def should_reconcile(
    previous: frozenset[str],
    current: frozenset[str],
    delta: PackageDelta,
    allow_empty: bool = False,
) -> tuple[bool, str | None]:
    """Decide whether a tick should enter the reconciling state.

    An emptied declaration is treated as a probable mistake rather than a
    request to remove everything, unless explicitly allowed.

    Args:
        previous: Set as of the last reconciliation.
        current: Set as declared now.
        delta: Diff of the two.
        allow_empty: Permit an empty declaration to remove everything.

    Returns:
        ``(reconcile, reason)`` where ``reason`` explains a refusal.
    """
    if delta.is_empty:
        return False, None

    if not current and previous and not allow_empty:
        return False, REFUSE_EMPTY_DECLARATION

    return True, None


def build_status_report(
    declared: Iterable[str],
    installed: Iterable[str],
    state_file: str,
) -> StatusReport:
    """Compare the declaration against what is installed.

    Args:
        declared: Packages in ``active.json``.
        installed: Packages reported by the package manager.
        state_file: Path of the state file, for display.

    Returns:
        StatusReport listing missing and extra packages.
    """
    declared_set = set(declared)
    installed_set = set(installed)

    return StatusReport(
        state_file=state_file,
        declared=sorted(declared_set),
        installed=sorted(installed_set),
        missing=sorted(declared_set - installed_set),
        extra=sorted(installed_set - declared_set),
    )
