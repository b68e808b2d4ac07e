"""Core type definitions for flatly.

Package sets are plain ``frozenset[str]`` values; everything that is
reported back to the operator is a Pydantic model.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field, model_validator


PackageSet = frozenset[str]


# ============================================================================
# Enums
# ============================================================================


class ActionType(str, Enum):
    """Actions the reconcile engine can take on a package."""

    INSTALL = "INSTALL"
    REMOVE = "REMOVE"


class OutcomeType(str, Enum):
    """Per-package result of applying a delta."""

    INSTALLED = "INSTALLED"
    REMOVED = "REMOVED"
    SKIPPED_ALREADY_PRESENT = "SKIPPED_ALREADY_PRESENT"
    SKIPPED_ALREADY_ABSENT = "SKIPPED_ALREADY_ABSENT"
    FAILED = "FAILED"


class DaemonState(str, Enum):
    """States of the daemon loop."""

    BOOTSTRAPPING = "BOOTSTRAPPING"
    IDLE = "IDLE"
    RECONCILING = "RECONCILING"
    STOPPED = "STOPPED"


# ============================================================================
# Reconciliation Types
# ============================================================================


class PackageDelta(BaseModel):
    """Packages to install and remove to move from one set to another."""

    to_install: frozenset[str] = Field(default_factory=frozenset)
    to_remove: frozenset[str] = Field(default_factory=frozenset)

    @model_validator(mode="after")
    def _check_disjoint(self) -> "PackageDelta":
        overlap = self.to_install & self.to_remove
        if overlap:
            raise ValueError(f"Packages both installed and removed: {sorted(overlap)}")
        return self

    @property
    def is_empty(self) -> bool:
        return not self.to_install and not self.to_remove


class PackageOutcome(BaseModel):
    """What happened to a single package during apply."""

    package: str
    action: ActionType
    outcome: OutcomeType
    reason: str | None = Field(default=None, description="Failure reason, only for FAILED")


class AppliedResult(BaseModel):
    """Outcomes of one apply pass, in processing order."""

    outcomes: list[PackageOutcome] = Field(default_factory=list)

    @property
    def failed(self) -> list[PackageOutcome]:
        return [o for o in self.outcomes if o.outcome == OutcomeType.FAILED]

    @property
    def changed(self) -> list[PackageOutcome]:
        """Outcomes where the package manager actually changed the system."""
        return [
            o for o in self.outcomes
            if o.outcome in (OutcomeType.INSTALLED, OutcomeType.REMOVED)
        ]

    @property
    def ok(self) -> bool:
        return not self.failed


# ============================================================================
# Output Types
# ============================================================================


class CycleReport(BaseModel):
    """Summary of one daemon tick."""

    timestamp: datetime = Field(default_factory=datetime.now)
    reconciled: bool = False
    skipped_reason: str | None = None
    delta: PackageDelta = Field(default_factory=PackageDelta)
    result: AppliedResult | None = None
    persisted_count: int | None = Field(
        default=None,
        description="Number of packages written as the new state, if written",
    )


class StatusReport(BaseModel):
    """Drift between the declared set and what is installed right now."""

    timestamp: datetime = Field(default_factory=datetime.now)
    state_file: str
    declared: list[str]
    installed: list[str]
    missing: list[str] = Field(description="Declared but not installed")
    extra: list[str] = Field(description="Installed but not declared")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def in_sync(self) -> bool:
        return not self.missing and not self.extra
