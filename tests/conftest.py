"""Shared fixtures."""

import pytest

from flatly.config import FlatlySettings
from flatly.exceptions import ExternalToolError
from flatly.modules.state_store import StateStore


class FakePackageManager:
    """In-memory PackageManager that records every call."""

    def __init__(self, installed=(), fail_install=(), fail_uninstall=(), fail_query=()):
        self.installed: list[str] = list(installed)
        self.fail_install = set(fail_install)
        self.fail_uninstall = set(fail_uninstall)
        self.fail_query = set(fail_query)
        self.list_error: str | None = None
        self.calls: list[tuple[str, str]] = []

    def list_installed(self) -> list[str]:
        self.calls.append(("list", ""))
        if self.list_error:
            raise ExternalToolError(self.list_error)
        return list(self.installed)

    def is_installed(self, name: str) -> bool:
        self.calls.append(("is_installed", name))
        if name in self.fail_query:
            raise ExternalToolError(f"query failed for {name}", package=name)
        return name in self.installed

    def install(self, name: str) -> None:
        self.calls.append(("install", name))
        if name in self.fail_install:
            raise ExternalToolError(f"Failed to install {name}", package=name, returncode=1)
        self.installed.append(name)

    def uninstall(self, name: str) -> None:
        self.calls.append(("uninstall", name))
        if name in self.fail_uninstall:
            raise ExternalToolError(f"Failed to uninstall {name}", package=name, returncode=1)
        self.installed.remove(name)

    def actions(self) -> list[tuple[str, str]]:
        """Calls that changed the system."""
        return [c for c in self.calls if c[0] in ("install", "uninstall")]


@pytest.fixture
def manager() -> FakePackageManager:
    return FakePackageManager(installed=["org.gnome.Calculator", "org.mozilla.firefox"])


@pytest.fixture
def store(tmp_path) -> StateStore:
    return StateStore(tmp_path / "flatly" / "active.json", tmp_path / "flatly" / "backups")


@pytest.fixture
def settings() -> FlatlySettings:
    return FlatlySettings(interval_seconds=0.01, lock_timeout=0, max_backups=5)


@pytest.fixture
def make_manager():
    """Factory for FakePackageManager instances."""
    return FakePackageManager
