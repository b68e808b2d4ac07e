"""Package manager capability.

The reconcile engine only talks to this interface; the flatpak
implementation lives in ``flatpak.py``.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class PackageManager(Protocol):
    """What flatly needs from a package manager."""

    def list_installed(self) -> list[str]:
        """Return the identifiers of all installed applications.

        Raises:
            ExternalToolError: If the query fails.
        """
        ...

    def is_installed(self, name: str) -> bool:
        """Return whether ``name`` is installed.

        Raises:
            ExternalToolError: If the query cannot be performed.
        """
        ...

    def install(self, name: str) -> None:
        """Install ``name``.

        Raises:
            ExternalToolError: If installation fails.
        """
        ...

    def uninstall(self, name: str) -> None:
        """Uninstall ``name``.

        Raises:
            ExternalToolError: If removal fails.
        """
        ...
