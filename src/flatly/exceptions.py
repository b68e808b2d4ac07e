"""Exception hierarchy for flatly."""


class FlatlyError(Exception):
    """Base exception for all flatly errors."""


class ConfigError(FlatlyError):
    """The flatly directory or configuration could not be resolved."""


class StateIOError(FlatlyError):
    """Reading, parsing or writing persisted state failed.

    A state file that exists but cannot be parsed is always reported with
    this error and never treated as an empty package set.
    """

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class ExternalToolError(FlatlyError):
    """The package manager failed, timed out or could not be started."""

    def __init__(
        self,
        message: str,
        *,
        package: str = "",
        command: list[str] | None = None,
        returncode: int | None = None,
    ) -> None:
        self.package = package
        self.command = command or []
        self.returncode = returncode
        super().__init__(message)


class LockError(FlatlyError):
    """Another flatly process holds the state lock."""
