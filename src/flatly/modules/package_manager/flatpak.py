"""Flatpak Command Executor.

Runs the ``flatpak`` CLI and maps its failures to ExternalToolError.
Every invocation is bounded by a timeout.
"""

import logging
import subprocess
import time

from flatly.exceptions import ExternalToolError


logger = logging.getLogger("flatly.flatpak")


def validate_package_name(name: str) -> None:
    """Reject names that flatpak would misread as options or multiple args.

    Raises:
        ExternalToolError: If the name is unusable.
    """
    if not name or not name.strip():
        raise ExternalToolError("Package name is empty", package=name)
    if name.startswith("-"):
        raise ExternalToolError(f"Package name may not start with '-': {name}", package=name)
    if any(ch.isspace() for ch in name):
        raise ExternalToolError(f"Package name may not contain whitespace: {name!r}", package=name)


class FlatpakManager:
    """PackageManager backed by the flatpak command line tool."""

    def __init__(
        self,
        binary: str = "flatpak",
        *,
        installation: str | None = None,
        remote: str | None = None,
        command_timeout: float = 900.0,
        query_timeout: float = 60.0,
    ) -> None:
        self.binary = binary
        self.installation = installation
        self.remote = remote
        self.command_timeout = command_timeout
        self.query_timeout = query_timeout

    def _scope_args(self) -> list[str]:
        if self.installation == "user":
            return ["--user"]
        if self.installation == "system":
            return ["--system"]
        return []

    def _run(
        self,
        args: list[str],
        *,
        timeout: float,
        package: str = "",
    ) -> subprocess.CompletedProcess[str]:
        """Execute a flatpak command and return the completed process.

        Non-zero exit codes are returned, not raised; callers decide what
        they mean.

        Raises:
            ExternalToolError: If the binary is missing or the call times out.
        """
        command = [self.binary, *args]
        logger.debug(f"   $ {' '.join(command)}")

        start_time = time.perf_counter()
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise ExternalToolError(
                f"{self.binary} not found: {e}",
                package=package,
                command=command,
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError(
                f"{' '.join(command)} timed out after {timeout:.0f}s",
                package=package,
                command=command,
            ) from e
        except OSError as e:
            raise ExternalToolError(
                f"Cannot run {self.binary}: {e}",
                package=package,
                command=command,
            ) from e

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(f"   exit={completed.returncode} in {elapsed_ms:.0f}ms")
        return completed

    def list_installed(self) -> list[str]:
        completed = self._run(
            ["list", "--app", "--columns=application", *self._scope_args()],
            timeout=self.query_timeout,
        )
        if completed.returncode != 0:
            raise ExternalToolError(
                f"Failed to list installed applications: {_stderr_tail(completed)}",
                command=[self.binary, "list"],
                returncode=completed.returncode,
            )

        # dict.fromkeys keeps first-seen order while dropping duplicates
        lines = (line.strip() for line in completed.stdout.splitlines())
        return list(dict.fromkeys(line for line in lines if line))

    def is_installed(self, name: str) -> bool:
        validate_package_name(name)
        completed = self._run(
            ["info", *self._scope_args(), name],
            timeout=self.query_timeout,
            package=name,
        )
        return completed.returncode == 0

    def install(self, name: str) -> None:
        validate_package_name(name)
        args = ["install", "--noninteractive", "--assumeyes", *self._scope_args()]
        if self.remote:
            args.append(self.remote)
        args.append(name)

        completed = self._run(args, timeout=self.command_timeout, package=name)
        if completed.returncode != 0:
            raise ExternalToolError(
                f"Failed to install {name}: {_stderr_tail(completed)}",
                package=name,
                command=[self.binary, *args],
                returncode=completed.returncode,
            )
        logger.info(f"   ✓ {name} installed")

    def uninstall(self, name: str) -> None:
        validate_package_name(name)
        args = ["uninstall", "--noninteractive", "--assumeyes", *self._scope_args(), name]

        completed = self._run(args, timeout=self.command_timeout, package=name)
        if completed.returncode != 0:
            raise ExternalToolError(
                f"Failed to uninstall {name}: {_stderr_tail(completed)}",
                package=name,
                command=[self.binary, *args],
                returncode=completed.returncode,
            )
        logger.info(f"   ✓ {name} uninstalled")


def _stderr_tail(completed: subprocess.CompletedProcess[str], limit: int = 300) -> str:
    text = (completed.stderr or completed.stdout or "").strip()
    if not text:
        return f"exit status {completed.returncode}"
    return text[-limit:]
