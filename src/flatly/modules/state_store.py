"""State Store - persisted package declaration.

Owns ``active.json`` and its timestamped backups. The file holds a
sorted, pretty-printed JSON array so that diffs between backups stay
readable.
"""

import contextlib
import json
import logging
import os
import shutil
import tempfile
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from flatly.exceptions import StateIOError
from flatly.types import PackageSet


logger = logging.getLogger("flatly.state")

BACKUP_PREFIX = "active_backup_"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def encode_packages(packages: Iterable[str]) -> str:
    """Serialize a package set to its on-disk JSON form."""
    return json.dumps(sorted(set(packages)), indent=4) + "\n"


def decode_packages(text: str, source: str = "<memory>") -> PackageSet:
    """Parse the on-disk JSON form.

    An empty (or whitespace-only) document is an empty set.

    Raises:
        StateIOError: If the text is not a JSON array of strings.
    """
    if not text.strip():
        return frozenset()

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise StateIOError(f"Failed to parse {source}: {e}", path=source) from e

    if not isinstance(data, list):
        raise StateIOError(
            f"Failed to parse {source}: expected a JSON array, got {type(data).__name__}",
            path=source,
        )

    bad = [item for item in data if not isinstance(item, str)]
    if bad:
        raise StateIOError(
            f"Failed to parse {source}: non-string entries {bad[:5]!r}",
            path=source,
        )

    return frozenset(data)


class StateStore:
    """Reads and writes the persisted package set.

    Args:
        active_file: Path of ``active.json``.
        backup_dir: Directory for timestamped backups.
        clock: Returns the current time; used for backup names.
    """

    def __init__(
        self,
        active_file: Path,
        backup_dir: Path,
        clock=datetime.now,
    ) -> None:
        self.active_file = Path(active_file)
        self.backup_dir = Path(backup_dir)
        self._clock = clock

    def exists(self) -> bool:
        return self.active_file.exists()

    def read(self) -> tuple[PackageSet, bool]:
        """Read the persisted package set.

        Returns:
            ``(packages, existed)``. A missing file is ``(frozenset(), False)``.

        Raises:
            StateIOError: If the file exists but cannot be read or parsed.
        """
        try:
            text = self.active_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return frozenset(), False
        except (OSError, UnicodeDecodeError) as e:
            raise StateIOError(
                f"Failed to read {self.active_file}: {e}",
                path=str(self.active_file),
            ) from e

        return decode_packages(text, str(self.active_file)), True

    def write(self, packages: Iterable[str]) -> Path:
        """Atomically replace the persisted package set.

        Args:
            packages: Package identifiers to persist.

        Returns:
            Path that was written.

        Raises:
            StateIOError: On any filesystem failure.
        """
        payload = encode_packages(packages)
        target = self.active_file
        tmp_name = None

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=str(target.parent),
                prefix=".active-",
                suffix=".json",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, target)
        except OSError as e:
            if tmp_name is not None:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(tmp_name)
            raise StateIOError(f"Failed to write {target}: {e}", path=str(target)) from e

        return target

    def backup(self) -> Path | None:
        """Copy the current state file into the backup directory.

        Returns:
            Path of the new backup, or None if there is no state file yet.

        Raises:
            StateIOError: If the backup cannot be created.
        """
        if not self.active_file.exists():
            return None

        stamp = self._clock().strftime(BACKUP_TIMESTAMP_FORMAT)
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            destination = self.backup_dir / f"{BACKUP_PREFIX}{stamp}.json"
            counter = 1
            while destination.exists():
                destination = self.backup_dir / f"{BACKUP_PREFIX}{stamp}_{counter}.json"
                counter += 1
            shutil.copy2(self.active_file, destination)
        except OSError as e:
            raise StateIOError(
                f"Failed to create backup of {self.active_file}: {e}",
                path=str(self.backup_dir),
            ) from e

        logger.info(f"   Backup created: {destination}")
        return destination

    def list_backups(self) -> list[Path]:
        """Backups ordered oldest to newest."""
        if not self.backup_dir.is_dir():
            return []
        # Timestamps sort lexically; the stem keeps "_1" suffixes after the base name
        return sorted(
            self.backup_dir.glob(f"{BACKUP_PREFIX}*.json"),
            key=lambda p: p.stem,
        )

    def prune_backups(self, keep: int) -> list[Path]:
        """Delete the oldest backups beyond ``keep``.

        Args:
            keep: Number of backups to retain. ``0`` disables pruning.

        Returns:
            Paths that were removed.

        Raises:
            StateIOError: If a backup cannot be removed.
        """
        if keep <= 0:
            return []

        backups = self.list_backups()
        stale = backups[: max(len(backups) - keep, 0)]
        for path in stale:
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StateIOError(f"Failed to remove backup {path}: {e}", path=str(path)) from e
            logger.debug(f"   Pruned backup {path.name}")
        return stale
