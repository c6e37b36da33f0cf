"""Filesystem stash: one file per access, named by access id.

File content is the request URL associated with the access (empty if
none). Files are written to a hidden temporary name and renamed into
place, so a crash never leaves a partial entry under an access id.
"""

import logging
import os
from pathlib import Path
from tempfile import NamedTemporaryFile

from oaping.core.access import StashEntry
from oaping.core.errors import StashError

logger = logging.getLogger("oaping.backends.filesystem")

_TEMP_PREFIX = ".stash-"


class FileStashStore:
    """Stash store backed by a directory of files.

    Args:
        directory: Directory holding the stash. Created on first use.
        fsync_writes: Flush each entry to disk before renaming it into place.
    """

    def __init__(self, directory: Path, fsync_writes: bool = True) -> None:
        self._dir = Path(directory)
        self._fsync_writes = fsync_writes

    @property
    def directory(self) -> Path:
        return self._dir

    async def put(self, entry: StashEntry) -> None:
        """Write the entry atomically, replacing any existing one.

        Raises:
            StashError: If the directory or file could not be written.
        """
        path = self._dir / str(entry.access_id)

        tmp_path: Path | None = None
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            with NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                prefix=_TEMP_PREFIX,
                suffix=".tmp",
                dir=self._dir,
                delete=False,
            ) as handle:
                tmp_path = Path(handle.name)
                handle.write(entry.url)
                handle.flush()
                if self._fsync_writes:
                    os.fsync(handle.fileno())
            os.replace(tmp_path, path)
            tmp_path = None
        except OSError as e:
            raise StashError(
                f"Could not stash ping: {e}", access_id=entry.access_id, url=entry.url
            ) from e
        finally:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)

        logger.debug(f"Stashed access {entry.access_id}")

    def _entry_paths(self) -> list[Path]:
        try:
            paths = list(self._dir.iterdir())
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StashError(f"Could not read stash directory {self._dir}: {e}") from e
        # Temporary files start with a dot; anything else not numeric is foreign
        return [p for p in paths if p.name.isdigit() and p.is_file()]

    async def take_all(self) -> list[StashEntry]:
        """Read and remove every stashed entry.

        Unreadable files are left in place for a later attempt.

        Raises:
            StashError: If the stash directory exists but cannot be listed.
        """
        entries: list[StashEntry] = []
        for path in self._entry_paths():
            try:
                url = path.read_text(encoding="utf-8")
            except OSError as e:
                logger.error(f"Could not read stashed access {path.name}: {e}")
                continue

            entries.append(StashEntry(access_id=int(path.name), url=url))

            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                # Entry will be resent on a later run; delivery is at-least-once
                logger.warning(f"Could not remove stashed access {path.name}: {e}")

        return entries

    async def count(self) -> int:
        return len(self._entry_paths())
