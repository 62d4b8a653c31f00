"""Shared utilities for the core modules.

* Corruption-safe JSON read/write helpers with backup rotation and atomic
  replace semantics (used for the wallet records file).
* :class:`StopSignal` / :func:`interruptible_sleep` -- the cancellable
  delay used for every cooldown, backoff and cycle wait, so a shutdown
  request interrupts waiting instead of sitting out a full interval.
"""

import asyncio
import json
import logging
import os
from typing import Any, Optional

logger = logging.getLogger(__name__)


def safe_json_read(filepath: str, max_backups: int = 3) -> Optional[Any]:
    """Read JSON with fallback to backups if corrupted.

    Tries the primary file first, then ``file.backup.1``,
    ``file.backup.2`` ... until one parses.

    Args:
        filepath: Path to the primary JSON file.
        max_backups: Maximum number of backup files to check.

    Returns:
        The parsed document, or ``None`` if every candidate is missing
        or corrupted.
    """
    paths = [filepath] + [
        f"{filepath}.backup.{i}"
        for i in range(1, max_backups + 1)
    ]
    for path in paths:
        if not os.path.exists(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Unreadable JSON file %s: %s", path, exc)
            continue
    return None


def safe_json_write(filepath: str, data: Any, max_backups: int = 3) -> None:
    """Atomically write *data* as JSON, keeping rotated backups.

    The write sequence is:
        1. Rotate existing backups (``backup.2`` -> ``backup.3``, etc.).
        2. Copy the current file to ``backup.1``.
        3. Write new data to a temporary file and re-read it.
        4. Atomically replace the target with the temporary file.

    Raises:
        OSError: If the file cannot be written.  Wallet files hold key
            material, so a failed write must not pass silently.
    """
    dirpath = os.path.dirname(filepath)
    if dirpath:
        os.makedirs(dirpath, exist_ok=True)

    if os.path.exists(filepath):
        backup_base = filepath + ".backup"
        for i in range(max_backups - 1, 0, -1):
            old = f"{backup_base}.{i}"
            if os.path.exists(old):
                os.replace(old, f"{backup_base}.{i + 1}")
        with open(filepath, "rb") as src, open(f"{backup_base}.1", "wb") as dst:
            dst.write(src.read())

    temp_file = filepath + ".tmp"
    with open(temp_file, "w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2)

    # Validate by re-reading before committing
    with open(temp_file, "r", encoding="utf-8") as fh:
        json.load(fh)

    os.replace(temp_file, filepath)


class StopSignal:
    """Process-wide shutdown flag with a cancellable wait.

    Wraps an :class:`asyncio.Event`.  Create it inside the running event
    loop (``asyncio.Event`` binds lazily on modern Pythons, but keeping
    the creation inside ``main()`` avoids surprises).
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def set(self) -> None:
        """Request shutdown.  Idempotent."""
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """Wait up to *seconds* or until shutdown is requested.

        Returns:
            ``True`` if shutdown was requested (before or during the
            wait), ``False`` if the full delay elapsed.
        """
        if self._event.is_set():
            return True
        if seconds <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False


async def interruptible_sleep(
    seconds: float, stop_signal: Optional[StopSignal] = None,
) -> bool:
    """Sleep for *seconds*, returning early on shutdown.

    Without a *stop_signal* this is a plain :func:`asyncio.sleep`.

    Returns:
        ``True`` if the wait was cut short by a shutdown request.
    """
    if stop_signal is not None:
        return await stop_signal.sleep(seconds)
    if seconds > 0:
        await asyncio.sleep(seconds)
    return False
