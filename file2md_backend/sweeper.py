from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Iterable

from .session import is_session_expired, session_id_prefix
from .store import remove_path
from .tasks import BackgroundRunner


logger = logging.getLogger(__name__)


def _protected_by_session_id(name: str, retention_ms: int, now_ms: int) -> bool:
    sid = session_id_prefix(name)
    if sid is None:
        return False
    return not is_session_expired(sid, retention_ms, now=now_ms)


def sweep(directories: Iterable[Path], retention_seconds: float, now: float | None = None) -> int:
    """Delete immediate children older than the retention window.

    Returns the number of removed entries. A child whose name carries a session id
    still inside the window is always kept, whatever its mtime says.
    """
    current = time.time() if now is None else now
    retention_ms = int(retention_seconds * 1000)
    removed = 0

    for directory in directories:
        directory = Path(directory)
        try:
            children = list(directory.iterdir())
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Cannot list %s for cleanup: %s", directory, e)
            continue

        for child in children:
            if _protected_by_session_id(child.name, retention_ms, int(current * 1000)):
                continue
            try:
                age = current - child.lstat().st_mtime
                if age <= retention_seconds:
                    continue
                if remove_path(child):
                    removed += 1
            except FileNotFoundError:
                # Removed concurrently by another sweep or an expired-session purge.
                continue
            except OSError as e:
                logger.warning("Failed to remove %s: %s", child.name, e)
    return removed


class OpportunisticSweeper:
    """Piggybacks garbage collection on incoming traffic.

    `last_run` is process-wide advisory state: two requests racing on it cause at
    most one extra or one skipped sweep, so there is no lock.
    """

    def __init__(
        self,
        directories: Iterable[Path],
        retention_seconds: float,
        interval_seconds: float = 1800.0,
    ) -> None:
        self.directories = [Path(d) for d in directories]
        self.retention_seconds = retention_seconds
        self.interval_seconds = interval_seconds
        self.last_run = 0.0

    def run(self) -> int:
        """Sweep now; synchronous and returns the removed count."""
        removed = sweep(self.directories, self.retention_seconds)
        if removed:
            logger.info("Cleaned up %d old files", removed)
        return removed

    def due(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        if current - self.last_run > self.interval_seconds:
            self.last_run = current
            return True
        return False

    def maybe_run(self, runner: BackgroundRunner, now: float | None = None) -> bool:
        if not self.due(now):
            return False
        runner.spawn(self.run)
        return True
