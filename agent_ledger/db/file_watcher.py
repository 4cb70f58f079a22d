"""File watcher service using watchfiles.

Monitors transcript directories for appends and triggers incremental
re-sync of the changed files.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional

from watchfiles import Change, awatch

from agent_ledger.parsers.log_reader import is_source_file

logger = logging.getLogger("ledger.watcher")


class FileWatcher:
    """Background watcher, one task per transcript directory.

    Uses `watchfiles` (Rust-accelerated) for efficient watching. Sync work is
    dispatched as its own task so slow ingestion never delays the next batch
    of filesystem notifications.
    """

    def __init__(self):
        self._tasks: dict[Path, asyncio.Task] = {}
        self._pending: set[asyncio.Task] = set()
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    async def start(self, sync_engine, dirs: Iterable[Path]) -> None:
        """Start watching every existing directory in background tasks."""
        if self._running:
            logger.warning("File watcher already running")
            return

        self._stop_event = asyncio.Event()
        for directory in dirs:
            directory = Path(directory)
            if not directory.is_dir():
                logger.warning(f"Transcript directory does not exist, not watching: {directory}")
                continue
            self._tasks[directory] = asyncio.create_task(self._watch_loop(sync_engine, directory))

        self._running = bool(self._tasks)
        if not self._running:
            logger.warning("No watch paths exist, watcher has nothing to monitor")
            return
        logger.info(f"File watcher started for {len(self._tasks)} directories")

    async def stop(self) -> None:
        """Stop all directory watchers and wait for in-flight syncs."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        logger.info("File watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def watched_dirs(self) -> list[Path]:
        return sorted(self._tasks)

    def _dispatch(self, sync_engine, classified: list[tuple[str, Path]]) -> asyncio.Task:
        task = asyncio.create_task(sync_engine.sync_changed_files(classified))
        self._pending.add(task)
        task.add_done_callback(self._on_sync_done)
        return task

    def _on_sync_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Error syncing changed files: {exc}")

    async def _watch_loop(self, sync_engine, directory: Path) -> None:
        """Watch one directory until stopped or until it disappears."""
        logger.info(f"Watching transcript directory: {directory}")
        try:
            async for changes in awatch(directory, stop_event=self._stop_event, recursive=False):
                if not self._running:
                    break
                classified = self._classify_changes(changes)
                if classified:
                    logger.debug(f"Detected {len(classified)} transcript changes in {directory}")
                    self._dispatch(sync_engine, classified)
        except asyncio.CancelledError:
            logger.info(f"Watcher for {directory} cancelled")
        except FileNotFoundError:
            logger.warning(f"Transcript directory disappeared, no longer watching: {directory}")
        finally:
            self._tasks.pop(directory, None)
            if not self._tasks:
                self._running = False

    def _classify_changes(self, changes: set[tuple[Change, str]]) -> list[tuple[str, Path]]:
        """Classify raw watchfiles changes into (change_type, path) pairs.

        Only transcript files are returned; marker files such as ``.deleted``
        copies are ignored.
        """
        result = []
        for change_type, path_str in sorted(changes, key=lambda c: c[1]):
            path = Path(path_str)
            if not is_source_file(path):
                continue

            if change_type == Change.deleted:
                result.append(("deleted", path))
            elif change_type in (Change.modified, Change.added):
                result.append(("modified", path))

        return result


# Singleton instance
file_watcher = FileWatcher()
