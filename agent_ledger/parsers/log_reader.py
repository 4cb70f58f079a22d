"""Locate and tail append-only transcript files with resumable checkpoints."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from agent_ledger import config
from agent_ledger.errors import SourceUnavailable
from agent_ledger.models import SyncCheckpoint

logger = logging.getLogger("ledger.reader")


@dataclass(frozen=True)
class SourceHandle:
    path: Path
    session_id: str

    @property
    def key(self) -> str:
        return str(self.path)


@dataclass
class ReadBatch:
    lines: list[bytes] = field(default_factory=list)
    start_sequence: int = 0
    checkpoint: SyncCheckpoint | None = None
    reset: bool = False

    def numbered(self) -> Iterable[tuple[int, bytes]]:
        return enumerate(self.lines, start=self.start_sequence)


def is_source_file(path: Path, markers: Iterable[str] = config.EXCLUDED_SOURCE_MARKERS) -> bool:
    if path.suffix != ".jsonl":
        return False
    return not any(marker in path.name for marker in markers)


def _is_complete_fragment(fragment: bytes) -> bool:
    try:
        return isinstance(json.loads(fragment), dict)
    except ValueError:
        return False


class LogReader:
    """Reads new, complete lines from transcript files.

    A checkpoint records both the number of non-empty lines consumed and the
    byte offset just past them. Rotation (inode change or the file shrinking
    below the offset) starts a new generation from line 0.
    """

    def __init__(self, dirs: Iterable[Path] | None = None):
        self.dirs = [Path(d) for d in (dirs if dirs is not None else config.SESSIONS_DIRS)]

    def list_sources(self) -> list[SourceHandle]:
        handles: list[SourceHandle] = []
        for directory in self.dirs:
            if not directory.is_dir():
                logger.debug(f"Transcript directory missing: {directory}")
                continue
            for path in sorted(directory.glob("*.jsonl")):
                if path.is_file() and is_source_file(path):
                    handles.append(SourceHandle(path=path, session_id=path.stem))
        return handles

    def handle_for(self, path: Path) -> SourceHandle:
        return SourceHandle(path=Path(path), session_id=Path(path).stem)

    def read_new_lines(self, handle: SourceHandle, checkpoint: SyncCheckpoint | None) -> ReadBatch:
        """Return every complete line after ``checkpoint`` and the advanced checkpoint."""
        try:
            stat = os.stat(handle.path)
        except FileNotFoundError as exc:
            raise SourceUnavailable("Transcript file disappeared", {"path": handle.key}) from exc

        current = checkpoint or SyncCheckpoint(filePath=handle.key, sessionId=handle.session_id)
        generation = current.generation
        line_count = current.lineCount
        offset = current.byteOffset
        reset = False

        rotated = bool(current.inode) and current.inode != stat.st_ino
        if rotated or stat.st_size < offset:
            logger.info(f"Transcript rotated or truncated, starting new generation: {handle.path}")
            generation += 1
            line_count = 0
            offset = 0
            reset = True

        skip = line_count if (line_count > 0 and offset == 0) else 0

        try:
            with open(handle.path, "rb") as f:
                f.seek(offset)
                data = f.read()
        except FileNotFoundError as exc:
            raise SourceUnavailable("Transcript file disappeared", {"path": handle.key}) from exc

        lines: list[bytes] = []
        consumed = 0
        pos = 0
        while pos < len(data):
            newline = data.find(b"\n", pos)
            if newline == -1:
                fragment = data[pos:]
                if fragment.strip() and _is_complete_fragment(fragment.strip()):
                    consumed = len(data)
                    if skip > 0:
                        skip -= 1
                    else:
                        lines.append(fragment.strip())
                break
            raw = data[pos:newline].strip()
            pos = newline + 1
            consumed = pos
            if not raw:
                continue
            if skip > 0:
                skip -= 1
                continue
            lines.append(raw)

        # Skipped legacy lines are already part of line_count.
        start_sequence = line_count
        new_checkpoint = SyncCheckpoint(
            filePath=handle.key,
            sessionId=handle.session_id,
            lineCount=start_sequence + len(lines),
            byteOffset=offset + consumed,
            inode=stat.st_ino,
            fileSize=stat.st_size,
            generation=generation,
            lastSynced=current.lastSynced,
        )
        return ReadBatch(lines=lines, start_sequence=start_sequence, checkpoint=new_checkpoint, reset=reset)

    def read_all(self, handle: SourceHandle) -> list[bytes]:
        """Every complete non-empty line of a source, used by on-demand views."""
        try:
            with open(handle.path, "rb") as f:
                data = f.read()
        except FileNotFoundError as exc:
            raise SourceUnavailable("Transcript file disappeared", {"path": handle.key}) from exc
        return [line.strip() for line in data.split(b"\n") if line.strip()]
