"""Artifact tracker - detects when a newer build artifact appears."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class FileInfo:
    """A matching file together with the stat taken while sampling."""

    path: Path
    stat: os.stat_result


@dataclass(frozen=True)
class ArtifactSignature:
    """Cheap identity of a build: path, modification time and size.

    ``None`` stands for "no artifact present".
    """

    path: str
    last_modified_ns: int
    size_bytes: int

    def to_dict(self) -> dict[str, str | int]:
        return {
            "path": self.path,
            "last_modified_ns": self.last_modified_ns,
            "size_bytes": self.size_bytes,
        }


def sample_latest(watch_dir: Path, glob: str) -> FileInfo | None:
    """Return the most recently modified file matching ``glob`` (non-recursive).

    Files are ordered by modification time, then by full path; the last one
    wins, so equal timestamps resolve to the alphabetically later path.
    """
    if not watch_dir.is_dir():
        return None
    candidates: list[FileInfo] = []
    for path in watch_dir.glob(glob):
        try:
            stat = path.stat()
        except FileNotFoundError:
            # Deleted between listing and stat
            continue
        if not path.is_file():
            continue
        candidates.append(FileInfo(path=path, stat=stat))
    if not candidates:
        return None
    candidates.sort(key=lambda info: (info.stat.st_mtime_ns, str(info.path.resolve())))
    return candidates[-1]


def compute_signature(info: FileInfo | None) -> ArtifactSignature | None:
    if info is None:
        return None
    return ArtifactSignature(
        path=str(info.path.resolve()),
        last_modified_ns=info.stat.st_mtime_ns,
        size_bytes=info.stat.st_size,
    )


class ArtifactTracker:
    """Holds the known artifact signature for one watched directory.

    ``detect_change`` is the only code path that updates the known signature.
    It runs the sample, compare and swap under one lock, so when the event
    path and the poll path race on the same new build exactly one of them
    observes the change.
    """

    def __init__(self, watch_dir: Path, glob: str = "*.apk") -> None:
        self.watch_dir = watch_dir
        self.glob = glob
        self._known: ArtifactSignature | None = None
        self._lock = asyncio.Lock()

    @property
    def known(self) -> ArtifactSignature | None:
        return self._known

    def sample(self) -> ArtifactSignature | None:
        return compute_signature(sample_latest(self.watch_dir, self.glob))

    async def initialize(self) -> ArtifactSignature | None:
        """Record the artifact already present at startup without reporting it."""
        async with self._lock:
            self._known = await asyncio.to_thread(self.sample)
        if self._known is None:
            logger.info("artifact_not_present", watch_dir=str(self.watch_dir), glob=self.glob)
        else:
            logger.info("artifact_known", **self._known.to_dict())
        return self._known

    async def detect_change(self, source: str = "poll") -> ArtifactSignature | None:
        """Return the new signature if the latest artifact changed, else None.

        A switch to "no artifact" updates the known signature but is not
        reported as a change.
        """
        async with self._lock:
            current = await asyncio.to_thread(self.sample)
            if current == self._known:
                return None
            previous = self._known
            self._known = current

        if current is None:
            logger.info(
                "artifact_not_present",
                watch_dir=str(self.watch_dir),
                previous=previous.path if previous else None,
            )
            return None
        logger.info(
            "artifact_changed",
            source=source,
            previous=previous.path if previous else None,
            **current.to_dict(),
        )
        return current
