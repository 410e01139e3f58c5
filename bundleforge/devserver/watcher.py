"""
Polling file watcher.

Takes periodic snapshots (size + mtime) of the watched trees, diffs them and
pushes classified change events onto an asyncio queue consumed by the
development session's control loop.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..core.config import BuildTarget
from ..core.logging import get_logger
from ..services.compiler.service import CRATE_MANIFEST_FILES, CRATE_SOURCE_DIRS

logger = get_logger(__name__)

EXCLUDE_DIRS = frozenset({"node_modules", ".git", "target", "__pycache__"})

Snapshot = dict[Path, tuple[int, int]]


class ChangeKind(str, Enum):
    """Which build input a changed file belongs to."""

    CRATE = "crate"
    SCRIPT = "script"
    ASSET = "asset"


@dataclass(frozen=True)
class ChangeEvent:
    """One file added, changed or removed."""

    path: Path
    kind: ChangeKind
    change: str  # added | changed | removed


@dataclass
class WatchPlan:
    """Watched roots per kind plus trees that must never trigger a rebuild."""

    crate: list[Path]
    scripts: list[Path]
    assets: list[Path]
    ignored: list[Path]

    @classmethod
    def for_target(cls, target: BuildTarget, cache_dir: Path | None = None) -> WatchPlan:
        crate = target.crate_path
        crate_roots = [crate / name for name in CRATE_MANIFEST_FILES]
        crate_roots += [crate / name for name in CRATE_SOURCE_DIRS]
        output = target.output_path
        ignored = [output, target.staging_path]
        if cache_dir is not None:
            ignored.append(cache_dir)
        return cls(
            crate=crate_roots,
            scripts=[target.entry_path.parent],
            assets=target.asset_paths,
            ignored=ignored,
        )

    @property
    def roots(self) -> list[Path]:
        return [*self.crate, *self.scripts, *self.assets]


def _is_under(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


def iter_files(roots: list[Path], ignored: list[Path]) -> list[Path]:
    out: list[Path] = []
    for root in roots:
        if root.is_file():
            out.append(root)
            continue
        if not root.is_dir():
            continue
        for dirpath, dirnames, filenames in os.walk(root):
            here = Path(dirpath)
            dirnames[:] = [
                d
                for d in dirnames
                if d not in EXCLUDE_DIRS
                and not d.startswith(".")
                and not any(_is_under(here / d, ig) for ig in ignored)
            ]
            for filename in filenames:
                out.append(here / filename)
    return out


def snapshot(roots: list[Path], ignored: list[Path]) -> Snapshot:
    snap: Snapshot = {}
    for path in iter_files(roots, ignored):
        try:
            stat = path.stat()
        except FileNotFoundError:
            continue
        snap[path] = (stat.st_size, stat.st_mtime_ns)
    return snap


def diff_snapshots(before: Snapshot, after: Snapshot) -> list[tuple[Path, str]]:
    changes: list[tuple[Path, str]] = []
    for path, value in after.items():
        if path not in before:
            changes.append((path, "added"))
        elif before[path] != value:
            changes.append((path, "changed"))
    for path in before:
        if path not in after:
            changes.append((path, "removed"))
    return sorted(changes)


class PollingWatcher:
    """Watches a WatchPlan and feeds ChangeEvents into ``queue``."""

    def __init__(
        self,
        plan: WatchPlan,
        queue: asyncio.Queue[ChangeEvent],
        interval: float = 0.5,
    ) -> None:
        self.plan = plan
        self.queue = queue
        self.interval = interval
        self._snapshot: Snapshot | None = None

    def classify(self, path: Path) -> ChangeKind | None:
        if any(_is_under(path, ig) for ig in self.plan.ignored):
            return None
        if any(_is_under(path, root) for root in self.plan.crate):
            return ChangeKind.CRATE
        if any(_is_under(path, root) for root in self.plan.assets):
            return ChangeKind.ASSET
        if any(_is_under(path, root) for root in self.plan.scripts):
            return ChangeKind.SCRIPT
        return None

    def _take_snapshot(self) -> Snapshot:
        return snapshot(self.plan.roots, self.plan.ignored)

    async def prime(self) -> None:
        """Record the baseline snapshot without emitting events."""
        self._snapshot = await asyncio.to_thread(self._take_snapshot)

    async def poll_once(self) -> list[ChangeEvent]:
        """Snapshot, diff against the previous snapshot and enqueue the changes."""
        current = await asyncio.to_thread(self._take_snapshot)
        if self._snapshot is None:
            self._snapshot = current
            return []
        changes = diff_snapshots(self._snapshot, current)
        self._snapshot = current

        events = []
        for path, change in changes:
            kind = self.classify(path)
            if kind is None:
                continue
            event = ChangeEvent(path=path, kind=kind, change=change)
            events.append(event)
            self.queue.put_nowait(event)
        if events:
            logger.info(
                "Source changes detected",
                count=len(events),
                kinds=sorted({e.kind.value for e in events}),
            )
        return events

    async def run(self, stop: asyncio.Event) -> None:
        if self._snapshot is None:
            await self.prime()
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                await self.poll_once()
