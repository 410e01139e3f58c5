"""
Asset Copier Service.

Copies static asset directories (HTML, images, manifests) into the output
directory verbatim: same relative paths, same bytes, no filtering.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiofiles
import aiofiles.os

from ...core.exceptions import AssetIOError
from ...core.logging import get_logger
from ...models.artifacts import AssetCopyReport, CopiedFile

logger = get_logger(__name__)

CHUNK_SIZE = 1024 * 256
MAX_CONCURRENT_COPIES = 16


class AssetCopier:
    """Copies static asset trees into an output directory.

    When two source directories contain the same relative path, the one
    listed later wins.
    """

    def __init__(self, max_concurrency: int = MAX_CONCURRENT_COPIES) -> None:
        self.max_concurrency = max_concurrency

    @staticmethod
    def _plan(source_dirs: list[Path]) -> dict[Path, Path]:
        """Map each relative destination path to the source file that wins it."""
        plan: dict[Path, Path] = {}
        for source_dir in source_dirs:
            if not source_dir.is_dir():
                raise AssetIOError(
                    message="Static asset directory does not exist",
                    source=str(source_dir),
                )
            for path in sorted(source_dir.rglob("*")):
                if path.is_file():
                    plan[path.relative_to(source_dir)] = path
        return plan

    @staticmethod
    async def _copy_file(source: Path, destination: Path) -> int:
        try:
            await aiofiles.os.makedirs(destination.parent, exist_ok=True)
            size = 0
            async with aiofiles.open(source, "rb") as src, aiofiles.open(destination, "wb") as dst:
                while chunk := await src.read(CHUNK_SIZE):
                    await dst.write(chunk)
                    size += len(chunk)
            return size
        except OSError as e:
            raise AssetIOError(
                message=f"Copy failed: {e.strerror or e}",
                source=str(source),
                destination=str(destination),
                cause=e,
            ) from e

    async def copy(self, source_dirs: list[Path], output_dir: Path) -> AssetCopyReport:
        """Copy every file under ``source_dirs`` into ``output_dir``.

        Args:
            source_dirs: Asset directories in layering order.
            output_dir: Destination root. Created if missing.

        Returns:
            AssetCopyReport listing every copied file.

        Raises:
            AssetIOError: If a source directory is missing or a write fails.
        """
        plan = self._plan(source_dirs)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def copy_one(relative: Path, source: Path) -> CopiedFile:
            async with semaphore:
                size = await self._copy_file(source, output_dir / relative)
            return CopiedFile(relative_path=relative, source=source, size_bytes=size)

        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise AssetIOError(
                message=f"Cannot create output directory: {e.strerror or e}",
                destination=str(output_dir),
                cause=e,
            ) from e

        copied = await asyncio.gather(
            *(copy_one(relative, source) for relative, source in sorted(plan.items()))
        )
        report = AssetCopyReport(files=list(copied), source_dirs=list(source_dirs))
        logger.info(
            "Static assets copied",
            files=len(report.files),
            bytes=report.total_bytes,
            sources=[str(d) for d in source_dirs],
        )
        return report
