from __future__ import annotations

import asyncio
import logging
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


class ArchiveBuildError(RuntimeError):
    pass


@dataclass(frozen=True)
class ArchiveResult:
    path: Path
    byte_count: int
    included: tuple[str, ...]


class ArchiveBuilder:
    """Streams directory trees into a single ``.tar.gz``.

    Each source directory lands at the archive root under its own name (or the given
    arcname). Missing directories are skipped: a fresh instance may have no workspace yet.
    """

    def _build_sync(self, sources: Sequence[tuple[Path, str]], dest_path: Path) -> ArchiveResult:
        included: list[str] = []
        dest_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with tarfile.open(dest_path, "w:gz") as tar:
                for source, arcname in sources:
                    if not source.is_dir():
                        logger.info("Backup source not found, skipping: %s", source)
                        continue
                    tar.add(str(source), arcname=arcname)
                    included.append(arcname)
        except (OSError, tarfile.TarError) as exc:
            raise ArchiveBuildError(f"Failed to build archive: {dest_path}") from exc

        return ArchiveResult(path=dest_path, byte_count=dest_path.stat().st_size, included=tuple(included))

    async def build(
        self,
        source_dirs: Sequence[Path],
        dest_path: Path,
        *,
        arcnames: Optional[Sequence[str]] = None,
    ) -> ArchiveResult:
        if arcnames is not None and len(arcnames) != len(source_dirs):
            raise ValueError("arcnames must match source_dirs")

        names = list(arcnames) if arcnames is not None else [p.name for p in source_dirs]
        sources = list(zip(source_dirs, names))

        # tarfile is blocking; keep the event loop free for the scheduler.
        result = await asyncio.to_thread(self._build_sync, sources, dest_path)
        logger.info("Archive created: %d total bytes (%s)", result.byte_count, ", ".join(result.included) or "empty")
        return result
