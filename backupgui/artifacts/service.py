from __future__ import annotations

import io
import logging
import os
import re
import shutil
import stat
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from backupgui.artifacts.types import ArtifactDownload, ArtifactKind, BackupEntry
from backupgui.core.config import Settings
from backupgui.core.path_safety import PathTraversalError, is_under_root, resolve_under_root

logger = logging.getLogger(__name__)

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")
_DASHED_TIMESTAMP = re.compile(r"(\d{4}-\d{2}-\d{2})[_-](\d{2}-\d{2}-\d{2})")
_COMPACT_TIMESTAMP = re.compile(r"(?<!\d)(\d{8})(?:-(\d{4}))?(?!\d)")


class ArtifactNotFoundError(RuntimeError):
    pass


class ArtifactStreamError(RuntimeError):
    pass


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 B"
    value = float(size)
    index = 0
    while value >= 1024 and index < len(_SIZE_UNITS) - 1:
        value /= 1024
        index += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[index]}"


def parse_name_timestamp(name: str) -> datetime | None:
    """Extract ``YYYY-MM-DD_HH-MM-SS`` or ``YYYYMMDD[-HHMM]`` from an artifact name, read as UTC."""
    match = _DASHED_TIMESTAMP.search(name)
    if match:
        try:
            parsed = datetime.strptime(f"{match.group(1)}_{match.group(2)}", "%Y-%m-%d_%H-%M-%S")
            return parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            pass

    match = _COMPACT_TIMESTAMP.search(name)
    if match:
        raw = match.group(1) + (match.group(2) or "0000")
        try:
            return datetime.strptime(raw, "%Y%m%d%H%M").replace(tzinfo=timezone.utc)
        except ValueError:
            return None
    return None


class _ChunkSink(io.RawIOBase):
    """Write-only, non-seekable target that hands written bytes back on demand."""

    def __init__(self) -> None:
        super().__init__()
        self._chunks: list[bytes] = []

    def writable(self) -> bool:
        return True

    def write(self, data: Any) -> int:
        chunk = bytes(data)
        self._chunks.append(chunk)
        return len(chunk)

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


class ArtifactStore:
    def __init__(self, settings: Settings):
        self._settings = settings
        self._root = settings.backups_root.resolve(strict=False)
        self._read_chunk_bytes = int(settings.archive_read_chunk_bytes)
        self._compress_level = int(settings.archive_compress_level)

    @property
    def root(self) -> Path:
        return self._root

    def _resolve_existing(self, name: str) -> Path:
        try:
            target = resolve_under_root(self._root, name)
        except PathTraversalError:
            logger.warning("Rejected artifact path outside backups root: %r", name)
            raise
        if not os.path.lexists(target):
            raise ArtifactNotFoundError(f"Backup not found: {name}")
        return target

    def _is_contained(self, path: Path) -> bool:
        if not path.is_symlink():
            return True
        return is_under_root(self._root, path.resolve(strict=False))

    def _regular_file_size(self, path: Path) -> int | None:
        if not self._is_contained(path):
            return None
        try:
            st = path.stat()
        except OSError:
            return None
        if not stat.S_ISREG(st.st_mode):
            return None
        return st.st_size

    def directory_size(self, directory: Path) -> int:
        total = 0
        for dirpath, _dirnames, filenames in os.walk(directory):
            current = Path(dirpath)
            for filename in filenames:
                size = self._regular_file_size(current / filename)
                if size is not None:
                    total += size
        return total

    def _describe(self, path: Path) -> BackupEntry | None:
        if not self._is_contained(path):
            return None
        st = path.stat()
        if stat.S_ISDIR(st.st_mode):
            kind = ArtifactKind.DIRECTORY
            size = self.directory_size(path)
        else:
            kind = ArtifactKind.FILE
            size = st.st_size

        date = parse_name_timestamp(path.name) or datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)
        return BackupEntry(
            name=path.name,
            kind=kind,
            size=size,
            size_formatted=format_bytes(size),
            date=date,
        )

    def list_entries(self) -> list[BackupEntry]:
        if not self._root.is_dir():
            logger.warning("Backups root does not exist: %s", self._root.as_posix())
            return []

        entries: list[BackupEntry] = []
        with os.scandir(self._root) as iterator:
            for item in iterator:
                try:
                    entry = self._describe(Path(item.path))
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    logger.warning("Skipping unreadable backup %s: %s", item.name, exc)
                    continue
                if entry is not None:
                    entries.append(entry)
        entries.sort(key=lambda entry: (entry.date, entry.name), reverse=True)
        return entries

    def open_download(self, name: str) -> ArtifactDownload:
        target = self._resolve_existing(name)
        if target.is_dir():
            return ArtifactDownload(
                path=target,
                kind=ArtifactKind.DIRECTORY,
                filename=f"{target.name}.zip",
                media_type="application/zip",
            )
        if not target.is_file():
            raise ArtifactNotFoundError(f"Backup is not a regular file or directory: {name}")
        return ArtifactDownload(
            path=target,
            kind=ArtifactKind.FILE,
            filename=target.name,
            media_type="application/octet-stream",
        )

    def iter_content(self, download: ArtifactDownload) -> Iterator[bytes]:
        if download.kind == ArtifactKind.DIRECTORY:
            return self.iter_archive(download.path)
        return self.iter_file(download.path)

    def fetch(self, name: str) -> tuple[ArtifactDownload, Iterator[bytes]]:
        download = self.open_download(name)
        return download, self.iter_content(download)

    def iter_file(self, path: Path) -> Iterator[bytes]:
        try:
            with path.open("rb") as source:
                while True:
                    chunk = source.read(self._read_chunk_bytes)
                    if not chunk:
                        return
                    yield chunk
        except OSError as exc:
            logger.error("File stream failed for %s: %s", path.as_posix(), exc)
            raise ArtifactStreamError(f"File stream failed: {exc}") from exc

    def _archive_members(self, directory: Path) -> Iterator[tuple[Path, str]]:
        for dirpath, dirnames, filenames in os.walk(directory):
            current = Path(dirpath)
            dirnames[:] = sorted(name for name in dirnames if self._is_contained(current / name))
            rel_dir = current.relative_to(directory)
            if current != directory:
                yield current, rel_dir.as_posix() + "/"
            for filename in sorted(filenames):
                path = current / filename
                if self._regular_file_size(path) is not None:
                    yield path, (rel_dir / filename).as_posix()

    def _member_info(self, path: Path, arcname: str) -> zipfile.ZipInfo:
        info = zipfile.ZipInfo.from_file(path, arcname, strict_timestamps=False)
        info.compress_type = zipfile.ZIP_DEFLATED
        if hasattr(info, "compress_level"):
            info.compress_level = self._compress_level
        else:
            # Python < 3.13 only exposes the level under its private name.
            info._compresslevel = self._compress_level
        return info

    def iter_archive(self, directory: Path) -> Iterator[bytes]:
        """Yield a zip of ``directory`` as it is built.

        Members are written in sorted walk order and the sink is drained after
        every read chunk, so buffered output never exceeds roughly one
        compressed chunk.
        """
        sink = _ChunkSink()
        try:
            with zipfile.ZipFile(
                sink,
                mode="w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=self._compress_level,
                strict_timestamps=False,
            ) as archive:
                for path, arcname in self._archive_members(directory):
                    if arcname.endswith("/"):
                        archive.write(path, arcname)
                    else:
                        with path.open("rb") as source, archive.open(self._member_info(path, arcname), mode="w") as target:
                            while True:
                                chunk = source.read(self._read_chunk_bytes)
                                if not chunk:
                                    break
                                target.write(chunk)
                                data = sink.drain()
                                if data:
                                    yield data
                    data = sink.drain()
                    if data:
                        yield data
            tail = sink.drain()
            if tail:
                yield tail
        except OSError as exc:
            logger.error("Archive stream failed for %s: %s", directory.as_posix(), exc)
            raise ArtifactStreamError(f"Archive stream failed: {exc}") from exc

    def delete(self, name: str) -> None:
        target = self._resolve_existing(name)
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            target.unlink()
        logger.info("Deleted backup %s", name)
