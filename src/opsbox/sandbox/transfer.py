# src/opsbox/sandbox/transfer.py
"""
Secure file transfer between the host and a task container.

Transfers use tar archives through the Docker archive API
(``put_archive`` / ``get_archive``).

Host boundary:
    Every host path must resolve to the project root or a descendant of
    it. :func:`validate_host_path` is applied before any I/O.

Extraction:
    Archives coming out of a container are decoded as a stream, one entry
    at a time. The destination of each entry is resolved and checked
    against the destination root *before* anything is created for it, and
    the first entry that would land outside the root aborts the whole
    extraction with :class:`PathValidationError`. Entries already written
    stay; nothing after the bad entry is touched. Large archives are never
    buffered in memory.

Archive layout:
    Host to container: a file becomes one entry named by its basename; a
    directory is walked recursively and every file *and* directory becomes
    an entry keyed by its path relative to the directory, so empty
    directories survive the transfer.

    Container to host follows ``docker cp`` semantics: if the host path is
    an existing directory the copied item is placed inside it under its own
    name, otherwise the copied item is written to the host path itself.

Usage:
    >>> await copy_to_container(container, "/proj/src", "/workspace", "/proj")
    >>> names = await list_files_in_container_archive(container, "/workspace/out")
    >>> await copy_from_container(container, "/workspace/out", "/proj/out", "/proj")
"""

import asyncio
import io
import logging
import os
import shutil
import tarfile
from pathlib import Path, PurePosixPath
from typing import Any, Iterable, Iterator, List, Optional

from .cancellation import CancellationToken
from .exceptions import PathValidationError, SandboxTransferError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


# =============================================================================
# PATH VALIDATION
# =============================================================================


def _is_within(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


def validate_host_path(host_path: str | Path, project_root: str | Path) -> Path:
    """
    Resolve a host path and require it to lie within the project root.

    Relative paths are resolved against the project root.

    Returns:
        The resolved absolute path

    Raises:
        PathValidationError: If the path escapes the project root
    """
    root = Path(project_root).expanduser().resolve()
    candidate = Path(host_path).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()

    if not _is_within(resolved, root):
        raise PathValidationError(
            f"Host path is outside the project root: {host_path}",
            path=str(host_path),
            root=str(root),
        )
    return resolved


def resolve_archive_entry(name: str, destination: Path) -> Path:
    """
    Map an archive entry name to its destination path.

    Raises:
        PathValidationError: If the entry would be written outside ``destination``
    """
    if ".." in PurePosixPath(name).parts:
        raise PathValidationError(
            "Archive entry contains directory traversal sequences",
            path=name,
            root=str(destination),
        )

    target = (destination / name).resolve()
    if not _is_within(target, destination):
        raise PathValidationError(
            "Refusing to write outside destination root",
            path=name,
            root=str(destination),
        )
    return target


# =============================================================================
# ARCHIVE ENCODING
# =============================================================================


def build_archive(host_path: str | Path) -> bytes:
    """
    Pack a host file or directory into an uncompressed tar archive.

    Directory entries are emitted alongside file entries, so empty
    directories are preserved. Symlinks are stored as links.
    """
    source = Path(host_path)
    buffer = io.BytesIO()

    with tarfile.open(fileobj=buffer, mode="w") as tar:
        if source.is_dir():
            for current, dirnames, filenames in os.walk(source):
                dirnames.sort()
                current_path = Path(current)
                for dirname in dirnames:
                    full = current_path / dirname
                    tar.add(str(full), arcname=full.relative_to(source).as_posix(), recursive=False)
                for filename in sorted(filenames):
                    full = current_path / filename
                    tar.add(str(full), arcname=full.relative_to(source).as_posix(), recursive=False)
        elif source.exists():
            tar.add(str(source), arcname=source.name, recursive=False)
        else:
            raise FileNotFoundError(f"Host path does not exist: {source}")

    return buffer.getvalue()


# =============================================================================
# STREAMING DECODE
# =============================================================================


class _ChunkReader(io.RawIOBase):
    """Readable file object over an iterator of byte chunks."""

    def __init__(self, chunks: Iterable[bytes]):
        self._chunks: Iterator[bytes] = iter(chunks)
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size


def _open_stream(chunks: Iterable[bytes]) -> tarfile.TarFile:
    return tarfile.open(fileobj=io.BufferedReader(_ChunkReader(chunks), CHUNK_SIZE), mode="r|*")


def _rebase(name: str, strip_prefix: Optional[str]) -> str:
    """Normalize an entry name and drop the copied item's own top-level name."""
    parts = [p for p in PurePosixPath(name).parts if p not in ("", ".")]
    if parts and parts[0] == "/":
        parts = parts[1:]
    if strip_prefix and parts and parts[0] == strip_prefix:
        parts = parts[1:]
    return "/".join(parts)


def _validate_symlink(member: tarfile.TarInfo, relative: str, root: Path) -> Path:
    """
    Check a symlink entry and return the path the link itself is created at.

    Link targets must be relative and must not contain ``..``, so no later
    entry can redirect a link above the directory that holds it.
    """
    link_name = PurePosixPath(member.linkname)
    if not relative:
        raise PathValidationError(
            "Refusing symlink in place of the destination root",
            path=member.name,
            root=str(root),
        )
    if link_name.is_absolute() or ".." in link_name.parts:
        raise PathValidationError(
            f"Refusing symlink with absolute or parent-relative target: {member.linkname}",
            path=member.name,
            root=str(root),
        )

    entry = PurePosixPath(relative)
    parent = resolve_archive_entry(str(entry.parent), root)
    if not _is_within((parent / link_name).resolve(), root):
        raise PathValidationError(
            "Refusing symlink pointing outside destination root",
            path=member.name,
            root=str(root),
        )
    return parent / entry.name


def extract_archive_stream(
    chunks: Iterable[bytes],
    destination: str | Path,
    strip_prefix: Optional[str] = None,
) -> List[Path]:
    """
    Extract a tar stream into ``destination``, validating every entry first.

    Args:
        chunks: Iterable of raw archive bytes
        destination: Destination root; created on the first valid entry
        strip_prefix: Leading entry component that maps onto ``destination``
            itself (the copied item's own name)

    Returns:
        Paths of the files written

    Raises:
        PathValidationError: On the first entry that would escape ``destination``
    """
    root = Path(destination).expanduser().resolve()
    written: List[Path] = []

    with _open_stream(chunks) as tar:
        for member in tar:
            relative = _rebase(member.name, strip_prefix)

            if member.issym():
                link_path = _validate_symlink(member, relative, root)
                link_path.parent.mkdir(parents=True, exist_ok=True)
                if link_path.is_symlink() or link_path.exists():
                    link_path.unlink()
                os.symlink(member.linkname, link_path)
                continue

            target = resolve_archive_entry(relative, root) if relative else root
            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
            elif member.isfile():
                target.parent.mkdir(parents=True, exist_ok=True)
                source = tar.extractfile(member)
                with open(target, "wb") as out:
                    shutil.copyfileobj(source, out, CHUNK_SIZE)
                os.chmod(target, member.mode & 0o777 or 0o644)
                written.append(target)
            elif member.islnk():
                linked = resolve_archive_entry(_rebase(member.linkname, strip_prefix), root)
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(linked, target)
                written.append(target)
            else:
                logger.warning(f"Skipping unsupported archive entry type for {member.name}")

    logger.debug(f"Extracted {len(written)} file(s) into {root}")
    return written


def list_archive_files(chunks: Iterable[bytes]) -> List[str]:
    """Return the names of regular file entries without keeping any payload."""
    with _open_stream(chunks) as tar:
        return [member.name for member in tar if member.isfile()]


# =============================================================================
# CONTAINER OPERATIONS
# =============================================================================


def _get_archive(container: Any, container_path: str) -> tuple[Iterable[bytes], dict]:
    try:
        return container.get_archive(container_path, chunk_size=CHUNK_SIZE)
    except Exception as e:
        raise SandboxTransferError(
            f"Failed to read {container_path} from container: {e}",
            container_path=container_path,
            sandbox_id=getattr(container, "id", None),
        ) from e


async def container_path_exists(container: Any, container_path: str) -> bool:
    """Check whether a path exists inside the container."""
    result = await asyncio.get_event_loop().run_in_executor(
        None, lambda: container.exec_run(["test", "-e", container_path])
    )
    return result.exit_code == 0


async def copy_to_container(
    container: Any,
    host_path: str | Path,
    container_path: str,
    project_root: str | Path,
    cancel_token: Optional[CancellationToken] = None,
) -> None:
    """
    Copy a host file or directory into an existing container directory.

    Raises:
        PathValidationError: If ``host_path`` is outside the project root
        OperationCancelledError: If cancelled before the transfer
        SandboxTransferError: If the engine rejects the archive
    """
    source = validate_host_path(host_path, project_root)
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()

    loop = asyncio.get_event_loop()
    data = await loop.run_in_executor(None, build_archive, source)
    logger.info(f"Copying {source} to container path {container_path} ({len(data)} bytes)")

    try:
        accepted = await loop.run_in_executor(None, lambda: container.put_archive(container_path, data))
    except Exception as e:
        raise SandboxTransferError(
            f"Failed to copy into {container_path}: {e}",
            container_path=container_path,
            sandbox_id=getattr(container, "id", None),
        ) from e

    if accepted is False:
        raise SandboxTransferError(
            f"Container rejected archive for {container_path}",
            container_path=container_path,
            sandbox_id=getattr(container, "id", None),
        )


async def copy_from_container(
    container: Any,
    container_path: str,
    host_path: str | Path,
    project_root: str | Path,
    cancel_token: Optional[CancellationToken] = None,
) -> List[Path]:
    """
    Copy a file or directory out of the container onto the host.

    Returns:
        Paths of the host files written

    Raises:
        PathValidationError: If ``host_path`` is outside the project root or
            an archive entry would escape the destination
        OperationCancelledError: If cancelled before the transfer
        SandboxTransferError: If the container path cannot be read
    """
    destination = validate_host_path(host_path, project_root)
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()

    def _copy() -> List[Path]:
        chunks, stat = _get_archive(container, container_path)
        if destination.is_dir():
            return extract_archive_stream(chunks, destination)

        item_name = (stat or {}).get("name") or PurePosixPath(container_path.rstrip("/")).name
        strip_prefix = item_name if item_name not in ("", ".", "/") else None
        return extract_archive_stream(chunks, destination, strip_prefix=strip_prefix)

    written = await asyncio.get_event_loop().run_in_executor(None, _copy)
    logger.info(f"Copied {len(written)} file(s) from container path {container_path} to {destination}")
    return written


async def list_files_in_container_archive(container: Any, container_path: str) -> List[str]:
    """
    List the file entries of a container path without writing to the host.

    Used to preview a transfer before asking the user to confirm it.
    """
    def _list() -> List[str]:
        chunks, _stat = _get_archive(container, container_path)
        return list_archive_files(chunks)

    return await asyncio.get_event_loop().run_in_executor(None, _list)
