"""Content-addressed snapshot store.

Blobs live under ``snapshots/<hash[:2]>/<hash[2:]>`` and are written once.
Writes go to a temporary file in the shard directory and are published with
``os.replace``, so a reader sees either the whole blob or nothing.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterator, Optional, Set, Tuple

from easypaper.errors import BlobNotFoundError, HashMismatchError, StoreIOError

logger = logging.getLogger(__name__)

_HEX = frozenset("0123456789abcdef")


def digest_bytes(data: bytes) -> str:
    """Return the SHA-256 hex digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def atomic_write(
    path: Path, data: bytes, *, durable: bool = True, mode: Optional[int] = None
) -> None:
    """Write *data* to *path* via temp file + rename. Raises OSError.

    *mode* sets the permission bits of the new file; the temp file's 0600
    is kept otherwise.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            if durable:
                fh.flush()
                os.fsync(fh.fileno())
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def _is_digest(value: str) -> bool:
    return len(value) == 64 and all(ch in _HEX for ch in value)


class ContentStore:
    """Immutable, hash-addressed blob storage rooted at one directory."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, digest: str) -> Path:
        if not _is_digest(digest):
            raise BlobNotFoundError(digest)
        return self._root / digest[:2] / digest[2:]

    # ---- contract ----

    def put(self, data: bytes) -> str:
        """Store *data* if absent and return its digest."""
        digest = digest_bytes(data)
        path = self._path_for(digest)
        if path.is_file():
            return digest
        try:
            atomic_write(path, data)
        except OSError as exc:
            raise StoreIOError(f"Failed to write blob {digest[:12]}: {exc}") from exc
        logger.debug("stored blob %s (%d bytes)", digest[:12], len(data))
        return digest

    def get(self, digest: str, *, verify: bool = True) -> bytes:
        """Return blob bytes. Raises BlobNotFoundError / HashMismatchError."""
        path = self._path_for(digest)
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            raise BlobNotFoundError(digest) from exc
        except OSError as exc:
            raise StoreIOError(f"Failed to read blob {digest[:12]}: {exc}") from exc
        if verify:
            actual = digest_bytes(data)
            if actual != digest:
                raise HashMismatchError(digest, actual)
        return data

    def exists(self, digest: str) -> bool:
        try:
            return self._path_for(digest).is_file()
        except BlobNotFoundError:
            return False

    # ---- maintenance ----

    def iter_blobs(self) -> Iterator[Tuple[str, int]]:
        """Yield ``(digest, size)`` for every published blob."""
        if not self._root.is_dir():
            return
        for shard in sorted(self._root.iterdir()):
            if not shard.is_dir() or len(shard.name) != 2:
                continue
            for entry in sorted(shard.iterdir()):
                if entry.name.startswith(".tmp-") or not entry.is_file():
                    continue
                digest = shard.name + entry.name
                if _is_digest(digest):
                    yield digest, entry.stat().st_size

    def delete(self, digest: str) -> bool:
        """Remove one blob. Only garbage collection calls this."""
        path = self._path_for(digest)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StoreIOError(f"Failed to delete blob {digest[:12]}: {exc}") from exc
        try:
            path.parent.rmdir()
        except OSError:
            pass  # shard still holds other blobs
        return True

    def delete_unreferenced(
        self, referenced: Set[str], *, dry_run: bool = False
    ) -> Tuple[Tuple[str, ...], int, int]:
        """Delete blobs not in *referenced*. Returns (deleted, bytes_freed, examined)."""
        deleted = []
        freed = 0
        examined = 0
        for digest, size in list(self.iter_blobs()):
            examined += 1
            if digest in referenced:
                continue
            if dry_run or self.delete(digest):
                deleted.append(digest)
                freed += size
        return tuple(deleted), freed, examined

    def size_on_disk(self) -> int:
        return sum(size for _, size in self.iter_blobs())
