from __future__ import annotations

import logging
import os
from pathlib import Path
from uuid import uuid4

from .errors import MediaStorageError
from .fingerprint import short_digest

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parents[3]


def _resolve_root(root: str | Path) -> Path:
    path = Path(root)
    if not path.is_absolute():
        path = _PROJECT_ROOT / path
    return path


class BlobStorage:
    """Content-addressed files on local disk.

    A blob lives at ``<root>/<aa>/<digest>`` where ``aa`` is the first two hex
    characters of its digest, so the location depends on the bytes alone.
    """

    def __init__(self, root: str | Path):
        self.root = _resolve_root(root)

    def path_for(self, digest: str) -> Path:
        return self.root / digest[:2] / digest

    def relative_path_for(self, digest: str) -> str:
        return f"{digest[:2]}/{digest}"

    def resolve(self, storage_path: str) -> Path:
        path = Path(storage_path)
        if path.is_absolute():
            return path
        return self.root / path

    def exists(self, digest: str, *, size_bytes: int | None = None) -> bool:
        path = self.path_for(digest)
        if not path.is_file():
            return False
        return size_bytes is None or path.stat().st_size == size_bytes

    def write(self, digest: str, data: bytes) -> str:
        """Write ``data`` under its digest and return the relative storage path.

        Concurrent writers of the same digest race harmlessly: each writes a
        private temp file and renames it over the identical final path.
        """
        target = self.path_for(digest)
        if self.exists(digest, size_bytes=len(data)):
            logger.debug("Blob %s already on disk; skipping write.", short_digest(digest))
            return self.relative_path_for(digest)

        tmp_path = target.with_name(f".{digest}.{uuid4().hex}.tmp")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, target)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            logger.error("Failed to write blob %s: %s", short_digest(digest), exc)
            raise MediaStorageError(f"Failed to store media payload: {exc}") from exc

        logger.info("Stored blob %s (%d bytes).", short_digest(digest), len(data))
        return self.relative_path_for(digest)

    def health_check(self) -> dict[str, object]:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            return {"status": "unhealthy", "message": f"Media storage error: {exc}"}
        writable = os.access(self.root, os.W_OK)
        return {
            "status": "healthy" if writable else "unhealthy",
            "message": f"Media storage at {self.root} is {'writable' if writable else 'read-only'}.",
        }
