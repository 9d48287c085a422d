from __future__ import annotations

import logging
import re
from pathlib import Path
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from memobot.db.models import MediaBlob, MediaReference
from memobot.features.shared.text_sanitize import sanitize_filename

from . import repo
from .errors import MediaNotFoundError, MediaStorageError, MediaValidationError
from .fingerprint import extension_for, fingerprint, normalize_content_type, short_digest, sniff_content_type
from .storage import BlobStorage
from .types import MediaBlobInfo, MediaOwner, MediaReferenceInfo, MediaStats, StoredMedia

logger = logging.getLogger(__name__)

_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")
_MAX_LIST_LIMIT = 200


def _to_blob_info(row: MediaBlob) -> MediaBlobInfo:
    return MediaBlobInfo(
        fingerprint=row.fingerprint,
        size_bytes=row.size_bytes,
        content_type=row.content_type,
        storage_path=row.storage_path,
        created_at=row.created_at,
    )


def _to_reference_info(row: MediaReference, blob: MediaBlob) -> MediaReferenceInfo:
    return MediaReferenceInfo(
        id=str(row.id),
        owner_id=str(row.owner_id),
        context_id=str(row.context_id) if row.context_id else None,
        original_name=row.original_name,
        declared_content_type=row.declared_content_type,
        source_url=row.source_url,
        created_at=row.created_at,
        blob=_to_blob_info(blob),
    )


def _clean_digest(digest: str) -> str | None:
    cleaned = (digest or "").strip().lower()
    return cleaned if _DIGEST_RE.match(cleaned) else None


class FingerprintStore:
    """Deduplicating media store keyed by SHA-256 of the payload."""

    def __init__(self, storage: BlobStorage):
        self.storage = storage

    @staticmethod
    def fingerprint(data: bytes) -> str:
        return fingerprint(data)

    async def find_by_fingerprint(self, session: AsyncSession, digest: str) -> MediaBlobInfo | None:
        cleaned = _clean_digest(digest)
        if cleaned is None:
            return None
        row = await repo.find_blob_by_fingerprint(session, cleaned)
        return _to_blob_info(row) if row is not None else None

    async def store(
        self,
        session: AsyncSession,
        data: bytes,
        *,
        declared_content_type: str | None,
        original_name: str | None,
        owner: MediaOwner,
        source_url: str | None = None,
    ) -> StoredMedia:
        if not data:
            raise MediaValidationError("Media payload is empty.")

        digest = fingerprint(data)
        declared = normalize_content_type(declared_content_type)
        name = sanitize_filename(original_name, fallback=f"attachment{extension_for(declared)}")

        try:
            blob = await repo.find_blob_by_fingerprint(session, digest)
            deduplicated = blob is not None
            if blob is None:
                content_type = sniff_content_type(data, declared)
                storage_path = self.storage.write(digest, data)
                inserted = await repo.insert_blob_if_absent(
                    session,
                    digest=digest,
                    size_bytes=len(data),
                    content_type=content_type,
                    storage_path=storage_path,
                )
                if not inserted:
                    logger.info("Blob %s was inserted concurrently; reusing it.", short_digest(digest))
                deduplicated = not inserted
                blob = await repo.find_blob_by_fingerprint(session, digest)
                if blob is None:
                    raise MediaStorageError(f"Blob '{short_digest(digest)}' vanished after insert.")

            reference = await repo.create_reference(
                session,
                digest=digest,
                owner_id=owner.owner_id,
                context_id=owner.context_id,
                original_name=name,
                declared_content_type=declared,
                source_url=source_url,
            )
            await session.commit()
            await session.refresh(reference)
        except MediaStorageError:
            await session.rollback()
            raise
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("Failed to persist media %s: %s", short_digest(digest), exc)
            raise MediaStorageError(f"Failed to persist media: {exc}") from exc

        if deduplicated:
            logger.info(
                "Created media reference %s for existing blob %s (deduplication).",
                reference.id,
                short_digest(digest),
            )
        else:
            logger.info(
                "Stored new media blob %s (%d bytes, %s).",
                short_digest(digest),
                blob.size_bytes,
                blob.content_type,
            )

        info = _to_reference_info(reference, blob)
        return StoredMedia(**info.model_dump(), deduplicated=deduplicated)

    async def open_blob(self, session: AsyncSession, digest: str) -> tuple[MediaBlobInfo, Path]:
        cleaned = _clean_digest(digest)
        if cleaned is None:
            raise MediaValidationError("Invalid fingerprint.")
        row = await repo.find_blob_by_fingerprint(session, cleaned)
        if row is None:
            raise MediaNotFoundError(f"Media '{cleaned}' was not found.")
        path = self.storage.resolve(row.storage_path)
        if not path.is_file():
            raise MediaNotFoundError(f"Media payload for '{cleaned}' is missing on disk.")
        return _to_blob_info(row), path

    async def list_references(
        self,
        session: AsyncSession,
        *,
        owner_id: UUID,
        limit: int = 50,
    ) -> list[MediaReferenceInfo]:
        safe_limit = max(1, min(limit, _MAX_LIST_LIMIT))
        rows = await repo.list_references(session, owner_id=owner_id, limit=safe_limit)
        return [_to_reference_info(row, row.blob) for row in rows]

    async def stats(self, session: AsyncSession) -> MediaStats:
        total_references = await repo.count_references(session)
        unique_blobs = await repo.count_blobs(session)
        total_logical_size = await repo.logical_size(session)
        by_type = await repo.reference_counts_by_type(session)
        dedup_rate = 0.0
        if total_references > 0:
            dedup_rate = (total_references - unique_blobs) / total_references
        return MediaStats(
            total_references=total_references,
            unique_blobs=unique_blobs,
            total_logical_size=total_logical_size,
            by_type=by_type,
            dedup_rate=dedup_rate,
        )

    def health_check(self) -> dict[str, object]:
        return self.storage.health_check()
