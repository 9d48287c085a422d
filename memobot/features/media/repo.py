from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from memobot.db.models import MediaBlob, MediaReference


async def find_blob_by_fingerprint(session: AsyncSession, digest: str) -> MediaBlob | None:
    return await session.get(MediaBlob, digest)


async def insert_blob_if_absent(
    session: AsyncSession,
    *,
    digest: str,
    size_bytes: int,
    content_type: str,
    storage_path: str,
) -> bool:
    """Insert the blob row unless one already exists; True when this call inserted it."""
    stmt = (
        pg_insert(MediaBlob)
        .values(
            fingerprint=digest,
            size_bytes=size_bytes,
            content_type=content_type,
            storage_path=storage_path,
        )
        .on_conflict_do_nothing(index_elements=[MediaBlob.fingerprint])
        .returning(MediaBlob.fingerprint)
    )
    inserted = (await session.execute(stmt)).scalar_one_or_none()
    return inserted is not None


async def create_reference(
    session: AsyncSession,
    *,
    digest: str,
    owner_id: UUID,
    context_id: UUID | None,
    original_name: str,
    declared_content_type: str | None,
    source_url: str | None,
) -> MediaReference:
    reference = MediaReference(
        blob_fingerprint=digest,
        owner_id=owner_id,
        context_id=context_id,
        original_name=original_name,
        declared_content_type=declared_content_type,
        source_url=source_url,
    )
    session.add(reference)
    await session.flush()
    return reference


async def list_references(
    session: AsyncSession,
    *,
    owner_id: UUID,
    limit: int,
) -> list[MediaReference]:
    stmt = (
        select(MediaReference)
        .where(MediaReference.owner_id == owner_id)
        .order_by(MediaReference.created_at.desc(), MediaReference.id.desc())
        .limit(limit)
    )
    return list((await session.execute(stmt)).scalars().all())


async def count_references(session: AsyncSession) -> int:
    return int((await session.execute(select(func.count(MediaReference.id)))).scalar_one())


async def count_blobs(session: AsyncSession) -> int:
    return int((await session.execute(select(func.count(MediaBlob.fingerprint)))).scalar_one())


async def logical_size(session: AsyncSession) -> int:
    stmt = select(func.coalesce(func.sum(MediaBlob.size_bytes), 0)).select_from(MediaReference).join(
        MediaBlob, MediaReference.blob_fingerprint == MediaBlob.fingerprint
    )
    return int((await session.execute(stmt)).scalar_one())


async def reference_counts_by_type(session: AsyncSession) -> dict[str, int]:
    stmt = (
        select(MediaBlob.content_type, func.count(MediaReference.id))
        .select_from(MediaReference)
        .join(MediaBlob, MediaReference.blob_fingerprint == MediaBlob.fingerprint)
        .group_by(MediaBlob.content_type)
    )
    rows = (await session.execute(stmt)).all()
    return {content_type: int(count) for content_type, count in rows}
