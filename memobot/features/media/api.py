from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from memobot.db.session import get_db_session
from memobot.features.shared.errors import DomainError, to_http_error

from .ingest import MediaIngestor
from .service import FingerprintStore
from .types import MediaIngestInput, MediaOwner, MediaReferenceInfo, MediaStats, StoredMedia

router = APIRouter(prefix="/api/media", tags=["media"])


def get_fingerprint_store(request: Request) -> FingerprintStore:
    return request.app.state.fingerprint_store


def get_media_ingestor(request: Request) -> MediaIngestor:
    return request.app.state.media_ingestor


def _raise_http_error(exc: Exception) -> None:
    if isinstance(exc, DomainError):
        raise to_http_error(exc) from exc
    raise exc


@router.get("", response_model=list[MediaReferenceInfo])
async def get_media_references(
    owner_id: UUID = Query(...),
    limit: int = Query(default=50, ge=1, le=200),
    store: FingerprintStore = Depends(get_fingerprint_store),
    session: AsyncSession = Depends(get_db_session),
) -> list[MediaReferenceInfo]:
    return await store.list_references(session, owner_id=owner_id, limit=limit)


@router.get("/stats", response_model=MediaStats)
async def get_media_stats(
    store: FingerprintStore = Depends(get_fingerprint_store),
    session: AsyncSession = Depends(get_db_session),
) -> MediaStats:
    return await store.stats(session)


@router.post("/ingest", response_model=StoredMedia, status_code=status.HTTP_201_CREATED)
async def post_media_ingest(
    payload: MediaIngestInput,
    ingestor: MediaIngestor = Depends(get_media_ingestor),
    session: AsyncSession = Depends(get_db_session),
) -> StoredMedia:
    try:
        return await ingestor.ingest(
            session,
            str(payload.source_url),
            payload.content_type,
            MediaOwner(owner_id=payload.owner_id, context_id=payload.context_id),
            original_name=payload.original_name,
        )
    except Exception as exc:
        _raise_http_error(exc)


@router.get("/{fingerprint}/content")
async def get_media_content(
    fingerprint: str,
    store: FingerprintStore = Depends(get_fingerprint_store),
    session: AsyncSession = Depends(get_db_session),
) -> FileResponse:
    try:
        blob, path = await store.open_blob(session, fingerprint)
    except Exception as exc:
        _raise_http_error(exc)
    return FileResponse(path=path, media_type=blob.content_type)
