from __future__ import annotations

from .errors import MediaFetchError, MediaNotFoundError, MediaStorageError, MediaValidationError
from .ingest import MediaIngestor, ProviderCredentials
from .service import FingerprintStore
from .storage import BlobStorage
from .types import MediaBlobInfo, MediaOwner, MediaReferenceInfo, MediaStats, StoredMedia

__all__ = [
    "BlobStorage",
    "FingerprintStore",
    "MediaBlobInfo",
    "MediaFetchError",
    "MediaIngestor",
    "MediaNotFoundError",
    "MediaOwner",
    "MediaReferenceInfo",
    "MediaStats",
    "MediaStorageError",
    "MediaValidationError",
    "ProviderCredentials",
    "StoredMedia",
]
