from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from urllib.parse import urljoin, urlsplit
from xml.etree import ElementTree as ET

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import MediaFetchError
from .fingerprint import extension_for
from .service import FingerprintStore
from .types import MediaOwner, StoredMedia

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_BOM = b"\xef\xbb\xbf"
_METADATA_MARKERS = (b"{", b"[", b"<")
_LOCATION_KEYS = ("url", "uri", "location", "media_url", "redirect_url", "link")


@dataclass(frozen=True)
class ProviderCredentials:
    """Basic-auth credentials attached to requests for one provider host."""

    host_suffix: str
    username: str
    password: str

    def applies_to(self, url: str) -> bool:
        host = (urlsplit(url).hostname or "").lower()
        suffix = self.host_suffix.lower()
        return host == suffix or host.endswith(f".{suffix}")


def _clip_url(url: str) -> str:
    return url if len(url) <= 60 else f"{url[:57]}..."


def is_metadata_document(payload: bytes) -> bool:
    head = payload[:64]
    if head.startswith(_BOM):
        head = head[len(_BOM) :]
    return head.lstrip().startswith(_METADATA_MARKERS)


def _location_from_json(document: object) -> str | None:
    if isinstance(document, list):
        document = document[0] if len(document) == 1 else None
    if not isinstance(document, dict):
        return None
    lowered = {str(key).lower(): value for key, value in document.items()}
    for key in _LOCATION_KEYS:
        value = lowered.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _location_from_xml(root: ET.Element) -> str | None:
    for element in root.iter():
        tag = element.tag.rsplit("}", 1)[-1].lower()
        if tag in _LOCATION_KEYS and element.text and element.text.strip():
            return element.text.strip()
    return None


def extract_indirection_target(payload: bytes, base_url: str) -> str | None:
    """Real binary location named by a metadata document, or None for an error document."""
    text = payload.decode("utf-8", errors="replace").lstrip("\ufeff").strip()
    location: str | None = None
    if text.startswith(("{", "[")):
        try:
            location = _location_from_json(json.loads(text))
        except json.JSONDecodeError:
            location = None
    elif text.startswith("<"):
        try:
            location = _location_from_xml(ET.fromstring(text))
        except ET.ParseError:
            location = None
    if location is None:
        return None

    try:
        resolved = urljoin(base_url, location)
        scheme = urlsplit(resolved).scheme
    except ValueError:
        return None
    if scheme not in {"http", "https"}:
        return None
    return resolved


class MediaIngestor:
    """Downloads a remote attachment and stores it through the fingerprint store."""

    def __init__(
        self,
        store: FingerprintStore,
        client: httpx.AsyncClient,
        *,
        max_size_bytes: int,
        credentials: ProviderCredentials | None = None,
    ):
        self.store = store
        self.client = client
        self.max_size_bytes = max_size_bytes
        self.credentials = credentials

    async def _fetch(self, url: str) -> bytes:
        try:
            auth = None
            if self.credentials is not None and self.credentials.applies_to(url):
                auth = httpx.BasicAuth(self.credentials.username, self.credentials.password)
            async with self.client.stream("GET", url, auth=auth) as response:
                if response.status_code >= 400:
                    raise MediaFetchError(
                        f"Media download failed with HTTP {response.status_code} for '{_clip_url(url)}'."
                    )
                total = 0
                chunks: list[bytes] = []
                async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                    total += len(chunk)
                    if total > self.max_size_bytes:
                        raise MediaFetchError(
                            f"Media at '{_clip_url(url)}' exceeds max size of {self.max_size_bytes} bytes."
                        )
                    chunks.append(chunk)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            raise MediaFetchError(f"Media download failed for '{_clip_url(url)}': {exc}") from exc
        return b"".join(chunks)

    async def download(self, source_url: str) -> bytes:
        """Fetch the final binary payload, following at most one metadata hop."""
        payload = await self._fetch(source_url)
        if payload and is_metadata_document(payload):
            target = extract_indirection_target(payload, source_url)
            if target is None:
                raise MediaFetchError(
                    f"Provider returned an error document instead of media for '{_clip_url(source_url)}'."
                )
            logger.debug("Following media indirection %s -> %s.", _clip_url(source_url), _clip_url(target))
            payload = await self._fetch(target)
            if payload and is_metadata_document(payload):
                raise MediaFetchError(
                    f"Media indirection for '{_clip_url(source_url)}' nests more than one level."
                )

        if not payload:
            raise MediaFetchError(f"Downloaded media from '{_clip_url(source_url)}' is empty.")
        return payload

    async def ingest(
        self,
        session: AsyncSession,
        source_url: str,
        declared_content_type: str | None,
        owner: MediaOwner,
        *,
        original_name: str | None = None,
    ) -> StoredMedia:
        logger.info("Starting media ingest from %s.", _clip_url(source_url))
        try:
            payload = await self.download(source_url)
        except MediaFetchError as exc:
            logger.warning("Media ingest from %s failed: %s", _clip_url(source_url), exc)
            raise

        name = original_name or f"attachment{extension_for(declared_content_type)}"
        return await self.store.store(
            session,
            payload,
            declared_content_type=declared_content_type,
            original_name=name,
            owner=owner,
            source_url=source_url,
        )
