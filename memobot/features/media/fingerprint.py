from __future__ import annotations

import hashlib
import logging
import mimetypes

logger = logging.getLogger(__name__)

FALLBACK_CONTENT_TYPE = "application/octet-stream"
SNIFF_WINDOW = 16

# (content type, ((offset, magic), ...)); every part must match. More specific
# entries come before the generic ones that share a prefix.
_SIGNATURES: tuple[tuple[str, tuple[tuple[int, bytes], ...]], ...] = (
    # Images
    ("image/jpeg", ((0, b"\xff\xd8\xff"),)),
    ("image/png", ((0, b"\x89PNG\r\n\x1a\n"),)),
    ("image/gif", ((0, b"GIF87a"),)),
    ("image/gif", ((0, b"GIF89a"),)),
    ("image/webp", ((0, b"RIFF"), (8, b"WEBP"))),
    ("image/bmp", ((0, b"BM"),)),
    ("image/tiff", ((0, b"II*\x00"),)),
    ("image/tiff", ((0, b"MM\x00*"),)),
    # Audio
    ("audio/wav", ((0, b"RIFF"), (8, b"WAVE"))),
    ("audio/mpeg", ((0, b"ID3"),)),
    ("audio/ogg", ((0, b"OggS"),)),
    ("audio/flac", ((0, b"fLaC"),)),
    ("audio/amr", ((0, b"#!AMR"),)),
    ("audio/aac", ((0, b"\xff\xf1"),)),
    ("audio/aac", ((0, b"\xff\xf9"),)),
    ("audio/mpeg", ((0, b"\xff\xfb"),)),
    ("audio/mpeg", ((0, b"\xff\xf3"),)),
    ("audio/mpeg", ((0, b"\xff\xf2"),)),
    # Video
    ("video/x-msvideo", ((0, b"RIFF"), (8, b"AVI "))),
    ("video/webm", ((0, b"\x1a\x45\xdf\xa3"),)),
    # Documents
    ("application/pdf", ((0, b"%PDF-"),)),
    ("application/msword", ((0, b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"),)),
    ("application/zip", ((0, b"PK\x03\x04"),)),
)

# ISO base media files carry "ftyp" at offset 4 followed by a major brand.
_FTYP_BRANDS: tuple[tuple[bytes, str], ...] = (
    (b"M4A ", "audio/mp4"),
    (b"M4B ", "audio/mp4"),
    (b"qt  ", "video/quicktime"),
    (b"3gp", "video/3gpp"),
    (b"3g2", "video/3gpp2"),
    (b"heic", "image/heic"),
    (b"heix", "image/heic"),
    (b"hevc", "image/heic"),
    (b"mif1", "image/heif"),
    (b"msf1", "image/heif"),
    (b"avif", "image/avif"),
)
_FTYP_DEFAULT = "video/mp4"

# Container signatures shared by several formats; a declared type from the same
# family is more precise than what the magic bytes can tell.
_CONTAINER_FAMILIES = {
    "application/msword": frozenset(
        {
            "application/msword",
            "application/vnd.ms-excel",
            "application/vnd.ms-powerpoint",
            "application/vnd.ms-outlook",
        }
    ),
    "video/mp4": frozenset({"video/mp4", "audio/mp4", "video/x-m4v"}),
    "application/zip": frozenset(
        {
            "application/zip",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        }
    ),
}

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/heic": ".heic",
    "audio/mpeg": ".mp3",
    "audio/ogg": ".ogg",
    "audio/amr": ".amr",
    "audio/mp4": ".m4a",
    "video/mp4": ".mp4",
    "video/3gpp": ".3gp",
    "video/quicktime": ".mov",
    "application/pdf": ".pdf",
    "text/plain": ".txt",
}


def fingerprint(data: bytes) -> str:
    """SHA-256 hex digest of the full payload."""
    return hashlib.sha256(data).hexdigest()


def short_digest(digest: str) -> str:
    return f"{digest[:8]}..."


def normalize_content_type(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.split(";", 1)[0].strip().lower()
    return cleaned or None


def _match_signature(head: bytes) -> str | None:
    for content_type, parts in _SIGNATURES:
        if all(head[offset : offset + len(magic)] == magic for offset, magic in parts):
            return content_type
    if head[4:8] == b"ftyp":
        brand = head[8:12]
        for prefix, content_type in _FTYP_BRANDS:
            if brand.startswith(prefix):
                return content_type
        return _FTYP_DEFAULT
    return None


def sniff_content_type(data: bytes, declared: str | None = None) -> str:
    """Content type from the leading signature bytes, else the declared type.

    Upstream transports mislabel or omit content types, so a signature match
    wins over the declared value.
    """
    fallback = normalize_content_type(declared) or FALLBACK_CONTENT_TYPE
    if len(data) < 4:
        return fallback

    sniffed = _match_signature(data[:SNIFF_WINDOW])
    if sniffed is None:
        return fallback
    if fallback in _CONTAINER_FAMILIES.get(sniffed, frozenset()):
        return fallback
    if sniffed != fallback:
        logger.debug("Sniffed content type %s overrides declared %s.", sniffed, fallback)
    return sniffed


def extension_for(content_type: str | None) -> str:
    normalized = normalize_content_type(content_type)
    if normalized is None:
        return ".bin"
    known = _EXTENSIONS.get(normalized)
    if known is not None:
        return known
    return mimetypes.guess_extension(normalized) or ".bin"
