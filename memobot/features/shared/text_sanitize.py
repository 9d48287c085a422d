from __future__ import annotations

import logging
import re
from dataclasses import dataclass

_NUL_RE = re.compile("\x00")
_SURROGATE_RE = re.compile("[\ud800-\udfff]")
_CR_RE = re.compile("\r\n?")
_FILENAME_UNSAFE_RE = re.compile(r"[^\w.\- ]+")


@dataclass(frozen=True)
class SanitizationStats:
    nul_removed: int = 0
    surrogates_replaced: int = 0
    newlines_normalized: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.nul_removed or self.surrogates_replaced or self.newlines_normalized)


def sanitize_text(value: str, *, strip: bool) -> tuple[str, SanitizationStats]:
    """Make text safe for Postgres TEXT columns and the messaging API.

    NUL bytes are dropped, lone surrogates become U+FFFD and CR/CRLF become LF.
    """
    cleaned, nul_removed = _NUL_RE.subn("", value)
    cleaned, surrogates_replaced = _SURROGATE_RE.subn("\ufffd", cleaned)
    cleaned, newlines_normalized = _CR_RE.subn("\n", cleaned)
    if strip:
        cleaned = cleaned.strip()
    return cleaned, SanitizationStats(
        nul_removed=nul_removed,
        surrogates_replaced=surrogates_replaced,
        newlines_normalized=newlines_normalized,
    )


def sanitize_filename(filename: str | None, *, fallback: str = "upload") -> str:
    cleaned, _ = sanitize_text(filename or "", strip=True)
    cleaned = _FILENAME_UNSAFE_RE.sub("_", cleaned).strip(" .")
    return cleaned[:255] or fallback


def log_sanitization_stats(
    logger: logging.Logger,
    *,
    location: str,
    stats: SanitizationStats,
) -> None:
    if not stats.changed:
        return
    logger.debug(
        "Sanitized text write for %s (nul_removed=%d, surrogates_replaced=%d, newlines_normalized=%d).",
        location,
        stats.nul_removed,
        stats.surrogates_replaced,
        stats.newlines_normalized,
    )


__all__ = [
    "SanitizationStats",
    "log_sanitization_stats",
    "sanitize_filename",
    "sanitize_text",
]
