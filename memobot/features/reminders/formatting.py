from __future__ import annotations

_MEMORY_PREVIEW_LIMIT = 100
_TYPE_MARKERS = {
    "TEXT": "\U0001f4dd",
    "IMAGE": "\U0001f4f8",
    "AUDIO": "\U0001f3a4",
    "VIDEO": "\U0001f4f9",
    "MIXED": "\U0001f4ce",
}


def memory_preview(content: str, *, limit: int = _MEMORY_PREVIEW_LIMIT) -> str:
    if len(content) <= limit:
        return content
    return f"{content[:limit]}..."


def format_reminder_message(message: str, *, memory_content: str, memory_type: str) -> str:
    """WhatsApp body for a due reminder, using WhatsApp's *bold* and _italic_ markup."""
    kind = (memory_type or "TEXT").upper()
    marker = _TYPE_MARKERS.get(kind, _TYPE_MARKERS["TEXT"])
    lines = [
        "\U0001f514 *Reminder*",
        "",
        f"\U0001f4dd {message}",
        "",
        "\U0001f4ad *Related Memory:*",
        f'"{memory_preview(memory_content)}"',
        "",
        f"{marker} Type: {kind}",
        "",
        "_Scheduled reminder delivered_",
    ]
    return "\n".join(lines)
