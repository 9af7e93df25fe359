"""
Conversation Export
===================

Renders a chat thread as a downloadable Markdown, JSON or plain-text file.

Messages are dicts with ``role``, ``content`` and ``timestamp`` (epoch ms);
assistant messages may also carry ``model``, ``fastMode``, ``elapsedMs`` and
``tokensUsed`` ({"input": n, "output": m}).

Usage:
    from hub.services.exporter import export_thread

    content, filename, mime_type = export_thread(thread, messages, "markdown")
"""

import json
import re
from datetime import datetime, timezone

from hub.core.schemas import ExportFormat

TEXT_SEPARATOR_WIDTH = 60
FILENAME_MAX_CHARS = 50

_EXTENSIONS = {
    ExportFormat.MARKDOWN: ("md", "text/markdown"),
    ExportFormat.JSON: ("json", "application/json"),
    ExportFormat.TEXT: ("txt", "text/plain"),
}


def _format_ts(value: int | datetime | None) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        moment = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    else:
        moment = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%d %H:%M:%S UTC")


def sanitize_filename(title: str) -> str:
    """Lower-case, underscore-separated, at most 50 characters."""
    name = re.sub(r"[^a-z0-9]", "_", title, flags=re.IGNORECASE)
    name = re.sub(r"_+", "_", name)
    return name.lower()[:FILENAME_MAX_CHARS]


def _assistant_metadata(message: dict) -> str | None:
    if not (message.get("model") or message.get("elapsedMs")):
        return None
    line = ""
    if message.get("model"):
        line += f"Model: {message['model']}"
    if message.get("fastMode"):
        line += " (Fast Mode)"
    if message.get("elapsedMs"):
        line += f" • {message['elapsedMs'] / 1000:.1f}s"
    tokens = message.get("tokensUsed")
    if tokens:
        line += f" • {tokens.get('input', 0) + tokens.get('output', 0)} tokens"
    return f"*{line}*"


def export_markdown(thread: dict, messages: list[dict], now: datetime | None = None) -> str:
    parts = [
        f"# {thread['title']}\n\n",
        f"*Exported on {_format_ts(now or datetime.now(timezone.utc))}*\n\n",
        "---\n\n",
    ]
    for index, message in enumerate(messages):
        role = "👤 You" if message["role"] == "user" else "🤖 Assistant"
        parts.append(f"## {role} - {_format_ts(message.get('timestamp'))}\n\n")
        parts.append(f"{message['content']}\n\n")

        if message["role"] == "assistant":
            metadata = _assistant_metadata(message)
            if metadata:
                parts.append(f"{metadata}\n\n")

        if index < len(messages) - 1:
            parts.append("---\n\n")
    return "".join(parts)


def export_json(thread: dict, messages: list[dict], now: datetime | None = None) -> str:
    data = {
        "thread": {
            "id": thread.get("id"),
            "title": thread["title"],
            "createdAt": thread.get("createdAt"),
            "updatedAt": thread.get("updatedAt"),
            "pinned": thread.get("pinned", False),
        },
        "messages": [
            {
                "id": m.get("id"),
                "role": m["role"],
                "content": m["content"],
                "timestamp": m.get("timestamp"),
                "model": m.get("model"),
                "fastMode": m.get("fastMode"),
                "tokensUsed": m.get("tokensUsed"),
                "elapsedMs": m.get("elapsedMs"),
                "sources": m.get("sources"),
            }
            for m in messages
        ],
        "exportedAt": (now or datetime.now(timezone.utc)).isoformat(),
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def export_text(thread: dict, messages: list[dict], now: datetime | None = None) -> str:
    title = thread["title"]
    parts = [
        f"{title}\n",
        f"{'=' * len(title)}\n\n",
        f"Exported on {_format_ts(now or datetime.now(timezone.utc))}\n\n",
    ]
    for index, message in enumerate(messages):
        role = "You" if message["role"] == "user" else "Assistant"
        parts.append(f"[{role}] {_format_ts(message.get('timestamp'))}\n")
        parts.append(f"{message['content']}\n")
        if index < len(messages) - 1:
            parts.append(f"\n{'-' * TEXT_SEPARATOR_WIDTH}\n\n")
    return "".join(parts)


_RENDERERS = {
    ExportFormat.MARKDOWN: export_markdown,
    ExportFormat.JSON: export_json,
    ExportFormat.TEXT: export_text,
}


def export_thread(
    thread: dict,
    messages: list[dict],
    fmt: ExportFormat | str,
    now: datetime | None = None,
) -> tuple[str, str, str]:
    """Render a thread; returns (content, filename, mime_type)."""
    fmt = ExportFormat(fmt)
    extension, mime_type = _EXTENSIONS[fmt]
    content = _RENDERERS[fmt](thread, messages, now=now)
    return content, f"{sanitize_filename(thread['title'])}.{extension}", mime_type
