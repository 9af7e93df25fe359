"""Tests for conversation export."""
import json
from datetime import datetime, timezone

import pytest

from hub.services.exporter import export_thread, sanitize_filename

NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

THREAD = {"id": "t1", "title": "Chat — Pricing: Q1/Q2", "createdAt": None, "updatedAt": None}
MESSAGES = [
    {"id": "m1", "role": "user", "content": "How much?", "timestamp": 1_700_000_000_000},
    {
        "id": "m2",
        "role": "assistant",
        "content": "About $10.",
        "timestamp": 1_700_000_005_000,
        "model": "gpt-5-mini",
        "fastMode": True,
        "elapsedMs": 2500,
        "tokensUsed": {"input": 30, "output": 12},
    },
]


class TestExport:

    def test_sanitize_filename(self):
        assert sanitize_filename("Chat — Pricing: Q1/Q2") == "chat_pricing_q1_q2"
        assert len(sanitize_filename("x" * 80)) == 50

    def test_markdown(self):
        content, filename, mime_type = export_thread(THREAD, MESSAGES, "markdown", now=NOW)
        assert filename == "chat_pricing_q1_q2.md"
        assert mime_type == "text/markdown"
        assert content.startswith("# Chat — Pricing: Q1/Q2\n\n*Exported on 2024-01-02 03:04:05 UTC*\n\n---\n\n")
        assert "## 👤 You - 2023-11-14 22:13:20 UTC" in content
        assert "*Model: gpt-5-mini (Fast Mode) • 2.5s • 42 tokens*" in content
        # separator only between messages
        assert content.count("---\n\n") == 2

    def test_json(self):
        content, filename, mime_type = export_thread(THREAD, MESSAGES, "json", now=NOW)
        data = json.loads(content)
        assert filename.endswith(".json")
        assert mime_type == "application/json"
        assert data["thread"]["pinned"] is False
        assert data["messages"][1]["tokensUsed"] == {"input": 30, "output": 12}
        assert data["messages"][0]["model"] is None
        assert data["exportedAt"] == NOW.isoformat()

    def test_text(self):
        content, filename, _ = export_thread(THREAD, MESSAGES, "text", now=NOW)
        lines = content.splitlines()
        assert filename.endswith(".txt")
        assert lines[0] == THREAD["title"]
        assert lines[1] == "=" * len(THREAD["title"])
        assert "[You] 2023-11-14 22:13:20 UTC" in content
        assert "-" * 60 in content

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            export_thread(THREAD, MESSAGES, "pdf")
