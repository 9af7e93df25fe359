"""
Roadmap Analytics
=================

Aggregates a user's workspace activity into a daily heatmap, totals, status
breakdowns, a recent-activity feed and top tags.
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from hub.core.models import (
    AgentRun,
    AgentTask,
    AgentTaskStatusEnum,
    AgentTimeline,
    Document,
    Event,
    EventStatusEnum,
    File,
    Node,
    Tag,
    TagRef,
    Task,
    TaskStatusEnum,
    from_ms,
    to_ms,
    utcnow,
)

from .chat_threads import is_chat_title

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(days=90)
RECENT_PER_TYPE = 20
RECENT_LIMIT = 20
TOP_TAGS_LIMIT = 10

HEATMAP_KEYS = ("documents", "tasks", "events", "agentRuns", "chatMessages")


def _status_counts(rows, enum_cls) -> dict[str, int]:
    counts = Counter(row.status for row in rows)
    return {member.value: counts.get(member, 0) for member in enum_cls}


def empty_analytics() -> dict:
    return {
        "heatmap": [],
        "totals": {
            "documents": 0,
            "tasks": 0,
            "events": 0,
            "agentTimelines": 0,
            "agentTasks": 0,
            "chatThreads": 0,
            "files": 0,
            "nodes": 0,
        },
        "byStatus": {
            "tasks": {member.value: 0 for member in TaskStatusEnum},
            "events": {member.value: 0 for member in EventStatusEnum},
            "agentTasks": {member.value: 0 for member in AgentTaskStatusEnum},
        },
        "recentActivity": [],
        "topTags": [],
    }


def get_roadmap_analytics(
    session: Session,
    user_id: str | None,
    start_ms: int | None = None,
    end_ms: int | None = None,
    tz_offset_minutes: int = 0,
) -> dict:
    """
    Activity analytics for the roadmap hub.

    Args:
        start_ms: Window start in epoch ms (defaults to 90 days ago)
        end_ms: Window end in epoch ms (defaults to now)
        tz_offset_minutes: Caller's offset east of UTC; heatmap days are local
            calendar days and dateMs is local midnight (defaults to UTC)

    Returns:
        Dict with heatmap, totals, byStatus, recentActivity and topTags
    """
    if not user_id:
        return empty_analytics()

    now = utcnow()
    start = from_ms(start_ms) if start_ms is not None else now - DEFAULT_WINDOW
    end = from_ms(end_ms) if end_ms is not None else now

    documents = session.query(Document).filter(Document.created_by == user_id).order_by(Document.created_at).all()
    tasks = session.query(Task).filter(Task.user_id == user_id).order_by(Task.created_at).all()
    events = session.query(Event).filter(Event.user_id == user_id).order_by(Event.created_at).all()
    timelines = session.query(AgentTimeline).filter(AgentTimeline.created_by == user_id).all()
    runs = session.query(AgentRun).filter(AgentRun.user_id == user_id).order_by(AgentRun.created_at).all()
    files_count = session.query(File).filter(File.user_id == user_id).count()

    timeline_ids = [t.id for t in timelines]
    agent_tasks = (
        session.query(AgentTask).filter(AgentTask.timeline_id.in_(timeline_ids)).all() if timeline_ids else []
    )

    document_ids = [d.id for d in documents]
    nodes = session.query(Node).filter(Node.document_id.in_(document_ids)).all() if document_ids else []

    chat_ids = {d.id for d in documents if is_chat_title(d.title)}
    chat_messages = [n for n in nodes if n.document_id in chat_ids and (n.json or {}).get("role") == "user"]

    # Heatmap
    offset = timedelta(minutes=tz_offset_minutes)
    buckets: dict[str, dict[str, int]] = defaultdict(lambda: dict.fromkeys(HEATMAP_KEYS, 0))

    def _bump(key: str, at: datetime | None) -> None:
        if at is not None and start <= at <= end:
            buckets[(at + offset).strftime("%Y-%m-%d")][key] += 1

    for doc in documents:
        _bump("documents", doc.created_at)
    for task in tasks:
        _bump("tasks", task.created_at)
    for event in events:
        _bump("events", event.created_at)
    for run in runs:
        _bump("agentRuns", run.created_at)
    for node in chat_messages:
        _bump("chatMessages", node.created_at)

    heatmap = sorted(
        (
            {
                "date": day,
                "dateMs": to_ms(datetime.strptime(day, "%Y-%m-%d") - offset),
                **counts,
                "totalActivity": sum(counts.values()),
            }
            for day, counts in buckets.items()
        ),
        key=lambda entry: entry["dateMs"],
    )

    # Recent activity
    recent = []
    recent += [
        {"type": "document", "title": d.title, "timestamp": to_ms(d.created_at), "id": d.id}
        for d in documents[-RECENT_PER_TYPE:]
    ]
    recent += [
        {"type": "task", "title": t.title, "timestamp": to_ms(t.created_at), "id": t.id}
        for t in tasks[-RECENT_PER_TYPE:]
    ]
    recent += [
        {"type": "event", "title": e.title, "timestamp": to_ms(e.created_at), "id": e.id}
        for e in events[-RECENT_PER_TYPE:]
    ]
    recent += [
        {"type": "agent_run", "title": r.intent or "Agent Run", "timestamp": to_ms(r.created_at), "id": r.id}
        for r in runs[-RECENT_PER_TYPE:]
    ]
    recent.sort(key=lambda item: item["timestamp"], reverse=True)

    # Top tags over the user's own documents, tasks and events
    target_ids = set(document_ids) | {t.id for t in tasks} | {e.id for e in events}
    tag_counts: dict[str, dict] = {}
    if target_ids:
        refs = (
            session.query(TagRef, Tag)
            .join(Tag, TagRef.tag_id == Tag.id)
            .filter(TagRef.target_id.in_(target_ids))
            .all()
        )
        for _, tag in refs:
            entry = tag_counts.setdefault(tag.name, {"name": tag.name, "count": 0, "kind": tag.kind})
            entry["count"] += 1
    top_tags = sorted(tag_counts.values(), key=lambda t: t["count"], reverse=True)[:TOP_TAGS_LIMIT]

    logger.debug(f"Roadmap analytics for {user_id}: {len(heatmap)} active days")

    return {
        "heatmap": heatmap,
        "totals": {
            "documents": len(documents),
            "tasks": len(tasks),
            "events": len(events),
            "agentTimelines": len(timelines),
            "agentTasks": len(agent_tasks),
            # One agent run per chat exchange
            "chatThreads": len(runs),
            "files": files_count,
            "nodes": len(nodes),
        },
        "byStatus": {
            "tasks": _status_counts(tasks, TaskStatusEnum),
            "events": _status_counts(events, EventStatusEnum),
            "agentTasks": _status_counts(agent_tasks, AgentTaskStatusEnum),
        },
        "recentActivity": recent[:RECENT_LIMIT],
        "topTags": top_tags,
    }
