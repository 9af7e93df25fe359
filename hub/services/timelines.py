"""
Agent Timelines and Runs
========================

Persists the agent task tree shown on a document's timeline, plus the run log
(runs and their progress events) written by the coordinator and planner.

Snapshots use client ids for tasks and links. On import the ids are remapped
to new row ids in two passes: tasks first, then parents and links.
"""

import logging
import time
from collections.abc import Iterable
from typing import Any

from sqlalchemy.orm import Session

from hub.core.models import (
    AgentLink,
    AgentRun,
    AgentRunEvent,
    AgentTask,
    AgentTaskStatusEnum,
    AgentTimeline,
    AgentTypeEnum,
    Document,
    LinkTypeEnum,
    RunStatusEnum,
    to_ms,
    utcnow,
)
from hub.core.schemas import TimelineLinkIn, TimelineTaskIn
from hub.resilience import NotAuthorizedError, NotFoundError, require_user

logger = logging.getLogger(__name__)

RECENT_RUNS_LIMIT = 20


def _enum_or_default(enum_cls, value, default):
    try:
        return enum_cls(value) if value is not None else default
    except ValueError:
        logger.warning(f"Unknown {enum_cls.__name__} value {value!r}; using {getattr(default, 'value', default)}")
        return default


def _owned_timeline(session: Session, user_id: str, timeline_id: str) -> AgentTimeline:
    timeline = session.get(AgentTimeline, timeline_id)
    if timeline is None:
        raise NotFoundError("Timeline not found")
    if timeline.created_by != user_id:
        raise NotAuthorizedError("Unauthorized")
    return timeline


def task_to_dict(task: AgentTask) -> dict:
    return {
        "_id": task.id,
        "timelineId": task.timeline_id,
        "parentId": task.parent_id,
        "name": task.name,
        "startOffsetMs": task.start_offset_ms,
        "durationMs": task.duration_ms,
        "progress": task.progress,
        "status": task.status.value,
        "agentType": task.agent_type.value if task.agent_type else None,
        "icon": task.icon,
        "color": task.color,
        "description": task.description,
        "inputTokens": task.input_tokens,
        "outputTokens": task.output_tokens,
        "outputSizeBytes": task.output_size_bytes,
        "elapsedMs": task.elapsed_ms,
    }


# =============================================================================
# TIMELINES
# =============================================================================


def create_for_document(session: Session, user_id: str | None, document_id: str, name: str) -> str:
    """Create the document's timeline, or return the existing one."""
    user_id = require_user(user_id)
    document = session.get(Document, document_id)
    if document is None:
        raise NotFoundError("Document not found")
    if document.created_by != user_id:
        raise NotAuthorizedError("Unauthorized")

    existing = session.query(AgentTimeline).filter(AgentTimeline.document_id == document_id).first()
    if existing:
        return existing.id

    timeline = AgentTimeline(document_id=document_id, name=name, created_by=user_id)
    session.add(timeline)
    session.flush()
    logger.info(f"Created timeline {timeline.id} for document {document_id}")
    return timeline.id


def get_timeline(session: Session, user_id: str | None, timeline_id: str) -> dict:
    user_id = require_user(user_id)
    timeline = _owned_timeline(session, user_id, timeline_id)
    tasks = (
        session.query(AgentTask)
        .filter(AgentTask.timeline_id == timeline.id)
        .order_by(AgentTask.start_offset_ms, AgentTask.created_at)
        .all()
    )
    links = session.query(AgentLink).filter(AgentLink.timeline_id == timeline.id).all()
    return {
        "_id": timeline.id,
        "documentId": timeline.document_id,
        "name": timeline.name,
        "baseStartMs": timeline.base_start_ms,
        "latestRunInput": timeline.latest_run_input,
        "latestRunOutput": timeline.latest_run_output,
        "latestRunAt": to_ms(timeline.latest_run_at),
        "tasks": [task_to_dict(t) for t in tasks],
        "links": [
            {"_id": l.id, "sourceId": l.source_task_id, "targetId": l.target_task_id, "type": l.type.value}
            for l in links
        ],
    }


def list_for_user(session: Session, user_id: str | None) -> list[dict]:
    if not user_id:
        return []
    timelines = (
        session.query(AgentTimeline)
        .filter(AgentTimeline.created_by == user_id)
        .order_by(AgentTimeline.updated_at.desc())
        .all()
    )
    return [
        {"_id": t.id, "documentId": t.document_id, "name": t.name, "baseStartMs": t.base_start_ms}
        for t in timelines
    ]


def add_task(session: Session, user_id: str | None, timeline_id: str, task: TimelineTaskIn | dict) -> str:
    user_id = require_user(user_id)
    timeline = _owned_timeline(session, user_id, timeline_id)
    task = task if isinstance(task, TimelineTaskIn) else TimelineTaskIn(**task)
    row = _task_row(timeline.id, task, task.startOffsetMs or 0)
    session.add(row)
    session.flush()
    return row.id


def _task_row(timeline_id: str, task: TimelineTaskIn, offset: int) -> AgentTask:
    return AgentTask(
        timeline_id=timeline_id,
        name=task.name,
        start_offset_ms=offset,
        duration_ms=task.durationMs,
        progress=task.progress,
        status=_enum_or_default(AgentTaskStatusEnum, task.status, AgentTaskStatusEnum.PENDING),
        agent_type=_enum_or_default(AgentTypeEnum, task.agentType, None) if task.agentType else None,
        icon=task.icon,
        color=task.color,
        description=task.description,
    )


def import_snapshot(
    session: Session,
    user_id: str | None,
    timeline_id: str,
    tasks: Iterable[TimelineTaskIn | dict],
    links: Iterable[TimelineLinkIn | dict] = (),
) -> dict:
    """
    Replace a timeline's tasks and links with a snapshot.

    Offsets come from ``startOffsetMs`` when given, else from absolute
    ``startMs`` relative to the timeline base (clamped at zero). The base is
    the timeline's own base, else the earliest ``startMs``, else now.
    Links whose endpoints are not in the snapshot are skipped.
    """
    user_id = require_user(user_id)
    timeline = _owned_timeline(session, user_id, timeline_id)
    tasks = [t if isinstance(t, TimelineTaskIn) else TimelineTaskIn(**t) for t in tasks]
    links = [l if isinstance(l, TimelineLinkIn) else TimelineLinkIn(**l) for l in links]

    session.query(AgentLink).filter(AgentLink.timeline_id == timeline.id).delete(synchronize_session=False)
    session.query(AgentTask).filter(AgentTask.timeline_id == timeline.id).delete(synchronize_session=False)
    session.flush()
    session.expire(timeline, ["tasks", "links"])

    absolute_starts = [t.startMs for t in tasks if t.startMs is not None]
    base = timeline.base_start_ms
    if base is None:
        base = min(absolute_starts) if absolute_starts else int(time.time() * 1000)
        timeline.base_start_ms = base

    id_map: dict[str, AgentTask] = {}
    for task in tasks:
        if task.startOffsetMs is not None:
            offset = task.startOffsetMs
        elif task.startMs is not None:
            offset = max(0, task.startMs - base)
        else:
            offset = 0
        row = _task_row(timeline.id, task, offset)
        session.add(row)
        id_map[task.id] = row
    session.flush()

    for task in tasks:
        if task.parentId and task.parentId in id_map:
            id_map[task.id].parent_id = id_map[task.parentId].id

    link_count = 0
    for link in links:
        source = id_map.get(link.sourceId)
        target = id_map.get(link.targetId)
        if source is None or target is None:
            continue
        session.add(
            AgentLink(
                timeline_id=timeline.id,
                source_task_id=source.id,
                target_task_id=target.id,
                type=_enum_or_default(LinkTypeEnum, link.type, LinkTypeEnum.E2E),
            )
        )
        link_count += 1

    timeline.updated_at = utcnow()
    session.flush()
    logger.info(f"Imported {len(id_map)} tasks and {link_count} links into timeline {timeline.id}")
    return {"taskCount": len(id_map), "linkCount": link_count, "baseStartMs": base}


def apply_plan(
    session: Session,
    user_id: str | None,
    timeline_id: str,
    tasks: Iterable[TimelineTaskIn | dict],
    links: Iterable[TimelineLinkIn | dict] = (),
    base_start_ms: int | None = None,
) -> dict:
    """Set the base start (when given) and import planner output as the timeline."""
    user_id = require_user(user_id)
    timeline = _owned_timeline(session, user_id, timeline_id)
    if base_start_ms is not None:
        timeline.base_start_ms = base_start_ms

    normalized = []
    for task in tasks:
        task = task if isinstance(task, TimelineTaskIn) else TimelineTaskIn(**task)
        normalized.append(
            task.model_copy(
                update={
                    "startOffsetMs": task.startOffsetMs if task.startOffsetMs is not None else 0,
                    "status": task.status or "pending",
                }
            )
        )
    return import_snapshot(session, user_id, timeline_id, normalized, links)


def update_task_metrics(session: Session, task_id: str, **metrics: Any) -> None:
    """Record run metrics on a task. Unknown tasks are logged and skipped."""
    task = session.get(AgentTask, task_id)
    if task is None:
        logger.warning(f"update_task_metrics: task {task_id} not found")
        return

    columns = {
        "inputTokens": "input_tokens",
        "outputTokens": "output_tokens",
        "outputSizeBytes": "output_size_bytes",
        "elapsedMs": "elapsed_ms",
        "progress": "progress",
    }
    for key, value in metrics.items():
        if value is None:
            continue
        if key == "status":
            task.status = _enum_or_default(AgentTaskStatusEnum, value, task.status)
        elif key in columns:
            setattr(task, columns[key], value)
    session.flush()


def set_latest_run(
    session: Session,
    user_id: str | None,
    timeline_id: str,
    input: str | None = None,
    output: str | None = None,
) -> None:
    user_id = require_user(user_id)
    timeline = _owned_timeline(session, user_id, timeline_id)
    if input is not None:
        timeline.latest_run_input = input
    if output is not None:
        timeline.latest_run_output = output
    timeline.latest_run_at = utcnow()
    session.flush()


# =============================================================================
# RUNS
# =============================================================================


def add_run(
    session: Session,
    user_id: str | None,
    intent: str | None = None,
    input: str | None = None,
    thread_id: str | None = None,
    timeline_id: str | None = None,
) -> str:
    user_id = require_user(user_id)
    if timeline_id is not None:
        _owned_timeline(session, user_id, timeline_id)
    run = AgentRun(
        user_id=user_id,
        intent=intent,
        input=input,
        thread_id=thread_id,
        timeline_id=timeline_id,
        status=RunStatusEnum.RUNNING,
    )
    session.add(run)
    session.flush()
    return run.id


def record_run_event(session: Session, run_id: str, kind: str, message: str | None = None, data: Any = None) -> None:
    seq = session.query(AgentRunEvent).filter(AgentRunEvent.run_id == run_id).count()
    session.add(AgentRunEvent(run_id=run_id, seq=seq, kind=kind, message=message, data=data))
    session.flush()


def finish_run(session: Session, run_id: str, final_response: str | None, failed: bool = False) -> None:
    run = session.get(AgentRun, run_id)
    if run is None:
        logger.warning(f"finish_run: run {run_id} not found")
        return
    run.status = RunStatusEnum.FAILED if failed else RunStatusEnum.COMPLETED
    run.final_response = final_response
    run.updated_at = utcnow()
    session.flush()


def list_runs(session: Session, user_id: str | None, timeline_id: str | None = None) -> list[dict]:
    """Latest runs for the user (optionally one timeline), newest first."""
    if not user_id:
        return []
    query = session.query(AgentRun).filter(AgentRun.user_id == user_id)
    if timeline_id:
        query = query.filter(AgentRun.timeline_id == timeline_id)
    runs = query.order_by(AgentRun.created_at.desc()).limit(RECENT_RUNS_LIMIT).all()
    return [
        {
            "_id": run.id,
            "intent": run.intent,
            "status": run.status.value,
            "threadId": run.thread_id,
            "timelineId": run.timeline_id,
            "finalResponse": run.final_response,
            "createdAt": to_ms(run.created_at),
            "events": [
                {"seq": e.seq, "kind": e.kind, "message": e.message, "data": e.data}
                for e in run.events
            ],
        }
        for run in runs
    ]
