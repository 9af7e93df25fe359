"""
Chat Thread Service
===================

Chat threads are ordinary documents: a heading node with the thread title,
an optional context node, then one root node per message rendered as
``**User (HH:MM)**`` / ``**Assistant (HH:MM)**`` followed by the content.

Threads are recognised by their title prefix ("Chat — ", "Chat – ",
"Chat - " or "Chat -- ").
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from hub.core.models import Document, Node, from_ms, to_ms, utcnow
from hub.core.schemas import MessageRole
from hub.resilience import NotAuthorizedError, NotFoundError, require_user

from .documents import append_node, root_nodes

logger = logging.getLogger(__name__)

CHAT_TITLE_PREFIXES = ("Chat — ", "Chat – ", "Chat - ", "Chat --")
DEFAULT_THREAD_LIMIT = 50
LAST_MESSAGE_PREVIEW_CHARS = 200


def is_chat_title(title: str | None) -> bool:
    return bool(title) and title.startswith(CHAT_TITLE_PREFIXES)


def default_thread_title(now: datetime | None = None) -> str:
    now = now or utcnow()
    return f"Chat — {now:%Y-%m-%d} {now:%H:%M}"


def format_message(role: MessageRole, content: str, at: datetime) -> str:
    speaker = "User" if role == MessageRole.USER else "Assistant"
    return f"**{speaker} ({at:%H:%M})**\n{content}"


def start_thread(
    session: Session,
    user_id: str | None,
    title: str | None = None,
    initial_context: str | None = None,
) -> Document:
    """Create a chat thread document with its heading (and optional context) node."""
    user_id = require_user(user_id)
    now = utcnow()
    title = title.strip() if title and title.strip() else default_thread_title(now)

    thread = Document(
        title=title,
        created_by=user_id,
        is_public=False,
        last_edited_by=user_id,
        last_modified=now,
        created_at=now,
    )
    session.add(thread)
    session.flush()

    append_node(session, thread, f"# {title}", author_id=user_id, order=0, is_user_node=True, node_type="heading")
    if initial_context and initial_context.strip():
        append_node(session, thread, initial_context.strip(), author_id=user_id, order=1, is_user_node=True)

    logger.info(f"Started chat thread {thread.id} for user {user_id}")
    return thread


def append_message(
    session: Session,
    user_id: str | None,
    thread_document_id: str,
    role: MessageRole | str,
    content: str,
    timestamp: int | None = None,
    candidate_docs: list[dict] | None = None,
    metadata: dict | None = None,
) -> Node:
    """
    Append a user or assistant message to a thread.

    Args:
        timestamp: Message time in epoch ms (defaults to now)
        candidate_docs: Documents surfaced alongside the message, stored as attachments
        metadata: Assistant run details (model, elapsedMs, tokens, fastMode)
    """
    user_id = require_user(user_id)
    role = MessageRole(role)

    thread = session.get(Document, thread_document_id)
    if thread is None:
        raise NotFoundError("Document not found")
    if thread.created_by != user_id:
        raise NotAuthorizedError("Unauthorized")

    at = from_ms(timestamp) if timestamp is not None else utcnow()
    payload: dict = {"role": role.value, "timestamp": to_ms(at), "content": content}
    if candidate_docs:
        payload["props"] = {"attachments": candidate_docs}
    if metadata:
        payload["meta"] = metadata

    node = append_node(
        session,
        thread,
        format_message(role, content, at),
        author_id=user_id,
        is_user_node=role == MessageRole.USER,
        node_type="paragraph",
        json_payload=payload,
    )
    logger.debug(f"Appended {role.value} message to thread {thread.id} at order {node.order}")
    return node


def list_threads_for_user(session: Session, user_id: str | None, limit: int | None = None) -> list[dict]:
    """Chat threads with message count and last message preview, most recent first."""
    if not user_id:
        return []
    limit = max(1, limit if limit is not None else DEFAULT_THREAD_LIMIT)

    documents = (
        session.query(Document)
        .filter(Document.created_by == user_id, Document.is_archived.is_(False))
        .order_by(Document.last_modified.desc())
        .all()
    )
    threads = [d for d in documents if is_chat_title(d.title)][:limit]

    result = []
    for thread in threads:
        nodes = root_nodes(session, thread.id)
        last_message = None
        if nodes:
            newest = max(nodes, key=lambda n: (n.created_at, n.order))
            last_message = {
                "role": "user" if newest.is_user_node else "assistant",
                "text": (newest.text or "")[:LAST_MESSAGE_PREVIEW_CHARS],
                "createdAt": to_ms(newest.created_at),
            }
        result.append(
            {
                "_id": thread.id,
                "title": thread.title,
                "createdAt": to_ms(thread.created_at),
                "lastModified": to_ms(thread.last_modified),
                "messageCount": len(nodes),
                "lastMessage": last_message,
            }
        )
    return result


def get_thread_messages(session: Session, user_id: str | None, thread_document_id: str) -> tuple[Document, list[dict]]:
    """Thread document and its messages in order, shaped for export."""
    user_id = require_user(user_id)
    thread = session.get(Document, thread_document_id)
    if thread is None:
        raise NotFoundError("Document not found")
    if thread.created_by != user_id:
        raise NotAuthorizedError("Unauthorized")

    messages = []
    for node in root_nodes(session, thread.id):
        payload = node.json or {}
        if "role" not in payload:
            continue
        message = {
            "id": node.id,
            "role": payload["role"],
            "content": payload.get("content", node.text or ""),
            "timestamp": payload.get("timestamp") or to_ms(node.created_at),
        }
        message.update(payload.get("meta") or {})
        messages.append(message)
    return thread, messages
