"""
Document Service
================

Minimal document and node operations shared by chat threads, file documents
and the agents.

Usage:
    from hub.services.documents import create_document, read_first_chunk

    doc = create_document(session, user_id, "Investment Thesis")
    chunk = read_first_chunk(session, user_id, doc.id, max_chars=800)
"""

import logging
import re

from sqlalchemy.orm import Session

from hub.core.models import Document, Node, utcnow
from hub.resilience import NotAuthorizedError, NotFoundError, require_user

logger = logging.getLogger(__name__)

_HEADING_RE = re.compile(r"^#{1,6}\s")


def markdown_node_type(text: str) -> str:
    """Guess a block type from a markdown line."""
    stripped = text.lstrip()
    if _HEADING_RE.match(stripped):
        return "heading"
    if stripped.startswith(("- ", "* ", "• ")):
        return "bulletListItem"
    if stripped.startswith("```"):
        return "codeBlock"
    return "paragraph"


def can_read(document: Document, user_id: str | None) -> bool:
    return document.is_public or (user_id is not None and document.created_by == user_id)


def can_edit(document: Document, user_id: str | None) -> bool:
    return user_id is not None and document.created_by == user_id


def create_document(
    session: Session,
    user_id: str | None,
    title: str,
    parent_id: str | None = None,
    is_public: bool = False,
    content: str | None = None,
) -> Document:
    """Create a text document, optionally seeded with one node per paragraph."""
    user_id = require_user(user_id)
    now = utcnow()
    document = Document(
        title=title.strip() or "Untitled",
        created_by=user_id,
        parent_id=parent_id,
        is_public=is_public,
        last_edited_by=user_id,
        last_modified=now,
        created_at=now,
    )
    session.add(document)
    session.flush()

    if content:
        paragraphs = [p for p in re.split(r"\n{2,}", content) if p.strip()]
        for order, paragraph in enumerate(paragraphs):
            append_node(session, document, paragraph, author_id=user_id, order=order)

    logger.info(f"Created document {document.id} ({document.title!r})")
    return document


def get_document(session: Session, user_id: str | None, document_id: str) -> Document:
    """Fetch a document the user may read."""
    document = session.get(Document, document_id)
    if document is None:
        raise NotFoundError("Document not found")
    if not can_read(document, user_id):
        raise NotAuthorizedError("Unauthorized")
    return document


def get_document_for_edit(session: Session, user_id: str | None, document_id: str) -> Document:
    """Fetch a document the user may write to. Public documents stay read-only to others."""
    document = get_document(session, user_id, document_id)
    if not can_edit(document, user_id):
        raise NotAuthorizedError("Unauthorized")
    return document


def list_documents(session: Session, user_id: str | None, limit: int = 20) -> list[Document]:
    """User's non-archived documents, most recently modified first."""
    if not user_id:
        return []
    return (
        session.query(Document)
        .filter(Document.created_by == user_id, Document.is_archived.is_(False))
        .order_by(Document.last_modified.desc())
        .limit(limit)
        .all()
    )


def find_documents_by_title(session: Session, user_id: str | None, query: str, limit: int = 5) -> list[Document]:
    """Rank the user's documents by how many query words appear in the title."""
    words = {w for w in re.findall(r"[a-z0-9]+", query.lower()) if len(w) > 2}
    if not words:
        return []

    scored = []
    for document in list_documents(session, user_id, limit=200):
        title_words = set(re.findall(r"[a-z0-9]+", document.title.lower()))
        score = len(words & title_words)
        if score:
            scored.append((score, document))

    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [document for _, document in scored[:limit]]


def root_nodes(session: Session, document_id: str) -> list[Node]:
    return (
        session.query(Node)
        .filter(Node.document_id == document_id, Node.parent_id.is_(None))
        .order_by(Node.order.asc(), Node.created_at.asc())
        .all()
    )


def get_document_text(session: Session, document_id: str) -> str:
    """Plain text of a document: root node texts joined by blank lines."""
    return "\n\n".join(node.text for node in root_nodes(session, document_id) if node.text)


def read_first_chunk(
    session: Session,
    user_id: str | None,
    document_id: str,
    max_chars: int = 1200,
) -> dict:
    """Return the opening ``max_chars`` of a document with a continuation cursor."""
    document = get_document(session, user_id, document_id)
    text = get_document_text(session, document.id)
    chunk = text[:max_chars]
    return {
        "documentId": document.id,
        "chunk": chunk,
        "cursor": len(chunk),
        "isEnd": len(chunk) >= len(text),
    }


def append_node(
    session: Session,
    document: Document,
    text: str,
    author_id: str | None = None,
    order: int | None = None,
    is_user_node: bool = False,
    node_type: str | None = None,
    json_payload: dict | None = None,
) -> Node:
    """Append a root node to a document and touch its last_modified."""
    if order is None:
        order = session.query(Node).filter(Node.document_id == document.id, Node.parent_id.is_(None)).count()

    node = Node(
        document_id=document.id,
        order=order,
        type=node_type or markdown_node_type(text),
        text=text,
        json=json_payload,
        author_id=author_id,
        is_user_node=is_user_node,
    )
    session.add(node)
    document.last_modified = utcnow()
    if author_id:
        document.last_edited_by = author_id
    session.flush()
    return node
