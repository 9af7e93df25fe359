"""
File Documents
==============

Wraps uploaded files as documents so they appear in the document grid and
open in a viewer chosen by the detected file type.
"""

import logging

from sqlalchemy.orm import Session

from agentkit.config import get_settings
from hub.core.models import Document, DocumentTypeEnum, File, to_ms, utcnow
from hub.core.schemas import FileType
from hub.resilience import NotAuthorizedError, NotFoundError, require_user

logger = logging.getLogger(__name__)

EXCEL_MIME_TYPES = (
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
)


def detect_file_type(file_name: str | None, mime_type: str | None) -> FileType:
    """Viewer category for a file, checked in priority order."""
    name = (file_name or "").lower()
    mime = (mime_type or "").lower()

    if "text/csv" in mime or name.endswith(".csv"):
        return FileType.CSV
    if any(m in mime for m in EXCEL_MIME_TYPES) or name.endswith((".xlsx", ".xls")):
        return FileType.EXCEL
    if "application/pdf" in mime:
        return FileType.PDF
    if mime.startswith("image/"):
        return FileType.IMAGE
    if mime.startswith("video/"):
        return FileType.VIDEO
    if mime.startswith("audio/"):
        return FileType.AUDIO
    if "text/" in mime:
        return FileType.TEXT
    return FileType.UNKNOWN


def storage_url(storage_id: str | None) -> str | None:
    if not storage_id:
        return None
    base = get_settings().APP_BASE_URL or ""
    return f"{base}/api/storage/{storage_id}"


def _new_file_document(
    user_id: str,
    file: File,
    title: str | None = None,
    parent_id: str | None = None,
    is_public: bool = False,
) -> Document:
    return Document(
        title=title or file.file_name,
        parent_id=parent_id,
        is_public=is_public,
        created_by=user_id,
        last_edited_by=user_id,
        document_type=DocumentTypeEnum.FILE,
        file_id=file.id,
        file_type=detect_file_type(file.file_name, file.mime_type).value,
        mime_type=file.mime_type,
        last_modified=utcnow(),
    )


def create_file_document(
    session: Session,
    user_id: str | None,
    file_id: str,
    title: str | None = None,
    parent_id: str | None = None,
    is_public: bool = False,
) -> str:
    """Create a file-backed document for one of the user's files. Returns the document id."""
    user_id = require_user(user_id)

    file = session.get(File, file_id)
    if file is None:
        raise NotFoundError("File not found")
    if file.user_id != user_id:
        raise NotAuthorizedError("Not authorized to access this file")

    document = _new_file_document(user_id, file, title=title, parent_id=parent_id, is_public=is_public)
    session.add(document)
    session.flush()
    logger.info(f"Created {document.file_type} document {document.id} for file {file.id}")
    return document.id


def get_file_document(session: Session, user_id: str | None, document_id: str) -> dict | None:
    """Document, file and storage URL, or None when missing or not readable."""
    if not user_id:
        return None

    document = session.get(Document, document_id)
    if document is None or document.document_type != DocumentTypeEnum.FILE or not document.file_id:
        return None
    if not document.is_public and document.created_by != user_id:
        return None

    file = session.get(File, document.file_id)
    if file is None:
        return None

    return {
        "document": {
            "_id": document.id,
            "title": document.title,
            "documentType": document.document_type.value,
            "fileType": document.file_type,
            "mimeType": document.mime_type,
            "createdBy": document.created_by,
            "lastModified": to_ms(document.last_modified),
            "isPublic": bool(document.is_public),
            "isArchived": bool(document.is_archived),
        },
        "file": {
            "_id": file.id,
            "fileName": file.file_name,
            "fileSize": file.file_size,
            "storageId": file.storage_id,
            "analysis": file.analysis,
            "structuredData": file.structured_data,
        },
        "storageUrl": storage_url(file.storage_id),
    }


def get_user_file_documents(session: Session, user_id: str | None, include_archived: bool = False) -> list[dict]:
    if not user_id:
        return []

    query = (
        session.query(Document, File)
        .join(File, Document.file_id == File.id)
        .filter(Document.created_by == user_id, Document.document_type == DocumentTypeEnum.FILE)
    )
    if not include_archived:
        query = query.filter(Document.is_archived.is_(False))

    results = [
        {
            "_id": document.id,
            "title": document.title,
            "fileType": document.file_type,
            "mimeType": document.mime_type,
            "lastModified": to_ms(document.last_modified),
            "fileName": file.file_name,
            "fileSize": file.file_size,
        }
        for document, file in query.all()
    ]
    return sorted(results, key=lambda r: r["lastModified"] or 0, reverse=True)


def sync_files_to_documents(session: Session, user_id: str | None) -> list[str]:
    """Create documents for every file of the user that has none yet."""
    user_id = require_user(user_id)

    files = session.query(File).filter(File.user_id == user_id).all()
    existing = {
        file_id
        for (file_id,) in session.query(Document.file_id).filter(
            Document.created_by == user_id,
            Document.document_type == DocumentTypeEnum.FILE,
            Document.file_id.isnot(None),
        )
    }

    created = []
    for file in files:
        if file.id in existing:
            continue
        document = _new_file_document(user_id, file)
        session.add(document)
        session.flush()
        created.append(document.id)

    if created:
        logger.info(f"Synced {len(created)} files to documents for user {user_id}")
    return created
