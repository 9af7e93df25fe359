"""Tests for file-backed documents."""
import pytest

from hub.core.models import File
from hub.core.schemas import FileType
from hub.resilience import NotAuthorizedError, NotFoundError
from hub.services import file_documents


class TestDetectFileType:

    @pytest.mark.parametrize(
        "name, mime, expected",
        [
            ("data.CSV", None, FileType.CSV),
            ("report.bin", "text/csv", FileType.CSV),
            ("book.xlsx", "application/octet-stream", FileType.EXCEL),
            ("book", "application/vnd.ms-excel", FileType.EXCEL),
            ("paper.pdf", "application/pdf", FileType.PDF),
            ("logo.png", "image/png", FileType.IMAGE),
            ("clip.mp4", "video/mp4", FileType.VIDEO),
            ("song.mp3", "audio/mpeg", FileType.AUDIO),
            ("notes.md", "text/markdown", FileType.TEXT),
            ("blob", None, FileType.UNKNOWN),
        ],
    )
    def test_priority_order(self, name, mime, expected):
        assert file_documents.detect_file_type(name, mime) == expected

    def test_pdf_needs_mime(self):
        assert file_documents.detect_file_type("paper.pdf", None) == FileType.UNKNOWN


class TestFileDocuments:

    def test_create_and_get(self, session, user, uploaded_file):
        document_id = file_documents.create_file_document(session, user.id, uploaded_file.id)
        result = file_documents.get_file_document(session, user.id, document_id)

        assert result["document"]["title"] == "results.csv"
        assert result["document"]["fileType"] == "csv"
        assert result["document"]["documentType"] == "file"
        assert result["file"]["fileSize"] == 2048
        assert result["storageUrl"] == "/api/storage/storage-abc"

    def test_create_for_foreign_file(self, session, other_user, uploaded_file):
        with pytest.raises(NotAuthorizedError):
            file_documents.create_file_document(session, other_user.id, uploaded_file.id)

    def test_create_for_missing_file(self, session, user):
        with pytest.raises(NotFoundError, match="File not found"):
            file_documents.create_file_document(session, user.id, "missing")

    def test_get_hidden_from_other_users(self, session, user, other_user, uploaded_file):
        document_id = file_documents.create_file_document(session, user.id, uploaded_file.id)
        assert file_documents.get_file_document(session, other_user.id, document_id) is None
        assert file_documents.get_file_document(session, None, document_id) is None

    def test_get_plain_document_returns_none(self, session, user, document):
        assert file_documents.get_file_document(session, user.id, document.id) is None

    def test_list_respects_archive_flag(self, session, user, uploaded_file):
        from hub.core.models import Document

        document_id = file_documents.create_file_document(session, user.id, uploaded_file.id, title="Revenue")
        session.get(Document, document_id).is_archived = True
        session.flush()

        assert file_documents.get_user_file_documents(session, user.id) == []
        listed = file_documents.get_user_file_documents(session, user.id, include_archived=True)
        assert [d["title"] for d in listed] == ["Revenue"]
        assert listed[0]["fileName"] == "results.csv"

    def test_sync_creates_missing_documents_once(self, session, user, uploaded_file):
        second = File(user_id=user.id, file_name="deck.pdf", mime_type="application/pdf")
        session.add(second)
        session.flush()
        file_documents.create_file_document(session, user.id, uploaded_file.id)

        created = file_documents.sync_files_to_documents(session, user.id)
        assert len(created) == 1
        assert file_documents.sync_files_to_documents(session, user.id) == []
