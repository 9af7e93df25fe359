"""Tests for documents and chat threads."""
from datetime import datetime

import pytest

from hub.core.models import to_ms
from hub.core.schemas import MessageRole
from hub.resilience import NotAuthenticatedError, NotAuthorizedError, NotFoundError
from hub.services import chat_threads, documents


class TestDocuments:

    def test_create_with_content_splits_paragraphs(self, session, user):
        doc = documents.create_document(session, user.id, "Plan", content="# Goals\n\nShip it\n\n- item")
        nodes = documents.root_nodes(session, doc.id)
        assert [n.type for n in nodes] == ["heading", "paragraph", "bulletListItem"]
        assert documents.get_document_text(session, doc.id) == "# Goals\n\nShip it\n\n- item"

    def test_create_requires_user(self, session):
        with pytest.raises(NotAuthenticatedError, match="Not authenticated"):
            documents.create_document(session, None, "Plan")

    def test_get_document_checks_access(self, session, document, other_user):
        with pytest.raises(NotAuthorizedError):
            documents.get_document(session, other_user.id, document.id)
        with pytest.raises(NotFoundError):
            documents.get_document(session, other_user.id, "missing")

    def test_public_document_is_readable(self, session, document, other_user):
        document.is_public = True
        assert documents.get_document(session, other_user.id, document.id) is document

    def test_public_document_is_read_only_to_others(self, session, user, document, other_user):
        document.is_public = True
        with pytest.raises(NotAuthorizedError):
            documents.get_document_for_edit(session, other_user.id, document.id)
        with pytest.raises(NotAuthorizedError):
            documents.get_document_for_edit(session, None, document.id)
        assert documents.get_document_for_edit(session, user.id, document.id) is document

    def test_find_by_title_ranks_by_overlap(self, session, user, document):
        documents.create_document(session, user.id, "Research backlog")
        found = documents.find_documents_by_title(session, user.id, "quarterly research notes")
        assert found[0].id == document.id
        assert len(found) == 2

    def test_read_first_chunk(self, session, user, document):
        chunk = documents.read_first_chunk(session, user.id, document.id, max_chars=10)
        assert chunk == {"documentId": document.id, "chunk": "First para", "cursor": 10, "isEnd": False}

        whole = documents.read_first_chunk(session, user.id, document.id)
        assert whole["isEnd"] is True


class TestChatThreads:

    def test_start_thread_default_title(self, session, user):
        thread = chat_threads.start_thread(session, user.id)
        assert chat_threads.is_chat_title(thread.title)
        nodes = documents.root_nodes(session, thread.id)
        assert nodes[0].text == f"# {thread.title}"
        assert nodes[0].type == "heading"

    def test_start_thread_with_context(self, session, user):
        thread = chat_threads.start_thread(session, user.id, title="Chat — Pricing", initial_context="  Compare plans  ")
        nodes = documents.root_nodes(session, thread.id)
        assert [n.text for n in nodes] == ["# Chat — Pricing", "Compare plans"]

    def test_start_thread_unauthenticated(self, session):
        with pytest.raises(NotAuthenticatedError):
            chat_threads.start_thread(session, None)

    def test_append_message_formats_node(self, session, user):
        thread = chat_threads.start_thread(session, user.id, title="Chat — Test")
        at = datetime(2024, 5, 1, 14, 30)
        node = chat_threads.append_message(session, user.id, thread.id, "user", "Hello", timestamp=to_ms(at))
        assert node.text == "**User (14:30)**\nHello"
        assert node.is_user_node is True
        assert node.json["role"] == "user"
        assert node.order == 1

    def test_append_message_stores_attachments_and_meta(self, session, user):
        thread = chat_threads.start_thread(session, user.id, title="Chat — Test")
        node = chat_threads.append_message(
            session, user.id, thread.id, MessageRole.ASSISTANT, "Answer",
            candidate_docs=[{"id": "d1"}], metadata={"model": "gpt-5-mini"},
        )
        assert node.is_user_node is False
        assert node.json["props"] == {"attachments": [{"id": "d1"}]}
        assert node.json["meta"] == {"model": "gpt-5-mini"}

    def test_append_message_to_foreign_thread(self, session, user, other_user):
        thread = chat_threads.start_thread(session, user.id, title="Chat — Private")
        with pytest.raises(NotAuthorizedError, match="Unauthorized"):
            chat_threads.append_message(session, other_user.id, thread.id, "user", "hi")

    def test_append_message_missing_thread(self, session, user):
        with pytest.raises(NotFoundError, match="Document not found"):
            chat_threads.append_message(session, user.id, "nope", "user", "hi")

    def test_list_threads_only_chats(self, session, user, document):
        thread = chat_threads.start_thread(session, user.id, title="Chat - Ideas")
        chat_threads.append_message(session, user.id, thread.id, "assistant", "Here are ideas")

        threads = chat_threads.list_threads_for_user(session, user.id)
        assert [t["_id"] for t in threads] == [thread.id]
        assert threads[0]["messageCount"] == 2
        assert threads[0]["lastMessage"]["role"] == "assistant"

    def test_list_threads_anonymous(self, session):
        assert chat_threads.list_threads_for_user(session, None) == []

    def test_get_thread_messages_skips_heading(self, session, user):
        thread = chat_threads.start_thread(session, user.id, title="Chat — Export")
        chat_threads.append_message(session, user.id, thread.id, "user", "Q", timestamp=1_700_000_000_000)
        chat_threads.append_message(
            session, user.id, thread.id, "assistant", "A", timestamp=1_700_000_060_000, metadata={"elapsedMs": 1200}
        )

        doc, messages = chat_threads.get_thread_messages(session, user.id, thread.id)
        assert doc.id == thread.id
        assert [m["role"] for m in messages] == ["user", "assistant"]
        assert messages[0]["timestamp"] == 1_700_000_000_000
        assert messages[1]["elapsedMs"] == 1200
