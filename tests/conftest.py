"""Pytest configuration and fixtures for Nodebench tests."""
import pytest
from sqlalchemy.orm import sessionmaker

from agentkit.config import get_settings
from hub.core.db import create_test_engine
from hub.core.models import Document, File, User


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Isolate every test from API keys in the developer's environment or .env file."""
    for key in (
        "OPENAI_API_KEY",
        "OPENROUTER_API_KEY",
        "LINKUP_API_KEY",
        "YOUTUBE_API_KEY",
        "STRIPE_SECRET_KEY",
        "STRIPE_PRICE_ID",
        "POLAR_ACCESS_TOKEN",
        "POLAR_PRODUCT_ID_SUPPORTER",
        "GOOGLE_CLIENT_ID",
        "GOOGLE_CLIENT_SECRET",
        "GOOGLE_REDIRECT_URI",
        "OAUTH_STATE_SECRET",
        "APP_BASE_URL",
    ):
        monkeypatch.setenv(key, "")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(scope="session")
def engine():
    """In-memory SQLite engine with foreign keys enabled."""
    return create_test_engine()


@pytest.fixture(scope="function")
def session(engine):
    """Create a new database session for each test."""
    connection = engine.connect()
    transaction = connection.begin()
    Session = sessionmaker(bind=connection)
    session = Session()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def user(session):
    u = User(id="user-1", name="Ada", email="ada@example.com")
    session.add(u)
    session.flush()
    return u


@pytest.fixture
def other_user(session):
    u = User(id="user-2", name="Grace", email="grace@example.com")
    session.add(u)
    session.flush()
    return u


@pytest.fixture
def document(session, user):
    """A plain document with two paragraphs."""
    from hub.services import documents

    doc = documents.create_document(session, user.id, "Quarterly Research Notes")
    documents.append_node(session, doc, "First paragraph about Stripe pricing.", author_id=user.id)
    documents.append_node(session, doc, "Second paragraph about margins.", author_id=user.id)
    return doc


@pytest.fixture
def uploaded_file(session, user):
    f = File(
        user_id=user.id,
        file_name="results.csv",
        file_size=2048,
        mime_type="text/csv",
        storage_id="storage-abc",
        analysis="Three columns of revenue data.",
    )
    session.add(f)
    session.flush()
    return f


class FakeLLMClient:
    """Scripted stand-in for MultiLLMClient."""

    def __init__(self, text="LLM answer", json_data=None, structured=None):
        self.text = text
        self.json_data = json_data
        self.structured = structured or {}
        self.calls = []

    async def generate(self, prompt=None, **kwargs):
        self.calls.append(("generate", prompt, kwargs))
        return {"text": self.text, "usage": {"total_tokens": 10}, "provider": "local", "model": "echo", "success": True}

    async def generate_json(self, prompt, **kwargs):
        self.calls.append(("generate_json", prompt, kwargs))
        return self.json_data

    async def generate_structured(self, prompt, response_model, **kwargs):
        self.calls.append(("generate_structured", prompt, kwargs))
        key = (kwargs.get("provider").value if kwargs.get("provider") else None, kwargs.get("model"))
        parsed = self.structured.get(key)
        if parsed is None:
            return {"parsed": None, "success": False, "error": "no plan"}
        return {"parsed": parsed, "success": True}


@pytest.fixture
def fake_llm():
    return FakeLLMClient()


@pytest.fixture
def llm_factory():
    """Build scripted LLM clients inside a test."""
    return FakeLLMClient
