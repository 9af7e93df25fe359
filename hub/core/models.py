"""
Nodebench Hub - SQLAlchemy Data Models
======================================

Relational schema backing the workspace: documents and their nodes, files,
tasks and events, agent timelines/runs, the entity research cache, billing
subscriptions and connected Google accounts.

Every record is flat with owner foreign keys, timestamps and status enums.
Ownership checks live in the service layer, not in the schema.

Tables Defined:
- User: Workspace account
- Document / Node: Documents (text or file-backed) and their block tree
- File: Uploaded file metadata
- Task / Event: Calendar and roadmap items
- AgentTimeline / AgentTask / AgentLink: Agent task trees per document
- AgentRun / AgentRunEvent: Coordinator and planner run log
- EntityContext: Cached company/person research (7-day staleness)
- Subscription: Billing plan per user
- GoogleAccount: Gmail OAuth tokens
- Tag / TagRef: Tags attached to documents, tasks and events

Usage:
    from hub.core.models import Base, Document, Node
    from sqlalchemy import create_engine

    engine = create_engine("sqlite:///nodebench.db")
    Base.metadata.create_all(engine)
"""

import enum
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_ms(value: datetime | None) -> int | None:
    """Convert a stored naive-UTC datetime to epoch milliseconds."""
    if value is None:
        return None
    return int(value.replace(tzinfo=timezone.utc).timestamp() * 1000)


def from_ms(value: int) -> datetime:
    """Convert epoch milliseconds to a naive-UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class DocumentTypeEnum(enum.Enum):
    """Kind of document."""
    TEXT = "text"
    FILE = "file"


class TaskStatusEnum(enum.Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    BLOCKED = "blocked"


class EventStatusEnum(enum.Enum):
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class AgentTaskStatusEnum(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    PAUSED = "paused"
    ERROR = "error"


class AgentTypeEnum(enum.Enum):
    ORCHESTRATOR = "orchestrator"
    MAIN = "main"
    LEAF = "leaf"


class LinkTypeEnum(enum.Enum):
    """Dependency link between two agent tasks (end/start pairs)."""
    E2E = "e2e"
    S2S = "s2s"
    S2E = "s2e"
    E2S = "e2s"


class RunStatusEnum(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class EntityTypeEnum(enum.Enum):
    COMPANY = "company"
    PERSON = "person"


class PlanEnum(enum.Enum):
    FREE = "free"
    SUPPORTER = "supporter"


class SubscriptionStatusEnum(enum.Enum):
    NONE = "none"
    ACTIVE = "active"
    CANCELED = "canceled"


# =============================================================================
# WORKSPACE
# =============================================================================

class User(Base):
    """Workspace account."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"


class Document(Base):
    """
    A workspace document.

    Text documents hold their content as a tree of Node rows. File documents
    point at an uploaded File and carry its detected type.
    """
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(500), nullable=False, index=True)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    parent_id = Column(String(36), ForeignKey("documents.id"), nullable=True)

    is_public = Column(Boolean, default=False)
    is_archived = Column(Boolean, default=False, index=True)

    # File-backed documents
    document_type = Column(Enum(DocumentTypeEnum), nullable=False, default=DocumentTypeEnum.TEXT)
    file_id = Column(String(36), ForeignKey("files.id", ondelete="SET NULL"), nullable=True, index=True)
    file_type = Column(String(50), nullable=True)
    mime_type = Column(String(255), nullable=True)

    last_edited_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    last_modified = Column(DateTime, default=utcnow, index=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    nodes = relationship("Node", back_populates="document", cascade="all, delete-orphan")
    file = relationship("File")

    __table_args__ = (
        Index("idx_documents_owner_modified", "created_by", "last_modified"),
    )

    def __repr__(self):
        return f"<Document(id={self.id}, title={self.title[:30]}...)>"


class Node(Base):
    """Block inside a document; root nodes have no parent."""
    __tablename__ = "nodes"

    id = Column(String(36), primary_key=True, default=new_id)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(String(36), ForeignKey("nodes.id"), nullable=True)
    order = Column(Integer, nullable=False, default=0)
    type = Column(String(50), nullable=False, default="paragraph")
    text = Column(Text, nullable=True)
    json = Column(JSON, nullable=True)
    author_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    is_user_node = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    document = relationship("Document", back_populates="nodes")

    def __repr__(self):
        return f"<Node(id={self.id}, document_id={self.document_id}, order={self.order})>"


class File(Base):
    """Uploaded file metadata. The bytes live in object storage under storage_id."""
    __tablename__ = "files"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    file_name = Column(String(500), nullable=False)
    file_size = Column(BigInteger, nullable=True)
    mime_type = Column(String(255), nullable=True)
    storage_id = Column(String(255), nullable=True)
    analysis = Column(Text, nullable=True)
    structured_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<File(id={self.id}, file_name={self.file_name})>"


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    status = Column(Enum(TaskStatusEnum), nullable=False, default=TaskStatusEnum.TODO)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    status = Column(Enum(EventStatusEnum), nullable=False, default=EventStatusEnum.CONFIRMED)
    created_at = Column(DateTime, default=utcnow, index=True)


class Tag(Base):
    __tablename__ = "tags"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    kind = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=utcnow)


class TagRef(Base):
    """A tag attached to a document, task or event."""
    __tablename__ = "tag_refs"

    id = Column(String(36), primary_key=True, default=new_id)
    tag_id = Column(String(36), ForeignKey("tags.id", ondelete="CASCADE"), nullable=False, index=True)
    target_id = Column(String(36), nullable=False, index=True)
    target_type = Column(String(50), nullable=False)

    tag = relationship("Tag")


# =============================================================================
# AGENT TIMELINES AND RUNS
# =============================================================================

class AgentTimeline(Base):
    """Agent task tree attached to a document."""
    __tablename__ = "agent_timelines"

    id = Column(String(36), primary_key=True, default=new_id)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    base_start_ms = Column(BigInteger, nullable=True)

    latest_run_input = Column(Text, nullable=True)
    latest_run_output = Column(Text, nullable=True)
    latest_run_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    tasks = relationship("AgentTask", back_populates="timeline", cascade="all, delete-orphan")
    links = relationship("AgentLink", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<AgentTimeline(id={self.id}, name={self.name})>"


class AgentTask(Base):
    """One bar in an agent timeline (orchestrator, main or leaf)."""
    __tablename__ = "agent_tasks"

    id = Column(String(36), primary_key=True, default=new_id)
    timeline_id = Column(String(36), ForeignKey("agent_timelines.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(String(36), ForeignKey("agent_tasks.id", ondelete="SET NULL"), nullable=True)

    name = Column(String(500), nullable=False)
    start_offset_ms = Column(BigInteger, nullable=False, default=0)
    duration_ms = Column(BigInteger, nullable=False, default=0)
    progress = Column(Float, nullable=False, default=0.0)
    status = Column(Enum(AgentTaskStatusEnum), nullable=False, default=AgentTaskStatusEnum.PENDING)
    agent_type = Column(Enum(AgentTypeEnum), nullable=True)
    icon = Column(String(16), nullable=True)
    color = Column(String(32), nullable=True)
    description = Column(Text, nullable=True)

    # Run metrics
    input_tokens = Column(Integer, nullable=True)
    output_tokens = Column(Integer, nullable=True)
    output_size_bytes = Column(Integer, nullable=True)
    elapsed_ms = Column(BigInteger, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    timeline = relationship("AgentTimeline", back_populates="tasks")

    def __repr__(self):
        return f"<AgentTask(id={self.id}, name={self.name}, status={self.status})>"


class AgentLink(Base):
    __tablename__ = "agent_links"

    id = Column(String(36), primary_key=True, default=new_id)
    timeline_id = Column(String(36), ForeignKey("agent_timelines.id", ondelete="CASCADE"), nullable=False, index=True)
    source_task_id = Column(String(36), ForeignKey("agent_tasks.id", ondelete="CASCADE"), nullable=False)
    target_task_id = Column(String(36), ForeignKey("agent_tasks.id", ondelete="CASCADE"), nullable=False)
    type = Column(Enum(LinkTypeEnum), nullable=False, default=LinkTypeEnum.E2E)


class AgentRun(Base):
    """A single coordinator or planner invocation."""
    __tablename__ = "agent_runs"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    thread_id = Column(String(36), nullable=True, index=True)
    timeline_id = Column(String(36), ForeignKey("agent_timelines.id", ondelete="SET NULL"), nullable=True, index=True)
    intent = Column(String(255), nullable=True)
    status = Column(Enum(RunStatusEnum), nullable=False, default=RunStatusEnum.PENDING)
    input = Column(Text, nullable=True)
    final_response = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    events = relationship(
        "AgentRunEvent", back_populates="run", cascade="all, delete-orphan", order_by="AgentRunEvent.seq"
    )

    def __repr__(self):
        return f"<AgentRun(id={self.id}, intent={self.intent}, status={self.status})>"


class AgentRunEvent(Base):
    """Progress event emitted during a run (group.start, step.done, ...)."""
    __tablename__ = "agent_run_events"

    id = Column(String(36), primary_key=True, default=new_id)
    run_id = Column(String(36), ForeignKey("agent_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    seq = Column(Integer, nullable=False)
    kind = Column(String(50), nullable=False)
    message = Column(Text, nullable=True)
    data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    run = relationship("AgentRun", back_populates="events")


# =============================================================================
# ENTITY RESEARCH CACHE
# =============================================================================

class EntityContext(Base):
    """
    Cached research about a company or person.

    A row is considered stale once researched_at is more than seven days old.
    """
    __tablename__ = "entity_contexts"

    id = Column(String(36), primary_key=True, default=new_id)
    entity_name = Column(String(255), nullable=False, index=True)
    entity_type = Column(Enum(EntityTypeEnum), nullable=False)

    linkup_data = Column(JSON, nullable=True)
    summary = Column(Text, nullable=False, default="")
    key_facts = Column(JSON, default=list)
    sources = Column(JSON, default=list)
    crm_fields = Column(JSON, nullable=True)

    researched_at = Column(DateTime, default=utcnow)
    researched_by = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    last_accessed_at = Column(DateTime, default=utcnow, index=True)
    access_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    is_stale = Column(Boolean, default=False)

    __table_args__ = (
        UniqueConstraint("entity_name", "entity_type", name="uq_entity_context_name_type"),
    )

    def __repr__(self):
        return f"<EntityContext(name={self.entity_name}, type={self.entity_type}, v={self.version})>"


# =============================================================================
# BILLING AND CONNECTED ACCOUNTS
# =============================================================================

class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, unique=True)
    plan = Column(Enum(PlanEnum), nullable=False, default=PlanEnum.FREE)
    status = Column(Enum(SubscriptionStatusEnum), nullable=False, default=SubscriptionStatusEnum.NONE)
    source = Column(String(50), nullable=True, comment="stripe, polar or dev")
    stripe_session_id = Column(String(255), nullable=True)
    stripe_payment_intent_id = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class GoogleAccount(Base):
    """OAuth tokens for a connected Google account."""
    __tablename__ = "google_accounts"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, unique=True)
    provider = Column(String(50), nullable=False, default="google")
    email = Column(String(255), nullable=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    scope = Column(Text, nullable=True)
    expiry_ms = Column(BigInteger, nullable=True)
    token_type = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
