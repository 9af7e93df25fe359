"""
Nodebench Hub
=============

Persistence and backend functions for the Nodebench workspace.

Modules:
    - core: Database models, schemas, and session utilities
    - services: Documents, chat threads, file documents, entity contexts,
      billing, analytics, Gmail, agent timelines and export
    - observability: Structured logging with request/run context
    - resilience: Error taxonomy and handlers
"""

__version__ = "0.1.0"

from .core.db import get_engine, get_session, init_db
from .core.models import (
    AgentRun,
    AgentTask,
    AgentTimeline,
    Base,
    Document,
    EntityContext,
    File,
    GoogleAccount,
    Node,
    Subscription,
    User,
)

__all__ = [
    # Core models
    "Base",
    "User",
    "Document",
    "Node",
    "File",
    "AgentTimeline",
    "AgentTask",
    "AgentRun",
    "EntityContext",
    "Subscription",
    "GoogleAccount",
    # Database utilities
    "get_session",
    "get_engine",
    "init_db",
]
