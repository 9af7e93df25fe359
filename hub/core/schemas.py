"""
Nodebench Hub - Pydantic Validation Schemas
===========================================

Enums and payload models validated before they reach the database.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ExportFormat(str, Enum):
    MARKDOWN = "markdown"
    JSON = "json"
    TEXT = "text"


class FileType(str, Enum):
    CSV = "csv"
    EXCEL = "excel"
    PDF = "pdf"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    TEXT = "text"
    UNKNOWN = "unknown"


# =============================================================================
# TIMELINE SNAPSHOTS
# =============================================================================


class TimelineTaskIn(BaseModel):
    """A task as produced by the planner or an imported snapshot."""

    model_config = ConfigDict(extra="ignore")

    id: str
    parentId: str | None = None
    name: str
    startOffsetMs: int | None = None
    startMs: int | None = None
    durationMs: int = Field(default=0, ge=0)
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    status: str = "pending"
    agentType: str | None = None
    icon: str | None = None
    color: str | None = None
    description: str | None = None


class TimelineLinkIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sourceId: str
    targetId: str
    type: str = "e2e"


class ProviderOutput(BaseModel):
    """Tasks, links and graph returned by a planner provider."""

    tasks: list[TimelineTaskIn]
    links: list[TimelineLinkIn] = Field(default_factory=list)
    graph: dict[str, Any] | None = None
