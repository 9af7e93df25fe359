"""
Entity Context Service
======================

Cache of company and person research. One row per (entity_name, entity_type);
a row older than seven days is reported stale but still served.

Usage:
    from hub.services import entity_contexts

    entity_contexts.store_entity_context(session, user_id, "Stripe", "company",
                                         summary="...", key_facts=[...])
    cached = entity_contexts.get_entity_context(session, "Stripe", "company")
    if cached and not cached["isStale"]:
        ...
"""

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy.orm import Session

from hub.core.models import EntityContext, EntityTypeEnum, to_ms, utcnow
from hub.observability import OperationLogger
from hub.resilience import NotAuthorizedError, NotFoundError, require_user

logger = logging.getLogger(__name__)

STALE_AFTER = timedelta(days=7)
MOST_ACCESSED_LIMIT = 5


def _entity_type(value: EntityTypeEnum | str) -> EntityTypeEnum:
    return value if isinstance(value, EntityTypeEnum) else EntityTypeEnum(value)


def _age(context: EntityContext) -> timedelta:
    return utcnow() - context.researched_at


def to_dict(context: EntityContext) -> dict[str, Any]:
    age = _age(context)
    return {
        "_id": context.id,
        "entityName": context.entity_name,
        "entityType": context.entity_type.value,
        "linkupData": context.linkup_data,
        "summary": context.summary,
        "keyFacts": list(context.key_facts or []),
        "sources": list(context.sources or []),
        "crmFields": context.crm_fields,
        "researchedAt": to_ms(context.researched_at),
        "researchedBy": context.researched_by,
        "lastAccessedAt": to_ms(context.last_accessed_at),
        "accessCount": context.access_count,
        "version": context.version,
        "isStale": age > STALE_AFTER,
        "ageInDays": age.days,
    }


def store_entity_context(
    session: Session,
    user_id: str | None,
    entity_name: str,
    entity_type: EntityTypeEnum | str,
    summary: str,
    key_facts: list[str] | None = None,
    sources: list[dict] | None = None,
    linkup_data: Any = None,
    crm_fields: dict | None = None,
) -> str:
    """Insert or refresh the cached research for an entity. Returns the row id."""
    user_id = require_user(user_id)
    entity_type = _entity_type(entity_type)
    now = utcnow()

    existing = (
        session.query(EntityContext)
        .filter(EntityContext.entity_name == entity_name, EntityContext.entity_type == entity_type)
        .first()
    )

    if existing:
        existing.linkup_data = linkup_data
        existing.summary = summary
        existing.key_facts = key_facts or []
        existing.sources = sources or []
        existing.crm_fields = crm_fields
        existing.researched_at = now
        existing.researched_by = user_id
        existing.last_accessed_at = now
        existing.version = (existing.version or 0) + 1
        existing.is_stale = False
        session.flush()
        logger.info(f"Refreshed entity context {entity_name} ({entity_type.value}) to v{existing.version}")
        return existing.id

    context = EntityContext(
        entity_name=entity_name,
        entity_type=entity_type,
        linkup_data=linkup_data,
        summary=summary,
        key_facts=key_facts or [],
        sources=sources or [],
        crm_fields=crm_fields,
        researched_at=now,
        researched_by=user_id,
        last_accessed_at=now,
        access_count=0,
        version=1,
        is_stale=False,
    )
    session.add(context)
    session.flush()
    logger.info(f"Stored entity context {entity_name} ({entity_type.value})")
    return context.id


def get_entity_context(session: Session, entity_name: str, entity_type: EntityTypeEnum | str) -> dict | None:
    context = (
        session.query(EntityContext)
        .filter(
            EntityContext.entity_name == entity_name,
            EntityContext.entity_type == _entity_type(entity_type),
        )
        .first()
    )
    return to_dict(context) if context else None


def update_access_count(session: Session, context_id: str) -> None:
    context = session.get(EntityContext, context_id)
    if context is None:
        raise NotFoundError("Entity context not found")
    context.access_count = (context.access_count or 0) + 1
    context.last_accessed_at = utcnow()
    session.flush()


def list_entity_contexts(
    session: Session,
    user_id: str | None,
    entity_type: EntityTypeEnum | str | None = None,
    limit: int | None = None,
) -> list[dict]:
    if not user_id:
        return []
    query = session.query(EntityContext).filter(EntityContext.researched_by == user_id)
    if entity_type:
        query = query.filter(EntityContext.entity_type == _entity_type(entity_type))
    query = query.order_by(EntityContext.last_accessed_at.desc())
    if limit:
        query = query.limit(limit)
    return [to_dict(c) for c in query.all()]


def search_entity_contexts(
    session: Session,
    user_id: str | None,
    search_term: str,
    entity_type: EntityTypeEnum | str | None = None,
) -> list[dict]:
    """Case-insensitive substring match on entity name."""
    if not user_id:
        return []
    term = search_term.lower()
    return [
        c for c in list_entity_contexts(session, user_id, entity_type)
        if term in c["entityName"].lower()
    ]


def delete_entity_context(session: Session, user_id: str | None, context_id: str) -> None:
    user_id = require_user(user_id)
    context = session.get(EntityContext, context_id)
    if context is None:
        raise NotFoundError("Entity context not found")
    if context.researched_by != user_id:
        raise NotAuthorizedError("Not authorized to delete this context")
    session.delete(context)
    session.flush()


def mark_stale_contexts(session: Session) -> dict:
    """Flag every context researched more than seven days ago."""
    with OperationLogger(logger, "mark_stale_contexts"):
        cutoff = utcnow() - STALE_AFTER
        stale = (
            session.query(EntityContext)
            .filter(EntityContext.researched_at < cutoff, EntityContext.is_stale.is_(False))
            .all()
        )
        for context in stale:
            context.is_stale = True
        session.flush()
        if stale:
            logger.info(f"Marked {len(stale)} entity contexts stale")
    return {"markedCount": len(stale)}


def get_entity_context_stats(session: Session, user_id: str | None) -> dict | None:
    if not user_id:
        return None
    contexts = list_entity_contexts(session, user_id)
    most_accessed = sorted(contexts, key=lambda c: c["accessCount"], reverse=True)[:MOST_ACCESSED_LIMIT]
    return {
        "total": len(contexts),
        "companies": sum(1 for c in contexts if c["entityType"] == EntityTypeEnum.COMPANY.value),
        "people": sum(1 for c in contexts if c["entityType"] == EntityTypeEnum.PERSON.value),
        "fresh": sum(1 for c in contexts if not c["isStale"]),
        "stale": sum(1 for c in contexts if c["isStale"]),
        "totalCacheHits": sum(c["accessCount"] for c in contexts),
        "mostAccessed": [
            {"name": c["entityName"], "type": c["entityType"], "accessCount": c["accessCount"]}
            for c in most_accessed
        ],
    }
