"""Tests for the entity research cache."""
from datetime import timedelta

import pytest

from hub.core.models import EntityContext, utcnow
from hub.resilience import NotAuthenticatedError, NotAuthorizedError, NotFoundError
from hub.services import entity_contexts


@pytest.fixture
def stripe_context(session, user):
    return entity_contexts.store_entity_context(
        session, user.id, "Stripe", "company",
        summary="Payments infrastructure.",
        key_facts=["Founded 2010"],
        sources=[{"name": "Stripe", "url": "https://stripe.com"}],
    )


class TestEntityContexts:

    def test_store_and_get(self, session, stripe_context):
        cached = entity_contexts.get_entity_context(session, "Stripe", "company")
        assert cached["_id"] == stripe_context
        assert cached["keyFacts"] == ["Founded 2010"]
        assert cached["version"] == 1
        assert cached["accessCount"] == 0
        assert cached["isStale"] is False
        assert cached["ageInDays"] == 0

    def test_lookup_is_per_type(self, session, stripe_context):
        assert entity_contexts.get_entity_context(session, "Stripe", "person") is None

    def test_store_requires_user(self, session):
        with pytest.raises(NotAuthenticatedError):
            entity_contexts.store_entity_context(session, None, "Stripe", "company", summary="")

    def test_restore_bumps_version(self, session, user, stripe_context):
        context = session.get(EntityContext, stripe_context)
        context.is_stale = True
        second = entity_contexts.store_entity_context(session, user.id, "Stripe", "company", summary="Updated")
        assert second == stripe_context
        cached = entity_contexts.get_entity_context(session, "Stripe", "company")
        assert cached["version"] == 2
        assert cached["summary"] == "Updated"
        assert cached["keyFacts"] == []
        assert context.is_stale is False

    def test_stale_after_seven_days(self, session, stripe_context):
        context = session.get(EntityContext, stripe_context)
        context.researched_at = utcnow() - timedelta(days=8)
        session.flush()

        cached = entity_contexts.get_entity_context(session, "Stripe", "company")
        assert cached["isStale"] is True
        assert cached["ageInDays"] == 8

        assert entity_contexts.mark_stale_contexts(session) == {"markedCount": 1}
        assert entity_contexts.mark_stale_contexts(session) == {"markedCount": 0}

    def test_update_access_count(self, session, stripe_context):
        entity_contexts.update_access_count(session, stripe_context)
        entity_contexts.update_access_count(session, stripe_context)
        assert entity_contexts.get_entity_context(session, "Stripe", "company")["accessCount"] == 2

        with pytest.raises(NotFoundError):
            entity_contexts.update_access_count(session, "missing")

    def test_search_and_list(self, session, user, stripe_context):
        entity_contexts.store_entity_context(session, user.id, "Patrick Collison", "person", summary="CEO")

        assert len(entity_contexts.list_entity_contexts(session, user.id)) == 2
        assert len(entity_contexts.list_entity_contexts(session, user.id, entity_type="person")) == 1
        found = entity_contexts.search_entity_contexts(session, user.id, "STRI")
        assert [c["entityName"] for c in found] == ["Stripe"]
        assert entity_contexts.search_entity_contexts(session, None, "stripe") == []

    def test_delete_checks_owner(self, session, other_user, user, stripe_context):
        with pytest.raises(NotAuthorizedError):
            entity_contexts.delete_entity_context(session, other_user.id, stripe_context)
        entity_contexts.delete_entity_context(session, user.id, stripe_context)
        assert entity_contexts.get_entity_context(session, "Stripe", "company") is None

    def test_stats(self, session, user, stripe_context):
        entity_contexts.store_entity_context(session, user.id, "Patrick Collison", "person", summary="CEO")
        entity_contexts.update_access_count(session, stripe_context)

        stats = entity_contexts.get_entity_context_stats(session, user.id)
        assert stats["total"] == 2
        assert stats["companies"] == 1
        assert stats["people"] == 1
        assert stats["fresh"] == 2
        assert stats["stale"] == 0
        assert stats["totalCacheHits"] == 1
        assert stats["mostAccessed"][0] == {"name": "Stripe", "type": "company", "accessCount": 1}
        assert entity_contexts.get_entity_context_stats(session, None) is None
