"""Tests for roadmap analytics."""
from datetime import datetime

from hub.core.models import Event, Tag, TagRef, Task, TaskStatusEnum, to_ms
from hub.services import analytics, chat_threads, timelines


class TestRoadmapAnalytics:

    def test_anonymous_gets_empty_shape(self, session):
        result = analytics.get_roadmap_analytics(session, None)
        assert result == analytics.empty_analytics()
        assert result["byStatus"]["tasks"] == {"todo": 0, "in_progress": 0, "done": 0, "blocked": 0}

    def test_totals_and_status(self, session, user, document):
        session.add_all([
            Task(user_id=user.id, title="Write memo", status=TaskStatusEnum.DONE),
            Task(user_id=user.id, title="Call bank"),
            Event(user_id=user.id, title="Board meeting"),
        ])
        session.flush()
        timelines.add_run(session, user.id, intent="coordinate", input="hi")

        result = analytics.get_roadmap_analytics(session, user.id)
        totals = result["totals"]
        assert totals["documents"] == 1
        assert totals["tasks"] == 2
        assert totals["events"] == 1
        assert totals["chatThreads"] == 1
        assert totals["nodes"] == 2
        assert result["byStatus"]["tasks"]["done"] == 1
        assert result["byStatus"]["tasks"]["todo"] == 1
        assert result["byStatus"]["events"]["confirmed"] == 1
        assert {item["type"] for item in result["recentActivity"]} == {"document", "task", "event", "agent_run"}

    def test_heatmap_counts_user_chat_messages(self, session, user):
        thread = chat_threads.start_thread(session, user.id, title="Chat — Today")
        chat_threads.append_message(session, user.id, thread.id, "user", "one")
        chat_threads.append_message(session, user.id, thread.id, "user", "two")
        chat_threads.append_message(session, user.id, thread.id, "assistant", "reply")

        result = analytics.get_roadmap_analytics(session, user.id)
        assert len(result["heatmap"]) == 1
        day = result["heatmap"][0]
        assert day["chatMessages"] == 2
        assert day["documents"] == 1
        assert day["totalActivity"] == 3

    def test_window_excludes_old_activity(self, session, user, document):
        document.created_at = datetime(2020, 1, 1)
        session.flush()
        result = analytics.get_roadmap_analytics(
            session, user.id, start_ms=to_ms(datetime(2024, 1, 1)), end_ms=to_ms(datetime(2024, 2, 1))
        )
        assert result["heatmap"] == []
        assert result["totals"]["documents"] == 1

    def test_heatmap_uses_caller_local_day(self, session, user, document):
        # 23:30 UTC on Jan 1 is already Jan 2 in UTC+2
        document.created_at = datetime(2024, 1, 1, 23, 30)
        session.flush()
        window = {"start_ms": to_ms(datetime(2023, 12, 31)), "end_ms": to_ms(datetime(2024, 1, 3))}

        utc_day = analytics.get_roadmap_analytics(session, user.id, **window)["heatmap"][0]
        assert utc_day["date"] == "2024-01-01"
        assert utc_day["dateMs"] == to_ms(datetime(2024, 1, 1))

        local_day = analytics.get_roadmap_analytics(session, user.id, tz_offset_minutes=120, **window)["heatmap"][0]
        assert local_day["date"] == "2024-01-02"
        assert local_day["dateMs"] == to_ms(datetime(2024, 1, 1, 22, 0))
        assert local_day["documents"] == 1

    def test_top_tags_only_for_own_items(self, session, user, other_user, document):
        foreign = Task(user_id=other_user.id, title="Not mine")
        session.add(foreign)
        tag = Tag(name="fintech", kind="topic")
        session.add(tag)
        session.flush()
        session.add_all([
            TagRef(tag_id=tag.id, target_id=document.id, target_type="document"),
            TagRef(tag_id=tag.id, target_id=foreign.id, target_type="task"),
        ])
        session.flush()

        result = analytics.get_roadmap_analytics(session, user.id)
        assert result["topTags"] == [{"name": "fintech", "count": 1, "kind": "topic"}]
