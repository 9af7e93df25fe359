"""Tests for the planner service, timeline planning and prompt execution."""
import pytest

from agentkit.agents.planner import PlannerService, ServiceStepToolkit, execute_prompt, select_provider, start_from_prompt
from agentkit.config import get_settings
from agentkit.core.planning import PlanDraft, StepResult
from hub.resilience import NotAuthenticatedError, NotAuthorizedError, NotFoundError
from hub.services import documents as document_service
from hub.services import timelines


def draft(intent="search", query="from llm"):
    return PlanDraft.model_validate({
        "intent": intent,
        "groups": [[{"id": "s1", "kind": "web.search", "args": {"query": query}}]],
    })


class StubLinkup:
    async def sourced_answer(self, query, depth="deep"):
        return {
            "answer": f"Answer for {query}",
            "sources": [{"name": "Stripe", "url": "https://stripe.com/pricing"}, {"url": "https://example.com"}],
        }


class TestSelectProvider:

    def test_known_and_alias(self):
        assert select_provider("gpt5mini") == "gpt5mini"
        assert select_provider("local") == "heuristic"

    def test_defaults_follow_keys(self, monkeypatch):
        assert select_provider() == "heuristic"
        assert select_provider("nonsense") == "heuristic"

        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        get_settings.cache_clear()
        assert select_provider() == "openai"

        monkeypatch.setenv("OPENROUTER_API_KEY", "or-test")
        get_settings.cache_clear()
        assert select_provider() == "grok"


class TestPlannerService:

    @pytest.mark.asyncio
    async def test_heuristic(self, llm_factory):
        plan, name = await PlannerService(llm_client=llm_factory()).plan("Search for Stripe pricing", "heuristic")
        assert name == "heuristic"
        assert plan.intent == "search"

    @pytest.mark.asyncio
    async def test_openai_structured_plan(self, llm_factory):
        llm = llm_factory(structured={("openai", "gpt-5-mini"): draft()})
        plan, name = await PlannerService(llm_client=llm).plan("anything", "openai")
        assert name == "openai"
        assert plan.groups[0][0].args == {"query": "from llm"}
        assert llm.calls[0][2]["enable_fallback"] is False

    @pytest.mark.asyncio
    async def test_failed_provider_falls_back_to_heuristic(self, llm_factory):
        plan, name = await PlannerService(llm_client=llm_factory()).plan("What is Stripe?", "gpt5mini")
        assert name == "gpt5mini"
        assert plan.final == "answer_only"

    @pytest.mark.asyncio
    async def test_grok_chain(self, monkeypatch, llm_factory):
        monkeypatch.setenv("OPENAI_MODEL", "gpt-4o")
        get_settings.cache_clear()
        llm = llm_factory(structured={("openai", "gpt-4o"): draft(query="third try")})

        plan, _ = await PlannerService(llm_client=llm).plan("x", "grok")

        attempts = [(c[2]["provider"].value, c[2]["model"]) for c in llm.calls]
        assert attempts == [("openrouter", "z-ai/glm-4.6"), ("openai", "gpt-5-mini"), ("openai", "gpt-4o")]
        assert llm.calls[0][2]["temperature"] == 0.2
        assert plan.groups[0][0].args["query"] == "third try"

    @pytest.mark.asyncio
    async def test_grok_skips_duplicate_model(self, llm_factory):
        llm = llm_factory()
        await PlannerService(llm_client=llm).plan("x", "grok")
        assert len(llm.calls) == 2


class TestStartFromPrompt:

    @pytest.fixture
    def timeline_id(self, session, user, document):
        return timelines.create_for_document(session, user.id, document.id, "Plan")

    @pytest.mark.asyncio
    async def test_plans_onto_timeline(self, session, user, timeline_id, llm_factory):
        planner = PlannerService(llm_client=llm_factory())
        result = await start_from_prompt(session, user.id, timeline_id, "Update my notes", provider="heuristic", planner=planner)

        assert result == {"timelineId": timeline_id, "provider": "heuristic"}
        timeline = timelines.get_timeline(session, user.id, timeline_id)
        assert timeline["latestRunInput"] == "Update my notes"
        assert timeline["baseStartMs"] > 0
        assert [t for t in timeline["tasks"] if t["agentType"] == "orchestrator"]

    @pytest.mark.asyncio
    async def test_override_graph(self, session, user, timeline_id):
        graph = {"nodes": [{"id": "n1", "kind": "search"}], "edges": []}
        result = await start_from_prompt(session, user.id, timeline_id, "Prompt", override_graph=graph)
        assert result["provider"] == "override"
        assert len(timelines.get_timeline(session, user.id, timeline_id)["tasks"]) == 2

    @pytest.mark.asyncio
    async def test_requires_user(self, session, timeline_id):
        with pytest.raises(NotAuthenticatedError):
            await start_from_prompt(session, None, timeline_id, "x")


class TestServiceStepToolkit:

    @pytest.fixture
    def toolkit(self, session, user, llm_factory):
        return ServiceStepToolkit(session, user.id, linkup=StubLinkup(), llm_client=llm_factory(text="Model says hi"))

    @pytest.mark.asyncio
    async def test_web_search_lists_sources(self, toolkit):
        result = await toolkit.web_search("stripe")
        assert result.text == "Answer for stripe\n- Stripe: https://stripe.com/pricing\n- https://example.com: https://example.com"

    @pytest.mark.asyncio
    async def test_rag_search(self, toolkit, document):
        hit = await toolkit.rag_search("research notes")
        assert hit.text.startswith("• Quarterly Research Notes: First paragraph")
        assert hit.data == {"documentIds": [document.id]}

        miss = await toolkit.rag_search("zebra")
        assert miss.text == "No matching notes found."

    @pytest.mark.asyncio
    async def test_create_and_edit(self, toolkit):
        created = await toolkit.create_document("x" * 100)
        assert len(created.text) == len('Created document "".') + 80

        edited = await toolkit.edit_document(created.data["documentId"], "Add a summary")
        assert edited.text == f'Appended your request to "{"x" * 80}".'
        assert (await toolkit.edit_document(None, "noop")).text == "No document selected for editing."

    @pytest.mark.asyncio
    async def test_edit_requires_ownership(self, session, document, other_user, llm_factory):
        document.is_public = True
        toolkit = ServiceStepToolkit(session, other_user.id, linkup=StubLinkup(), llm_client=llm_factory(text="hi"))
        with pytest.raises(NotAuthorizedError):
            await toolkit.edit_document(document.id, "Overwrite this")
        assert "Overwrite this" not in document_service.get_document_text(session, document.id)

    @pytest.mark.asyncio
    async def test_propose_edit_and_answer(self, toolkit, document):
        assert await toolkit.propose_edit(document.id) == "Model says hi"
        answer = await toolkit.answer("Who?", context="ctx")
        assert answer.text == "Model says hi"
        assert toolkit.llm_client.calls[-1][1] == "Context:\nctx\n\nQuestion: Who?"


class RecordingToolkit:
    async def web_search(self, query):
        return StepResult(text=f"found {query}")

    async def answer(self, message, context=None):
        return StepResult(text="final answer")


class TestExecutePrompt:

    @pytest.mark.asyncio
    async def test_records_run(self, session, user, document, llm_factory):
        timeline_id = timelines.create_for_document(session, user.id, document.id, "Run")
        planner = PlannerService(llm_client=llm_factory())

        result = await execute_prompt(
            session, user.id, "What is Stripe?", provider="heuristic",
            timeline_id=timeline_id, planner=planner, toolkit=RecordingToolkit(),
        )

        assert result["provider"] == "heuristic"
        assert result["plan"]["intent"] == "answer"
        assert result["response"] == "found What is Stripe?\n\nfinal answer"

        runs = timelines.list_runs(session, user.id, timeline_id=timeline_id)
        assert runs[0]["_id"] == result["runId"]
        assert runs[0]["status"] == "completed"
        assert runs[0]["events"]
        assert timelines.get_timeline(session, user.id, timeline_id)["latestRunOutput"] == result["response"]

    @pytest.mark.asyncio
    async def test_requires_user(self, session):
        with pytest.raises(NotAuthenticatedError):
            await execute_prompt(session, None, "x")

    @pytest.mark.asyncio
    async def test_unknown_timeline_runs_nothing(self, session, user, llm_factory):
        toolkit = RecordingToolkit()
        with pytest.raises(NotFoundError):
            await execute_prompt(
                session, user.id, "What is Stripe?", provider="heuristic", timeline_id="missing",
                planner=PlannerService(llm_client=llm_factory()), toolkit=toolkit,
            )
        assert timelines.list_runs(session, user.id) == []
