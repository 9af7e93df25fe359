"""Tests for request delegation and the coordinator pipeline."""
import pytest

from agentkit.agents.base_agent import AgentOutput, BaseAgent
from agentkit.agents.coordinator import AgentName, CoordinatorAgent, analyze_request, parse_llm_delegation
from hub.services import chat_threads, timelines


class EchoAgent(BaseAgent):
    def __init__(self, name, reply):
        super().__init__(name)
        self.reply = reply
        self.queries = []

    async def handle(self, query, context):
        self.queries.append(query)
        return AgentOutput(text=self.reply)


class BrokenAgent(BaseAgent):
    async def handle(self, query, context):
        raise RuntimeError("upstream timeout")


class TestAnalyzeRequest:

    def test_single_agent(self):
        delegation = analyze_request("Research Stripe pricing")
        assert delegation.agents == [AgentName.ENTITY_RESEARCH]
        assert delegation.reasoning == "Research request detected."

    def test_multiple_agents_in_rule_order(self):
        delegation = analyze_request("Find the latest 10-K filing for Apple")
        assert delegation.agents == [AgentName.WEB, AgentName.SEC]
        assert delegation.reasoning == "Web search detected. SEC filing request detected."

    def test_media(self):
        assert analyze_request("Show me a YouTube video on tides").agents == [AgentName.MEDIA]

    def test_sec_needs_whole_word(self):
        assert analyze_request("Give me a second opinion").agents == [AgentName.DOCUMENT]

    def test_default(self):
        delegation = analyze_request("hello there")
        assert delegation.agents == [AgentName.DOCUMENT]
        assert delegation.reasoning == "Default to DocumentAgent"


class TestParseLLMDelegation:

    def test_valid_payload(self):
        delegation = parse_llm_delegation({"agents": ["WebAgent", "Bogus", "WebAgent"], "reasoning": " news "})
        assert delegation.agents == [AgentName.WEB]
        assert delegation.reasoning == "news"

    def test_default_reasoning(self):
        assert parse_llm_delegation({"agents": ["SECAgent"]}).reasoning == "LLM delegation"

    @pytest.mark.parametrize("payload", [None, "WebAgent", {"agents": "WebAgent"}, {"agents": ["Bogus"]}])
    def test_unusable_payloads(self, payload):
        assert parse_llm_delegation(payload) is None


class TestCoordinatorAgent:

    @pytest.fixture
    def agents(self):
        return {
            AgentName.WEB: EchoAgent("WebAgent", "web says hi"),
            AgentName.ENTITY_RESEARCH: EchoAgent("EntityResearchAgent", "research says hi"),
            AgentName.SEC: BrokenAgent("SECAgent"),
        }

    @pytest.mark.asyncio
    async def test_run_without_persistence(self, agents, fake_llm):
        coordinator = CoordinatorAgent(agents=agents, llm_client=fake_llm)
        result = await coordinator.run("Find news about Stripe")

        assert result.agents_used == ["EntityResearchAgent", "WebAgent"]
        assert result.response == "research says hi\n\nweb says hi"
        assert result.run_id is None
        assert agents[AgentName.WEB].queries == ["Find news about Stripe"]

    @pytest.mark.asyncio
    async def test_unavailable_agents_are_skipped(self, agents, fake_llm):
        result = await CoordinatorAgent(agents=agents, llm_client=fake_llm).run("Show me a video")
        assert result.agents_used == []
        assert result.response == ""

    @pytest.mark.asyncio
    async def test_failed_agent_is_reported(self, agents, fake_llm):
        result = await CoordinatorAgent(agents=agents, llm_client=fake_llm).run("search the SEC filings")
        assert result.response == "web says hi\n\nSECAgent failed: upstream timeout"
        assert result.results["SECAgent"]["success"] is False

    @pytest.mark.asyncio
    async def test_llm_mode(self, agents, llm_factory):
        llm = llm_factory(json_data={"agents": ["SECAgent", "WebAgent"], "reasoning": "filings"})
        result = await CoordinatorAgent(agents=agents, llm_client=llm, mode="llm").run("anything")
        assert result.agents_used == ["SECAgent", "WebAgent"]
        assert result.reasoning == "filings"

    @pytest.mark.asyncio
    async def test_llm_mode_falls_back_to_keywords(self, agents, llm_factory):
        llm = llm_factory(json_data={"agents": []})
        result = await CoordinatorAgent(agents=agents, llm_client=llm).run("Research Stripe", mode="llm")
        assert result.agents_used == ["EntityResearchAgent"]

    @pytest.mark.asyncio
    async def test_run_is_recorded_on_thread(self, session, user, agents, fake_llm):
        thread = chat_threads.start_thread(session, user.id, "Chat Jan 1")
        coordinator = CoordinatorAgent(agents=agents, llm_client=fake_llm)

        result = await coordinator.run("Search SEC filings", user_id=user.id, thread_id=thread.id, session=session)

        run = timelines.list_runs(session, user.id)[0]
        assert run["_id"] == result.run_id
        assert run["status"] == "completed"
        assert run["threadId"] == thread.id
        kinds = [e["kind"] for e in run["events"]]
        assert kinds[0] == "delegate"
        assert kinds.count("agent.done") == 2
        assert "error" in kinds

        _, messages = chat_threads.get_thread_messages(session, user.id, thread.id)
        assert [m["role"] for m in messages] == ["user", "assistant"]
        assert messages[1]["content"] == result.response
        assert messages[1]["agentsUsed"] == ["WebAgent", "SECAgent"]

    @pytest.mark.asyncio
    async def test_all_agents_failing_fails_the_run(self, session, user, agents, fake_llm):
        result = await CoordinatorAgent(agents=agents, llm_client=fake_llm).run(
            "10-K for AAPL", user_id=user.id, session=session
        )
        assert timelines.list_runs(session, user.id)[0]["status"] == "failed"
        assert result.to_dict()["agentsUsed"] == ["SECAgent"]
