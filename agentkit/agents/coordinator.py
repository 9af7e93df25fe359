"""
Coordinator Agent

Routes a user request to the specialized agents. The pipeline is linear:

    analyze -> delegate -> call each sub-agent with the exact query -> combine

Delegation is keyword based by default; ``mode="llm"`` asks the model for
the agent list and falls back to keywords when the answer is unusable.
Runs are recorded in agent_runs (with delegate / agent.done events) and,
when a thread is given, the exchange is appended to the chat thread.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from agentkit.agents.base_agent import AgentContext, AgentOutput, BaseAgent
from hub.core.schemas import MessageRole
from hub.observability import OperationContext

logger = logging.getLogger(__name__)


class AgentName(str, Enum):
    DOCUMENT = "DocumentAgent"
    MEDIA = "MediaAgent"
    SEC = "SECAgent"
    WEB = "WebAgent"
    ENTITY_RESEARCH = "EntityResearchAgent"


@dataclass
class Delegation:
    agents: List[AgentName]
    reasoning: str


@dataclass
class CoordinatorResult:
    response: str
    agents_used: List[str]
    reasoning: str
    results: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    run_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "agentsUsed": self.agents_used,
            "reasoning": self.reasoning,
            "results": self.results,
            "runId": self.run_id,
        }


# (agent, reasoning, matcher) in evaluation order
_SEC_PATTERN = re.compile(r"\bsec\b|10-k|10-q|8-k|edgar|filing")

DELEGATION_RULES = [
    (AgentName.ENTITY_RESEARCH, "Research request detected.",
     lambda t: any(k in t for k in ("research", "anthropic", "openai", "stripe", "company", "companies"))),
    (AgentName.DOCUMENT, "Document operation detected.",
     lambda t: any(k in t for k in ("document", "thesis", "report", "add", "update", "edit", "title"))),
    (AgentName.MEDIA, "Media request detected.",
     lambda t: any(k in t for k in ("video", "youtube", "image"))),
    (AgentName.WEB, "Web search detected.",
     lambda t: any(k in t for k in ("search", "find", "latest news"))),
    (AgentName.SEC, "SEC filing request detected.",
     lambda t: _SEC_PATTERN.search(t) is not None),
]

LLM_DELEGATION_PROMPT = (
    "You route user requests to specialized agents. Available agents:\n"
    "- DocumentAgent: create, find, read or edit the user's documents\n"
    "- MediaAgent: videos (YouTube) and images\n"
    "- SECAgent: SEC EDGAR filings (10-K, 10-Q, 8-K)\n"
    "- WebAgent: web search and current news\n"
    "- EntityResearchAgent: research on companies and people\n"
    'Respond with JSON only: {"agents": ["AgentName", ...], "reasoning": "..."}'
)


def _unique(agents) -> List[AgentName]:
    seen: List[AgentName] = []
    for agent in agents:
        if agent not in seen:
            seen.append(agent)
    return seen


def analyze_request(text: str) -> Delegation:
    """Keyword delegation. Defaults to DocumentAgent when nothing matches."""
    lowered = text.lower()
    agents, reasons = [], []
    for agent, reason, matches in DELEGATION_RULES:
        if matches(lowered):
            agents.append(agent)
            reasons.append(reason)

    if not agents:
        return Delegation(agents=[AgentName.DOCUMENT], reasoning="Default to DocumentAgent")

    reasoning = " ".join(reasons).strip()
    return Delegation(agents=_unique(agents), reasoning=reasoning or "Keyword-based delegation")


def parse_llm_delegation(data: Any) -> Optional[Delegation]:
    """Validate an LLM delegation payload; None when unusable."""
    if not isinstance(data, dict) or not isinstance(data.get("agents"), list):
        return None
    valid = {a.value: a for a in AgentName}
    agents = _unique(valid[name] for name in data["agents"] if isinstance(name, str) and name in valid)
    if not agents:
        return None
    reasoning = str(data.get("reasoning") or "").strip() or "LLM delegation"
    return Delegation(agents=agents, reasoning=reasoning)


def default_agents(llm_client=None) -> Dict[AgentName, BaseAgent]:
    from agentkit.agents.entity_research import EntityResearchAgent
    from agentkit.agents.specialized import DocumentAgent, MediaAgent, SECAgent, WebAgent

    return {
        AgentName.DOCUMENT: DocumentAgent(llm_client=llm_client),
        AgentName.MEDIA: MediaAgent(llm_client=llm_client),
        AgentName.SEC: SECAgent(llm_client=llm_client),
        AgentName.WEB: WebAgent(llm_client=llm_client),
        AgentName.ENTITY_RESEARCH: EntityResearchAgent(llm_client=llm_client),
    }


class CoordinatorAgent:
    """Delegates a request to sub-agents and combines their answers."""

    def __init__(self, agents: Optional[Dict[AgentName, BaseAgent]] = None, llm_client=None, mode: str = "keyword"):
        self._llm_client = llm_client
        self.agents = agents if agents is not None else default_agents(llm_client)
        self.mode = mode

    @property
    def llm_client(self):
        if self._llm_client is None:
            from agentkit.llms.multi_llm_client import create_llm_client
            self._llm_client = create_llm_client()
        return self._llm_client

    async def delegate(self, request: str, mode: Optional[str] = None) -> Delegation:
        if (mode or self.mode) == "llm":
            data = await self.llm_client.generate_json(request, system_prompt=LLM_DELEGATION_PROMPT)
            delegation = parse_llm_delegation(data)
            if delegation:
                return delegation
            logger.info("LLM delegation unusable; falling back to keyword analysis")
        return analyze_request(request)

    @staticmethod
    def combine(outputs: List[tuple]) -> str:
        sections = []
        for name, output in outputs:
            if output.success:
                if output.text:
                    sections.append(output.text)
            else:
                sections.append(f"{name.value} failed: {output.error}")
        return "\n\n".join(sections)

    async def run(
        self,
        request: str,
        user_id: Optional[str] = None,
        thread_id: Optional[str] = None,
        session=None,
        mode: Optional[str] = None,
    ) -> CoordinatorResult:
        """Run the full pipeline for one request."""
        from hub.services import chat_threads, timelines

        start = time.perf_counter()
        persist = session is not None and user_id is not None

        if persist and thread_id:
            chat_threads.append_message(session, user_id, thread_id, MessageRole.USER, request)
        run_id = timelines.add_run(session, user_id, intent="coordinate", input=request, thread_id=thread_id) if persist else None

        with OperationContext(run_id=run_id, agent="Coordinator", user_id=user_id):
            delegation = await self.delegate(request, mode)
            agents = [name for name in delegation.agents if name in self.agents]
            logger.info(f"Delegating to {[a.value for a in agents]}: {delegation.reasoning}")
            if persist:
                timelines.record_run_event(session, run_id, "delegate", delegation.reasoning,
                                           {"agents": [a.value for a in agents]})

            context = AgentContext(user_id=user_id, session=session, thread_id=thread_id, run_id=run_id)
            results: List[AgentOutput] = await asyncio.gather(*(self.agents[name].run(request, context) for name in agents))
            outputs = list(zip(agents, results))

            if persist:
                for name, output in outputs:
                    status = "ok" if output.success else "error"
                    timelines.record_run_event(session, run_id, "agent.done", f"{name.value} {status}",
                                               {"elapsedMs": round(output.elapsed_ms), "error": output.error})

        response = self.combine(outputs)
        elapsed_ms = int((time.perf_counter() - start) * 1000)

        if persist:
            if thread_id:
                chat_threads.append_message(
                    session, user_id, thread_id, MessageRole.ASSISTANT, response,
                    metadata={"agentsUsed": [a.value for a in agents], "elapsedMs": elapsed_ms},
                )
            timelines.finish_run(session, run_id, response, failed=bool(outputs) and not any(o.success for _, o in outputs))

        return CoordinatorResult(
            response=response,
            agents_used=[a.value for a in agents],
            reasoning=delegation.reasoning,
            results={name.value: output.to_dict() for name, output in outputs},
            run_id=run_id,
        )
