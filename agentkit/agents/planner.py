"""
Planner Service

Turns a prompt into a structured plan and lays it out on an agent timeline.

Providers:
- heuristic: local planner, no external API ("local" is an alias)
- openai:    structured plan from the configured OpenAI model
- gpt5mini:  structured plan from gpt-5-mini
- grok:      structured plan from the OpenRouter model, falling back to
             gpt-5-mini, then the configured OpenAI model

Every provider ends in the heuristic planner, so planning always yields a
plan. When no provider is requested the choice follows the configured
keys: OpenRouter, then OpenAI, then heuristic.

Usage:
    from agentkit.agents.planner import start_from_prompt

    result = await start_from_prompt(session, user_id, timeline_id, "Research Stripe pricing")
    # {"timelineId": ..., "provider": "grok"}
"""

import logging
import time
from typing import Any, Dict, Optional

from agentkit.config import get_settings
from agentkit.core.plan_executor import ExecutionContext, RunEventRecorder, execute_structured_plan
from agentkit.core.planning import Plan, PlanDraft, StepResult, make_plan
from agentkit.core.task_tree import override_graph_to_provider_output, plan_to_provider_output
from agentkit.llms.multi_llm_client import LLMProvider
from agentkit.tools.web_search import LinkupClient
from hub.resilience import require_user
from hub.services import documents as document_service
from hub.services import timelines

logger = logging.getLogger(__name__)

PLANNER_SYSTEM_PROMPT = (
    "You are an orchestrator that returns ONLY JSON per the schema. "
    "Plan small, safe steps. Use parallel groups when independent."
)
GPT5_MINI_MODEL = "gpt-5-mini"
HEURISTIC_MAX_STEPS = 6
PROVIDERS = ("heuristic", "openai", "gpt5mini", "grok")
PROVIDER_ALIASES = {"local": "heuristic"}


def select_provider(requested: Optional[str] = None) -> str:
    """Requested provider if known, else the best one the configured keys allow."""
    if requested:
        requested = PROVIDER_ALIASES.get(requested, requested)
        if requested in PROVIDERS:
            return requested
        logger.warning(f"Unknown planner provider '{requested}'; choosing from configuration")

    settings = get_settings()
    if settings.OPENROUTER_API_KEY:
        return "grok"
    if settings.OPENAI_API_KEY:
        return "openai"
    return "heuristic"


class PlannerService:
    """Provider dispatch with fallback to the heuristic planner."""

    def __init__(self, llm_client=None):
        self._llm_client = llm_client

    @property
    def llm_client(self):
        if self._llm_client is None:
            from agentkit.llms.multi_llm_client import create_llm_client
            self._llm_client = create_llm_client()
        return self._llm_client

    async def _structured_plan(self, prompt: str, provider: LLMProvider, model: str, **kwargs) -> Optional[Plan]:
        result = await self.llm_client.generate_structured(
            prompt,
            PlanDraft,
            system_prompt=PLANNER_SYSTEM_PROMPT,
            provider=provider,
            model=model,
            enable_fallback=False,
            **kwargs
        )
        draft = result.get("parsed")
        if result.get("success") and draft is not None and draft.groups:
            return draft.to_plan()
        logger.warning(f"{provider.value} planner ({model}) failed; falling back: {result.get('error')}")
        return None

    async def heuristic(self, prompt: str) -> Plan:
        return make_plan(prompt, max_steps=HEURISTIC_MAX_STEPS)

    async def openai(self, prompt: str) -> Plan:
        plan = await self._structured_plan(prompt, LLMProvider.OPENAI, get_settings().OPENAI_MODEL)
        return plan or await self.heuristic(prompt)

    async def gpt5mini(self, prompt: str) -> Plan:
        plan = await self._structured_plan(prompt, LLMProvider.OPENAI, GPT5_MINI_MODEL)
        return plan or await self.heuristic(prompt)

    async def grok(self, prompt: str) -> Plan:
        settings = get_settings()
        plan = await self._structured_plan(prompt, LLMProvider.OPENROUTER, settings.OPENROUTER_MODEL, temperature=0.2)
        if plan is None:
            plan = await self._structured_plan(prompt, LLMProvider.OPENAI, GPT5_MINI_MODEL)
        if plan is None and settings.OPENAI_MODEL != GPT5_MINI_MODEL:
            plan = await self._structured_plan(prompt, LLMProvider.OPENAI, settings.OPENAI_MODEL)
        return plan or await self.heuristic(prompt)

    async def plan(self, prompt: str, provider: Optional[str] = None) -> tuple[Plan, str]:
        """Return (plan, provider name used for dispatch)."""
        name = select_provider(provider)
        logger.info(f"Planning with provider '{name}'")
        return await getattr(self, name)(prompt), name


async def start_from_prompt(
    session,
    user_id: Optional[str],
    timeline_id: str,
    prompt: str,
    provider: Optional[str] = None,
    override_graph: Optional[Dict[str, Any]] = None,
    planner: Optional[PlannerService] = None,
) -> Dict[str, Any]:
    """
    Plan ``prompt`` and apply the resulting task tree to a timeline.

    An override graph with nodes and edges replaces planning entirely.
    """
    user_id = require_user(user_id)
    now_ms = int(time.time() * 1000)

    if override_graph and override_graph.get("nodes") is not None and override_graph.get("edges") is not None:
        output = override_graph_to_provider_output(override_graph, prompt)
        provider_name = "override"
    else:
        plan, provider_name = await (planner or PlannerService()).plan(prompt, provider)
        output = plan_to_provider_output(plan, prompt)

    timelines.apply_plan(session, user_id, timeline_id, output["tasks"], output["links"], base_start_ms=now_ms)
    timelines.set_latest_run(session, user_id, timeline_id, input=prompt)
    logger.info(f"Applied {len(output['tasks'])} planned tasks to timeline {timeline_id}")
    return {"timelineId": timeline_id, "provider": provider_name}


# =============================================================================
# Plan execution against the workspace
# =============================================================================

EDITOR_SYSTEM_PROMPT = "You are an expert technical editor. Return ONLY well-structured Markdown for the page; no explanations."
ANSWER_SYSTEM_PROMPT = "You are a helpful assistant. Answer concisely using the provided context when it is relevant."
DEFAULT_PROPOSAL = "# Outline\n\n- Section 1\n- Section 2"


class ServiceStepToolkit:
    """Step toolkit backed by the hub services, Linkup and the LLM client."""

    def __init__(self, session, user_id: str, linkup: Optional[LinkupClient] = None, llm_client=None):
        self.session = session
        self.user_id = user_id
        self.linkup = linkup or LinkupClient()
        self._llm_client = llm_client

    @property
    def llm_client(self):
        if self._llm_client is None:
            from agentkit.llms.multi_llm_client import create_llm_client
            self._llm_client = create_llm_client()
        return self._llm_client

    async def web_search(self, query: str) -> StepResult:
        result = await self.linkup.sourced_answer(query)
        lines = [result["answer"]]
        lines.extend(f"- {s.get('name') or s.get('url')}: {s.get('url')}" for s in result["sources"][:5])
        return StepResult(text="\n".join(lines), data={"sources": result["sources"]})

    async def rag_search(self, query: str) -> StepResult:
        matches = document_service.find_documents_by_title(self.session, self.user_id, query)
        if not matches:
            return StepResult(text="No matching notes found.", data={"documentIds": []})
        lines = []
        for document in matches:
            text = document_service.get_document_text(self.session, document.id)
            lines.append(f"• {document.title}: {text[:200]}")
        return StepResult(text="\n".join(lines), data={"documentIds": [d.id for d in matches]})

    async def create_document(self, ask: str) -> StepResult:
        document = document_service.create_document(self.session, self.user_id, ask[:80])
        return StepResult(text=f'Created document "{document.title}".', data={"documentId": document.id})

    async def read_first_chunk(self, document_id: str, max_chars: int) -> Dict[str, Any]:
        return document_service.read_first_chunk(self.session, self.user_id, document_id, max_chars=max_chars)

    async def edit_document(self, document_id: Optional[str], instruction: str) -> StepResult:
        if not document_id:
            return StepResult(text="No document selected for editing.")
        document = document_service.get_document_for_edit(self.session, self.user_id, document_id)
        document_service.append_node(self.session, document, instruction, author_id=self.user_id)
        return StepResult(text=f'Appended your request to "{document.title}".', data={"documentId": document.id})

    async def propose_edit(self, document_id: str) -> str:
        document = document_service.get_document(self.session, self.user_id, document_id)
        full = document_service.get_document_text(self.session, document.id)[:20000]
        result = await self.llm_client.generate(
            "Reorganize the following page into clear hierarchical sections with headings (#, ##, ###), "
            "paragraphs, lists, quotes (>), and callouts. Preserve all important content, deduplicate, "
            f"and improve clarity.\n\nPAGE CONTENT:\n\n{full}",
            system_prompt=EDITOR_SYSTEM_PROMPT,
        )
        return (result.get("text") or "").strip() or DEFAULT_PROPOSAL

    async def answer(self, message: str, context: Optional[str] = None) -> StepResult:
        prompt = f"Context:\n{context}\n\nQuestion: {message}" if context else message
        result = await self.llm_client.generate(prompt, system_prompt=ANSWER_SYSTEM_PROMPT)
        if not result.get("success"):
            return StepResult(text=f"Unable to generate an answer: {result.get('error')}")
        return StepResult(text=result["text"], data={"model": result.get("model")})


async def execute_prompt(
    session,
    user_id: Optional[str],
    prompt: str,
    provider: Optional[str] = None,
    document_id: Optional[str] = None,
    timeline_id: Optional[str] = None,
    planner: Optional[PlannerService] = None,
    toolkit=None,
) -> Dict[str, Any]:
    """Plan ``prompt``, execute the plan and record it as an agent run."""
    user_id = require_user(user_id)
    plan, provider_name = await (planner or PlannerService()).plan(prompt, provider)

    run_id = timelines.add_run(session, user_id, intent=plan.intent, input=prompt, timeline_id=timeline_id)
    recorder = RunEventRecorder(session, run_id)
    context = ExecutionContext(message=prompt, user_id=user_id, selected_document_id=document_id)

    try:
        response = await execute_structured_plan(
            plan, toolkit or ServiceStepToolkit(session, user_id), context, events=recorder
        )
    except Exception:
        timelines.finish_run(session, run_id, None, failed=True)
        raise

    timelines.finish_run(session, run_id, response)
    if timeline_id:
        timelines.set_latest_run(session, user_id, timeline_id, output=response)

    return {
        "runId": run_id,
        "provider": provider_name,
        "plan": plan.model_dump(mode="json"),
        "response": response,
    }
