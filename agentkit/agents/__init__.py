"""
Agents Module - Coordinator, Specialized Agents and Planner

- BaseAgent: shared run() wrapper with timing, logging and error capture
- CoordinatorAgent: delegates a request to sub-agents and combines answers
- Specialized agents: DocumentAgent, MediaAgent, SECAgent, WebAgent
- EntityResearchAgent: cached company/person research with completeness scoring
- Planner: prompt -> structured plan -> timeline tasks or executed run
"""

from agentkit.agents.base_agent import AgentConfig, AgentContext, AgentOutput, BaseAgent
from agentkit.agents.coordinator import (
    AgentName,
    CoordinatorAgent,
    CoordinatorResult,
    Delegation,
    analyze_request,
)
from agentkit.agents.entity_research import (
    CompletenessScore,
    EntityResearchAgent,
    evaluate_completeness,
    spacy_entities,
)
from agentkit.agents.planner import (
    PlannerService,
    ServiceStepToolkit,
    execute_prompt,
    select_provider,
    start_from_prompt,
)
from agentkit.agents.specialized import DocumentAgent, MediaAgent, SECAgent, WebAgent

__all__ = [
    # Base
    "BaseAgent",
    "AgentConfig",
    "AgentContext",
    "AgentOutput",
    # Coordinator
    "CoordinatorAgent",
    "CoordinatorResult",
    "AgentName",
    "Delegation",
    "analyze_request",
    # Specialized
    "DocumentAgent",
    "MediaAgent",
    "SECAgent",
    "WebAgent",
    "EntityResearchAgent",
    "CompletenessScore",
    "evaluate_completeness",
    "spacy_entities",
    # Planner
    "PlannerService",
    "ServiceStepToolkit",
    "select_provider",
    "start_from_prompt",
    "execute_prompt",
]
