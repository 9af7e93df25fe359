"""
Nodebench Agent Kit
===================

Multi-agent orchestration for the Nodebench workspace:
- Coordinator that delegates requests to specialized agents
- Specialized agents (documents, media, SEC filings, web, entity research)
- Planner with structured plans, templated step arguments and parallel groups
- Multi-LLM support with automatic fallback
- Task trees for the agent timeline

Usage:
    from agentkit.agents import CoordinatorAgent
    from agentkit.llms import MultiLLMClient
    from agentkit.core import make_plan, execute_structured_plan
"""

from agentkit.agents import BaseAgent, CoordinatorAgent
from agentkit.core import Plan, execute_structured_plan, make_plan
from agentkit.llms import MultiLLMClient

__all__ = [
    "BaseAgent",
    "CoordinatorAgent",
    "Plan",
    "make_plan",
    "execute_structured_plan",
    "MultiLLMClient",
]
