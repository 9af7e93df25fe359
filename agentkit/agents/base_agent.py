"""
Base Agent Class for Nodebench Agents

This module defines the BaseAgent class shared by the coordinator's
sub-agents:
- A single async entry point (run) that wraps the agent's handle() with
  timing, metrics, logging and error capture
- LLM access through the MultiLLMClient with provider fallback
- Logging hooks and run-event recording for the agent dashboard

Every agent receives the user's query and an AgentContext and returns an
AgentOutput. A failing agent never raises out of run(): the error is
captured on the output so the coordinator can report it next to the other
agents' results.
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from agentkit.llms.multi_llm_client import LLMProvider
from hub.observability import OperationContext

logger = logging.getLogger(__name__)


@dataclass
class AgentConfig:
    """Configuration for agent behavior"""

    # LLM settings
    preferred_provider: Optional[LLMProvider] = None
    model: Optional[str] = None
    enable_fallback: bool = True

    # Default generation parameters (only sent when set)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    # Logging settings
    log_prompts: bool = True
    log_responses: bool = True
    preview_chars: int = 200


@dataclass
class AgentContext:
    """
    Context for one agent invocation.

    ``session`` is the SQLAlchemy session of the request; agents that touch
    the workspace (documents, entity cache) use it, the others ignore it.
    """
    user_id: Optional[str] = None
    session: Any = None
    thread_id: Optional[str] = None
    run_id: Optional[str] = None
    correlation_id: Optional[str] = None
    selected_document_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "thread_id": self.thread_id,
            "run_id": self.run_id,
            "correlation_id": self.correlation_id,
            "selected_document_id": self.selected_document_id,
            "metadata": self.metadata,
        }


@dataclass
class AgentOutput:
    """Standardized output from an agent"""

    text: str = ""
    sources: List[Dict[str, Any]] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)

    success: bool = True
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "sources": self.sources,
            "data": self.data,
            "success": self.success,
            "error": self.error,
            "elapsed_ms": self.elapsed_ms,
        }


class BaseAgent(ABC):
    """
    Abstract base class for all agents.

    Subclasses must implement:
    - handle(): do the work for one query and return an AgentOutput
    """

    def __init__(
        self,
        agent_name: str,
        agent_type: str = "specialized",
        config: Optional[AgentConfig] = None,
        llm_client=None,  # MultiLLMClient instance
    ):
        self.agent_name = agent_name
        self.agent_type = agent_type
        self.config = config or AgentConfig()
        self._llm_client = llm_client

        self.agent_id = f"{agent_type}_{uuid.uuid4().hex[:8]}"

        # Performance metrics
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.average_response_time = 0.0

        logger.debug(f"Agent '{self.agent_name}' ({self.agent_type}) initialized with ID {self.agent_id}")

    @property
    def llm_client(self):
        if self._llm_client is None:
            from agentkit.llms.multi_llm_client import create_llm_client
            self._llm_client = create_llm_client()
        return self._llm_client

    @abstractmethod
    async def handle(self, query: str, context: AgentContext) -> AgentOutput:
        """
        Process one query.

        Args:
            query: The user's request, passed through unchanged
            context: Invocation context

        Returns:
            AgentOutput with markdown text, sources and structured data
        """
        pass

    def _log_event(self, event_type: str, data: Dict[str, Any], context: Optional[AgentContext] = None):
        """
        Log an event and record it on the run when there is one.

        Args:
            event_type: Type of event (e.g., "agent.start", "llm_call", "error")
            data: Event data; ``message`` is used as the event message
            context: Invocation context carrying session and run_id
        """
        if event_type == "error":
            logger.error(f"[{self.agent_name}] {event_type}: {data}")
        else:
            logger.info(f"[{self.agent_name}] {event_type}: {data.get('message', '')}")

        if context is not None and context.session is not None and context.run_id:
            try:
                from hub.services.timelines import record_run_event

                record_run_event(
                    context.session,
                    context.run_id,
                    event_type,
                    message=data.get("message"),
                    data={k: v for k, v in data.items() if k != "message"} or None,
                )
            except Exception as e:
                logger.warning(f"Failed to record run event: {e}")

    async def run(self, query: str, context: Optional[AgentContext] = None) -> AgentOutput:
        """Run handle() with metrics, logging and error capture."""
        context = context or AgentContext()
        self.total_requests += 1
        start_time = time.perf_counter()

        with OperationContext(agent=self.agent_name, run_id=context.run_id, user_id=context.user_id):
            self._log_event("agent.start", {"message": query[:self.config.preview_chars]})
            try:
                output = await self.handle(query, context)
            except Exception as e:
                self.failed_requests += 1
                logger.exception(f"Agent {self.agent_name} failed")
                self._log_event("error", {"message": str(e), "error_type": type(e).__name__}, context)
                return AgentOutput(
                    success=False,
                    error=str(e),
                    elapsed_ms=(time.perf_counter() - start_time) * 1000,
                )

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        output.elapsed_ms = elapsed_ms
        self.successful_requests += 1
        self.average_response_time += (elapsed_ms - self.average_response_time) / self.successful_requests
        return output

    async def _llm_json(self, prompt: str, system_prompt: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Ask the LLM for a JSON object using this agent's provider settings; None when absent."""
        params: Dict[str, Any] = {
            "provider": self.config.preferred_provider,
            "model": self.config.model,
            "enable_fallback": self.config.enable_fallback,
        }
        if self.config.temperature is not None:
            params["temperature"] = self.config.temperature
        if self.config.max_tokens is not None:
            params["max_tokens"] = self.config.max_tokens

        if self.config.log_prompts:
            logger.debug(f"[{self.agent_name}] llm_request: {prompt[:self.config.preview_chars]}")
        data = await self.llm_client.generate_json(prompt, system_prompt=system_prompt, **params)
        if self.config.log_responses:
            logger.debug(f"[{self.agent_name}] llm_json: {str(data)[:self.config.preview_chars]}")
        return data

    def get_metrics(self) -> Dict[str, Any]:
        """Get current performance metrics"""
        return {
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "success_rate": self.successful_requests / max(1, self.total_requests),
            "average_response_time": self.average_response_time,
        }
