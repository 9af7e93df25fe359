"""
Multi-LLM Client for Nodebench Agents

One async interface over the chat-completion providers the agents use:
- OpenRouter and OpenAI, both through the OpenAI SDK (OpenRouter is API compatible)
- A deterministic local adapter so the pipeline runs without any API key
- Fallback across providers in a configurable order
- Structured output: pydantic models parsed from the completion
- JSON extraction from free-form completions

Adapters never raise. A failed call becomes an LLMResponse with
success=False, and the client moves on to the next provider.
"""

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

Messages = Optional[List[Dict[str, str]]]

# Sampling options forwarded to the SDK; anything else is dropped
SAMPLING_OPTIONS = ("temperature", "top_p", "max_tokens", "max_completion_tokens")


class LLMProvider(Enum):
    OPENROUTER = "openrouter"
    OPENAI = "openai"
    LOCAL = "local"


class ProviderStatus(Enum):
    AVAILABLE = "available"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"
    UNAVAILABLE = "unavailable"


@dataclass
class LLMConfig:
    """Keys, endpoints and model defaults for every provider."""

    openai_api_key: Optional[str] = None
    openrouter_api_key: Optional[str] = None

    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_http_referer: str = "http://localhost"
    openrouter_title: str = "Agent Dashboard"

    default_models: Dict[str, str] = field(
        default_factory=lambda: {"openrouter": "z-ai/glm-4.6", "openai": "gpt-5-mini", "local": "echo"}
    )
    fallback_order: List[str] = field(default_factory=lambda: ["openrouter", "openai", "local"])

    request_timeout: float = 60.0
    max_retries: int = 2

    @classmethod
    def from_settings(cls, settings=None, **overrides) -> "LLMConfig":
        if settings is None:
            from agentkit.config import get_settings
            settings = get_settings()
        config = cls(
            openai_api_key=settings.OPENAI_API_KEY,
            openrouter_api_key=settings.OPENROUTER_API_KEY,
            openrouter_base_url=settings.OPENROUTER_BASE_URL,
            openrouter_http_referer=settings.OPENROUTER_HTTP_REFERER,
            openrouter_title=settings.OPENROUTER_X_TITLE,
        )
        config.default_models.update(openrouter=settings.OPENROUTER_MODEL, openai=settings.OPENAI_MODEL)
        for key, value in overrides.items():
            setattr(config, key, value)
        return config


@dataclass
class LLMResponse:
    """Outcome of one provider call."""

    success: bool
    text: str
    provider: LLMProvider
    model: str
    usage: Dict[str, int] = field(default_factory=dict)
    finish_reason: Optional[str] = None
    latency_ms: float = 0.0
    error: Optional[str] = None
    error_type: Optional[str] = None
    parsed: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Result shape returned by MultiLLMClient."""
        if not self.success:
            return {"text": "", "usage": {}, "error": self.error, "success": False}
        result = {
            "text": self.text,
            "usage": self.usage,
            "provider": self.provider.value,
            "model": self.model,
            "latency_ms": self.latency_ms,
            "success": True,
        }
        if self.parsed is not None:
            result["parsed"] = self.parsed
        return result


@dataclass
class ProviderStats:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    last_error: Optional[str] = None


_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def extract_json(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Pull a JSON object out of a completion.

    Tries the whole text (minus code fences) first, then the widest
    ``{...}`` span. Returns None when nothing parses to an object.
    """
    if not text:
        return None
    candidates = [_FENCE_RE.sub("", text.strip())]
    match = _OBJECT_RE.search(text)
    if match:
        candidates.append(match.group(0))
    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except (json.JSONDecodeError, TypeError):
            continue
        if isinstance(value, dict):
            return value
    return None


class BaseLLMAdapter(ABC):
    """Common bookkeeping for provider adapters."""

    provider: LLMProvider

    def __init__(self, config: LLMConfig):
        self.config = config
        self.status = ProviderStatus.UNAVAILABLE
        self.stats = ProviderStats()

    @abstractmethod
    async def generate(self, prompt: str, messages: Messages = None, system_prompt: Optional[str] = None,
                       model: Optional[str] = None, **kwargs) -> LLMResponse:
        ...

    @abstractmethod
    def is_available(self) -> bool:
        ...

    async def generate_structured(self, prompt: str, response_model: Type[BaseModel],
                                  system_prompt: Optional[str] = None, model: Optional[str] = None,
                                  **kwargs) -> LLMResponse:
        """Ask for JSON matching ``response_model`` and validate the completion."""
        schema = json.dumps(response_model.model_json_schema())
        instructions = f"{system_prompt or ''}\nRespond with a single JSON object matching this schema:\n{schema}"
        response = await self.generate(prompt, system_prompt=instructions.strip(), model=model, **kwargs)
        if not response.success:
            return response

        payload = extract_json(response.text)
        if payload is None:
            return self.failed(response.model, "Completion did not contain a JSON object", "ParseError")
        try:
            response.parsed = response_model.model_validate(payload)
        except ValidationError as e:
            return self.failed(response.model, f"Invalid structured output: {e}", "ParseError")
        return response

    def default_model(self) -> str:
        return self.config.default_models.get(self.provider.value, "default")

    def succeeded(self, model: str, text: str, started: float, **fields) -> LLMResponse:
        self.stats.successful_requests += 1
        self.status = ProviderStatus.AVAILABLE
        return LLMResponse(success=True, text=text, provider=self.provider, model=model,
                           latency_ms=(time.time() - started) * 1000, **fields)

    def failed(self, model: Optional[str], error: str, error_type: str) -> LLMResponse:
        self.stats.failed_requests += 1
        self.stats.last_error = error
        return LLMResponse(success=False, text="", provider=self.provider, model=model or self.default_model(),
                           error=error, error_type=error_type)


class OpenAIAdapter(BaseLLMAdapter):
    """OpenAI chat completions through ``openai.AsyncOpenAI``."""

    provider = LLMProvider.OPENAI

    def __init__(self, config: LLMConfig):
        super().__init__(config)
        self.client = None
        api_key = self._api_key()
        if not api_key:
            logger.debug(f"No API key for {self.provider.value}; adapter unavailable")
            return

        import openai

        self.client = openai.AsyncOpenAI(
            api_key=api_key, timeout=config.request_timeout, max_retries=config.max_retries, **self._client_options()
        )
        self.status = ProviderStatus.AVAILABLE
        logger.info(f"{self.provider.value} adapter ready")

    def _api_key(self) -> Optional[str]:
        return self.config.openai_api_key

    def _client_options(self) -> Dict[str, Any]:
        return {}

    def is_available(self) -> bool:
        return self.client is not None and self.status != ProviderStatus.UNAVAILABLE

    @staticmethod
    def _usage(completion) -> Dict[str, int]:
        usage = getattr(completion, "usage", None)
        if usage is None:
            return {}
        return {
            "input_tokens": usage.prompt_tokens or 0,
            "output_tokens": usage.completion_tokens or 0,
            "total_tokens": usage.total_tokens or 0,
        }

    async def _call(self, endpoint: Callable[..., Awaitable[Any]], model: Optional[str], prompt: str,
                    messages: Messages, system_prompt: Optional[str], options: Dict[str, Any], **extra):
        """Run one SDK call; returns (completion, None) or (None, failed response)."""
        self.stats.total_requests += 1
        if not self.is_available():
            return None, self.failed(model, f"{self.provider.value} client not available", "UnavailableError")

        chat = [{"role": "system", "content": system_prompt}] if system_prompt else []
        chat.extend(messages or [{"role": "user", "content": prompt}])
        params = {"model": model, "messages": chat}
        params.update((key, options[key]) for key in SAMPLING_OPTIONS if key in options)

        try:
            return await endpoint(**params, **extra), None
        except Exception as e:
            rate_limited = "429" in str(e) or "rate" in str(e).lower()
            self.status = ProviderStatus.RATE_LIMITED if rate_limited else ProviderStatus.ERROR
            return None, self.failed(model, str(e), "RateLimitError" if rate_limited else "APIError")

    async def generate(self, prompt: str, messages: Messages = None, system_prompt: Optional[str] = None,
                       model: Optional[str] = None, **kwargs) -> LLMResponse:
        started = time.time()
        model = model or self.default_model()
        completion, failure = await self._call(
            self.client.chat.completions.create if self.client else None,
            model, prompt, messages, system_prompt, kwargs,
        )
        if failure:
            return failure
        choice = completion.choices[0]
        return self.succeeded(model, choice.message.content or "", started,
                              usage=self._usage(completion), finish_reason=choice.finish_reason)

    async def generate_structured(self, prompt: str, response_model: Type[BaseModel],
                                  system_prompt: Optional[str] = None, model: Optional[str] = None,
                                  **kwargs) -> LLMResponse:
        """Native structured output via ``chat.completions.parse``."""
        started = time.time()
        model = model or self.default_model()
        completion, failure = await self._call(
            self.client.chat.completions.parse if self.client else None,
            model, prompt, None, system_prompt, kwargs, response_format=response_model,
        )
        if failure:
            return failure

        choice = completion.choices[0]
        if getattr(choice.message, "parsed", None) is None:
            return self.failed(model, choice.message.refusal or "No structured output returned", "ParseError")
        return self.succeeded(model, choice.message.content or "", started, usage=self._usage(completion),
                              finish_reason=choice.finish_reason, parsed=choice.message.parsed)


class OpenRouterAdapter(OpenAIAdapter):
    """OpenRouter through its OpenAI-compatible endpoint."""

    provider = LLMProvider.OPENROUTER

    def _api_key(self) -> Optional[str]:
        return self.config.openrouter_api_key

    def _client_options(self) -> Dict[str, Any]:
        return {
            "base_url": self.config.openrouter_base_url,
            "default_headers": {
                "HTTP-Referer": self.config.openrouter_http_referer,
                "X-Title": self.config.openrouter_title,
            },
        }

    async def generate_structured(self, prompt, response_model, system_prompt=None, model=None, **kwargs) -> LLMResponse:
        # Routed models do not all honour response_format
        return await BaseLLMAdapter.generate_structured(
            self, prompt, response_model, system_prompt=system_prompt, model=model, **kwargs
        )


class LocalAdapter(BaseLLMAdapter):
    """
    Offline adapter that echoes a condensed version of the prompt.

    Keeps every agent usable without API keys; callers that need real
    reasoning (planner, delegation) fall back to their heuristics when the
    echo does not contain what they asked for.
    """

    provider = LLMProvider.LOCAL

    def __init__(self, config: LLMConfig):
        super().__init__(config)
        self.status = ProviderStatus.AVAILABLE

    def is_available(self) -> bool:
        return self.status == ProviderStatus.AVAILABLE

    async def generate(self, prompt: str, messages: Messages = None, system_prompt: Optional[str] = None,
                       model: Optional[str] = None, **kwargs) -> LLMResponse:
        started = time.time()
        self.stats.total_requests += 1
        if messages:
            prompt = next((m["content"] for m in reversed(messages) if m.get("role") == "user"), prompt)
        words = prompt.split()
        text = " ".join(words)[:400]
        output_words = len(text.split())
        return self.succeeded(
            model or self.default_model(), text, started,
            usage={"input_tokens": len(words), "output_tokens": output_words, "total_tokens": len(words) + output_words},
        )


class MultiLLMClient:
    """
    Provider-agnostic entry point used by agents and the planner.

    ``generate`` tries the preferred provider, then the configured fallback
    order. ``generate_structured`` follows the same order but skips the local
    adapter, and by default tries only the first provider.
    """

    def __init__(self, config: Optional[LLMConfig] = None):
        self.config = config or LLMConfig.from_settings()
        self.adapters: Dict[LLMProvider, BaseLLMAdapter] = {
            adapter.provider: adapter
            for adapter in (OpenRouterAdapter(self.config), OpenAIAdapter(self.config), LocalAdapter(self.config))
        }
        logger.info(f"Available LLM providers: {self.get_available_providers()}")

    def _provider_order(self, preferred: Optional[LLMProvider]) -> List[LLMProvider]:
        order = [preferred] if preferred in self.adapters else []
        for name in self.config.fallback_order:
            provider = next((p for p in LLMProvider if p.value == name), None)
            if provider is not None and provider not in order:
                order.append(provider)
        return order

    async def _dispatch(self, providers: List[LLMProvider], preferred: Optional[LLMProvider],
                        model: Optional[str], call: Callable[[BaseLLMAdapter, Optional[str]], Awaitable[LLMResponse]]):
        """Walk ``providers`` until one succeeds. Returns (response, last error)."""
        last_error = None
        for provider in providers:
            adapter = self.adapters[provider]
            if not adapter.is_available():
                last_error = last_error or f"{provider.value} client not available"
                continue

            # An explicit model only makes sense for the provider it was chosen for
            response = await call(adapter, model if preferred in (None, provider) else None)
            if response.success:
                return response, None
            last_error = response.error
            logger.warning(f"Provider {provider.value} failed: {response.error}")
        return None, last_error

    async def generate(self, prompt: str, messages: Messages = None, system_prompt: Optional[str] = None,
                       provider: Optional[LLMProvider] = None, model: Optional[str] = None,
                       enable_fallback: bool = True, **kwargs) -> Dict[str, Any]:
        """
        Generate text with the preferred provider, falling back on failure.

        Returns a dict with ``text``, ``usage``, ``provider``, ``model`` and
        ``success``; on total failure ``text`` is empty and ``error`` is set.
        """
        providers = self._provider_order(provider)
        if not enable_fallback:
            providers = providers[:1]

        response, error = await self._dispatch(
            providers, provider, model,
            lambda adapter, m: adapter.generate(prompt, messages=messages, system_prompt=system_prompt, model=m, **kwargs),
        )
        if response is None:
            return {"text": "", "usage": {}, "error": error or "All LLM providers failed", "success": False}
        return response.to_dict()

    async def generate_structured(self, prompt: str, response_model: Type[BaseModel],
                                  system_prompt: Optional[str] = None, provider: Optional[LLMProvider] = None,
                                  model: Optional[str] = None, enable_fallback: bool = False,
                                  **kwargs) -> Dict[str, Any]:
        """Generate a ``response_model`` instance; ``parsed`` is None on failure."""
        providers = [p for p in self._provider_order(provider) if p != LLMProvider.LOCAL]
        if not enable_fallback:
            providers = providers[:1]

        response, error = await self._dispatch(
            providers, provider, model,
            lambda adapter, m: adapter.generate_structured(
                prompt, response_model, system_prompt=system_prompt, model=m, **kwargs
            ),
        )
        if response is None:
            return {"parsed": None, "error": error or "No structured-output provider available", "success": False}
        return response.to_dict()

    async def generate_json(self, prompt: str, system_prompt: Optional[str] = None, **kwargs) -> Optional[Dict[str, Any]]:
        """Generate text and extract a JSON object from it (None if absent)."""
        result = await self.generate(prompt, system_prompt=system_prompt, **kwargs)
        return extract_json(result.get("text"))

    def get_provider_status(self) -> Dict[str, Dict[str, Any]]:
        return {
            provider.value: {"status": adapter.status.value, "is_available": adapter.is_available(), **asdict(adapter.stats)}
            for provider, adapter in self.adapters.items()
        }

    def get_available_providers(self) -> List[str]:
        return [provider.value for provider, adapter in self.adapters.items() if adapter.is_available()]

    def is_provider_available(self, provider: LLMProvider) -> bool:
        adapter = self.adapters.get(provider)
        return bool(adapter and adapter.is_available())


def create_llm_client(openai_key: Optional[str] = None, openrouter_key: Optional[str] = None,
                      **overrides) -> MultiLLMClient:
    """Client configured from settings; explicit keys and LLMConfig overrides win."""
    config = LLMConfig.from_settings(**overrides)
    if openai_key:
        config.openai_api_key = openai_key
    if openrouter_key:
        config.openrouter_api_key = openrouter_key
    return MultiLLMClient(config)
