"""
LLMs Module - Multi-LLM Client and Provider Abstractions

This module provides a unified interface over the hosted completion APIs:
- MultiLLMClient: OpenRouter, OpenAI and an offline local adapter
- Provider-specific adapters with a consistent API
- Automatic fallback between providers
- Structured (pydantic) output and JSON extraction
"""

from agentkit.llms.multi_llm_client import (
    LLMConfig,
    LLMProvider,
    LLMResponse,
    MultiLLMClient,
    ProviderStatus,
    create_llm_client,
    extract_json,
)

__all__ = [
    # Main client
    "MultiLLMClient",
    "create_llm_client",
    # Response and config
    "LLMResponse",
    "LLMConfig",
    # Enums
    "LLMProvider",
    "ProviderStatus",
    # Utilities
    "extract_json",
]
