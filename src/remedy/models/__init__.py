"""Convenience exports for the agent executor and LLM client implementations."""

from .executor import AgentEvent, AgentExecutor, AgentRequest, AgentTurn, Conversation, LLMAgentExecutor
from .gpt5 import ResponsesClient
from .llm_client import (
    LLMClient,
    LLMClientError,
    LLMRequest,
    LLMResponseFormatError,
    LLMRetryError,
    LLMTransportError,
)

__all__ = [
    "AgentEvent",
    "AgentExecutor",
    "AgentRequest",
    "AgentTurn",
    "Conversation",
    "LLMAgentExecutor",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "ResponsesClient",
]
