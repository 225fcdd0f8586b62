"""Upstream model access.

Provides tool-calling backends (Google Gemini, Anthropic), the model-id
factory, JSON parsing for model output, and the multi-key rotation client
used by both agents.
"""

from src.llm.client import parse_llm_json_response
from src.llm.backends import (
    AnthropicBackend,
    ConversationMessage,
    GeminiBackend,
    ModelTurn,
    ToolCall,
    ToolCallingBackend,
    ToolDeclaration,
    ToolResult,
)
from src.llm.factory import get_backend
from src.llm.rotation import MultiKeyUpstreamClient, is_rate_limit_error

__all__ = [
    "parse_llm_json_response",
    "AnthropicBackend",
    "ConversationMessage",
    "GeminiBackend",
    "ModelTurn",
    "ToolCall",
    "ToolCallingBackend",
    "ToolDeclaration",
    "ToolResult",
    "get_backend",
    "MultiKeyUpstreamClient",
    "is_rate_limit_error",
]
