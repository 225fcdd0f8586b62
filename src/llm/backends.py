"""LLM backend abstraction for tool-calling conversations.

Provides a unified interface for one model step across providers
(Google Gemini, Anthropic Claude) with a consistent response format.

Each backend handles provider-specific concerns:
- Client creation with an explicit API key and timeout configuration
- Translating the neutral conversation history into provider messages
- Declaring tools and the per-step tool choice (auto or forced)
- Parsing text and tool calls out of the response, plus token counting

The tool-calling session handles model-agnostic concerns:
- Step policy (which tools are active, which one is forced)
- Executing tool calls and feeding results back
- Credential rotation (via MultiKeyUpstreamClient)
"""

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_TOKENS = 8_192


@dataclass
class ToolDeclaration:
    """A tool advertised to the model."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    # Gemini thinking models require the signature back on replayed calls
    thought_signature: Optional[bytes] = None


@dataclass
class ToolResult:
    call_id: str
    name: str
    output: Any


@dataclass
class ConversationMessage:
    """One entry of the provider-neutral conversation history.

    role is "user" (text), "assistant" (text and/or tool calls) or
    "tool" (results for the preceding assistant tool calls).
    """

    role: str
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)


@dataclass
class ModelTurn:
    """Normalized response from any backend for one step."""

    text: str
    tool_calls: list[ToolCall]
    model_id: str
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:16]}"


def _json_output(output: Any) -> str:
    return json.dumps(output, ensure_ascii=False, default=str)


@runtime_checkable
class ToolCallingBackend(Protocol):
    """Protocol for tool-calling backend implementations."""

    @property
    def model_id(self) -> str: ...

    def generate(
        self,
        system_prompt: str,
        messages: list[ConversationMessage],
        tools: list[ToolDeclaration],
        *,
        forced_tool: Optional[str] = None,
        label: str = "",
    ) -> ModelTurn: ...


class GeminiBackend:
    """Google Gemini backend.

    Handles:
    - Function declarations from JSON schema (parameters_json_schema)
    - Forced function calling via mode=ANY with a single allowed name
    - Automatic function calling disabled (tools run locally)

    Requires google-genai package: pip install google-genai
    """

    def __init__(self, model_id: str = "gemini-2.5-flash", api_key: Optional[str] = None,
                 max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS):
        self._model_id = model_id
        self._api_key = api_key
        self._max_output_tokens = max_output_tokens
        self._client = None

    @property
    def model_id(self) -> str:
        return self._model_id

    def _get_client(self):
        """Get a Gemini client bound to this backend's key. Lazy import."""
        if self._client is None:
            from google import genai

            if not self._api_key:
                raise RuntimeError(f"No API key supplied for {self._model_id}")
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    def _to_contents(self, messages: list[ConversationMessage]) -> list[Any]:
        from google.genai import types

        contents = []
        for message in messages:
            if message.role == "user":
                contents.append(types.Content(role="user", parts=[types.Part(text=message.text)]))
            elif message.role == "assistant":
                parts = []
                if message.text:
                    parts.append(types.Part(text=message.text))
                for call in message.tool_calls:
                    parts.append(types.Part(
                        function_call=types.FunctionCall(id=call.id, name=call.name, args=call.arguments),
                        thought_signature=call.thought_signature,
                    ))
                contents.append(types.Content(role="model", parts=parts))
            elif message.role == "tool":
                parts = [
                    types.Part(function_response=types.FunctionResponse(
                        id=result.call_id, name=result.name, response={"result": result.output},
                    ))
                    for result in message.tool_results
                ]
                contents.append(types.Content(role="user", parts=parts))
            else:
                raise ValueError(f"Unknown message role: {message.role}")
        return contents

    def generate(
        self,
        system_prompt: str,
        messages: list[ConversationMessage],
        tools: list[ToolDeclaration],
        *,
        forced_tool: Optional[str] = None,
        label: str = "",
    ) -> ModelTurn:
        from google.genai import types

        client = self._get_client()
        start_time = time.time()

        config_kwargs: dict[str, Any] = {
            "system_instruction": system_prompt,
            "max_output_tokens": self._max_output_tokens,
            "automatic_function_calling": types.AutomaticFunctionCallingConfig(disable=True),
        }
        if tools:
            config_kwargs["tools"] = [types.Tool(function_declarations=[
                types.FunctionDeclaration(
                    name=t.name,
                    description=t.description,
                    parameters_json_schema=t.parameters,
                )
                for t in tools
            ])]
            if forced_tool:
                calling = types.FunctionCallingConfig(mode="ANY", allowed_function_names=[forced_tool])
            else:
                calling = types.FunctionCallingConfig(mode="AUTO")
            config_kwargs["tool_config"] = types.ToolConfig(function_calling_config=calling)

        response = client.models.generate_content(
            model=self._model_id,
            contents=self._to_contents(messages),
            config=types.GenerateContentConfig(**config_kwargs),
        )
        duration_ms = int((time.time() - start_time) * 1000)

        text = ""
        tool_calls = []
        if response.candidates and response.candidates[0].content:
            for part in response.candidates[0].content.parts or []:
                if getattr(part, "function_call", None):
                    call = part.function_call
                    tool_calls.append(ToolCall(
                        id=call.id or _new_call_id(),
                        name=call.name,
                        arguments=dict(call.args or {}),
                        thought_signature=getattr(part, "thought_signature", None),
                    ))
                elif getattr(part, "text", None) and not getattr(part, "thought", False):
                    text += part.text

        usage = getattr(response, "usage_metadata", None)
        input_tokens = (getattr(usage, "prompt_token_count", 0) or 0) if usage else 0
        output_tokens = (getattr(usage, "candidates_token_count", 0) or 0) if usage else 0

        logger.info(
            f"[{label}] Gemini step: {input_tokens}+{output_tokens} tokens, {duration_ms}ms, "
            f"{len(tool_calls)} tool calls"
            + (f", forced={forced_tool}" if forced_tool else "")
        )
        return ModelTurn(
            text=text.strip(),
            tool_calls=tool_calls,
            model_id=self._model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
        )


class AnthropicBackend:
    """Anthropic Claude backend.

    Handles:
    - tool_use / tool_result content blocks
    - Forced tool choice ({"type": "tool", "name": ...})
    """

    def __init__(self, model_id: str = "claude-sonnet-4-6", api_key: Optional[str] = None,
                 max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS):
        self._model_id = model_id
        self._api_key = api_key
        self._max_output_tokens = max_output_tokens
        self._client = None

    @property
    def model_id(self) -> str:
        return self._model_id

    def _get_client(self):
        if self._client is None:
            from anthropic import Anthropic

            self._client = Anthropic(
                api_key=self._api_key,
                timeout=httpx.Timeout(connect=60.0, read=300.0, write=60.0, pool=60.0),
                max_retries=0,  # rotation handles rate limits
            )
        return self._client

    @staticmethod
    def _to_messages(messages: list[ConversationMessage]) -> list[dict[str, Any]]:
        converted = []
        for message in messages:
            if message.role == "user":
                converted.append({"role": "user", "content": message.text})
            elif message.role == "assistant":
                blocks: list[dict[str, Any]] = []
                if message.text:
                    blocks.append({"type": "text", "text": message.text})
                for call in message.tool_calls:
                    blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
                converted.append({"role": "assistant", "content": blocks})
            elif message.role == "tool":
                converted.append({
                    "role": "user",
                    "content": [
                        {"type": "tool_result", "tool_use_id": r.call_id, "content": _json_output(r.output)}
                        for r in message.tool_results
                    ],
                })
            else:
                raise ValueError(f"Unknown message role: {message.role}")
        return converted

    def generate(
        self,
        system_prompt: str,
        messages: list[ConversationMessage],
        tools: list[ToolDeclaration],
        *,
        forced_tool: Optional[str] = None,
        label: str = "",
    ) -> ModelTurn:
        client = self._get_client()
        start_time = time.time()

        kwargs: dict[str, Any] = {
            "model": self._model_id,
            "max_tokens": self._max_output_tokens,
            "system": system_prompt,
            "messages": self._to_messages(messages),
        }
        if tools:
            kwargs["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in tools
            ]
            kwargs["tool_choice"] = {"type": "tool", "name": forced_tool} if forced_tool else {"type": "auto"}

        response = client.messages.create(**kwargs)
        duration_ms = int((time.time() - start_time) * 1000)

        text = ""
        tool_calls = []
        for block in response.content:
            if block.type == "tool_use":
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {})))
            elif block.type == "text":
                text += block.text

        logger.info(
            f"[{label}] Anthropic step: {response.usage.input_tokens}+{response.usage.output_tokens} "
            f"tokens, {duration_ms}ms, {len(tool_calls)} tool calls"
            + (f", forced={forced_tool}" if forced_tool else "")
        )
        return ModelTurn(
            text=text.strip(),
            tool_calls=tool_calls,
            model_id=self._model_id,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            duration_ms=duration_ms,
        )
