"""LLM abstraction layer.

The generation loop talks to a ReasoningEngine and never to a provider SDK
directly. Claude is the default provider; OpenAI is available through the
``openai`` extra.

Short model aliases ("haiku", "sonnet", "opus") resolve to full Claude model
IDs. Any other model string is passed to the provider unchanged.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import anthropic
from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("n8n_dev_agent.reasoning")

MODEL_ALIASES: dict[str, str] = {
    "haiku": "claude-haiku-4-5-20251001",
    "sonnet": "claude-sonnet-4-5-20250929",
    "opus": "claude-opus-4-5-20251101",
}
DEFAULT_CLAUDE_MODEL = "haiku"
DEFAULT_OPENAI_MODEL = "gpt-4o"


def resolve_model(name: str) -> str:
    """Map a short alias to its full model ID; anything else is returned as-is."""
    return MODEL_ALIASES.get(name.strip().lower(), name.strip())


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------


@dataclass
class Message:
    """One conversation turn.

    role values:
      "user"        — prompt or corrective feedback
      "assistant"   — LLM turn (may include tool_calls)
      "tool_result" — outcome of one tool call, sent back to the LLM
    """

    role: str
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    tool_name: str | None = None


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class ToolDef:
    """A tool the LLM may call. ``parameters`` is a JSON Schema object."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class EngineResponse:
    """One LLM reply: text, tool calls, or both, plus token usage."""

    content: str | None
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: str = "end_turn"
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------


class ReasoningEngine(ABC):
    """Provider-agnostic LLM interface used by the generation loop."""

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        tools: list[ToolDef] | None = None,
        temperature: float = 0.2,
    ) -> EngineResponse:
        """Send the conversation and return the model's reply.

        Args:
            messages:    Full history (user / assistant / tool_result turns).
            system:      System prompt, sent out of band where the provider allows.
            tools:       Tools the model may call; None disables tool use.
            temperature: Sampling temperature (0.0–1.0).
        """
        ...

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Provider/model string for logs and results, e.g. 'anthropic/claude-haiku-4-5-20251001'."""
        ...


# ---------------------------------------------------------------------------
# Claude (Anthropic)
# ---------------------------------------------------------------------------


class ClaudeEngine(ReasoningEngine):
    def __init__(self, api_key: str, model: str = DEFAULT_CLAUDE_MODEL, max_tokens: int = 4096) -> None:
        if not api_key:
            raise ValueError(
                "ClaudeEngine needs an API key: set ANTHROPIC_API_KEY "
                "in the environment or in .env."
            )
        self._client = anthropic.AsyncAnthropic(api_key=api_key)
        self._model = resolve_model(model)
        self._max_tokens = max_tokens
        logger.info("ClaudeEngine initialized: %s", self._model)

    @property
    def model(self) -> str:
        return self._model

    @property
    def model_id(self) -> str:
        return f"anthropic/{self._model}"

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        tools: list[ToolDef] | None = None,
        temperature: float = 0.2,
    ) -> EngineResponse:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": _to_anthropic_messages(messages),
            "max_tokens": self._max_tokens,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in tools
            ]

        logger.debug("ClaudeEngine.complete: %d messages, %d tools", len(messages), len(tools or []))
        response = await self._client.messages.create(**kwargs)

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=dict(block.input)))

        usage = response.usage
        return EngineResponse(
            content="\n".join(text_parts) if text_parts else None,
            tool_calls=tool_calls,
            stop_reason=response.stop_reason or "end_turn",
            input_tokens=usage.input_tokens if usage else 0,
            output_tokens=usage.output_tokens if usage else 0,
        )


def _to_anthropic_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Convert Messages to the Anthropic wire format.

    Consecutive tool results are batched into a single user message, which
    the Messages API requires after an assistant turn with several tool_use
    blocks.
    """
    result: list[dict[str, Any]] = []
    i = 0

    while i < len(messages):
        m = messages[i]

        if m.role == "tool_result":
            blocks: list[dict[str, Any]] = []
            while i < len(messages) and messages[i].role == "tool_result":
                tr = messages[i]
                blocks.append({
                    "type": "tool_result",
                    "tool_use_id": tr.tool_call_id,
                    "content": tr.content or "",
                })
                i += 1
            result.append({"role": "user", "content": blocks})
            continue

        if m.role == "assistant" and m.tool_calls:
            blocks = []
            if m.content:
                blocks.append({"type": "text", "text": m.content})
            blocks.extend(
                {"type": "tool_use", "id": tc.id, "name": tc.name, "input": tc.arguments}
                for tc in m.tool_calls
            )
            result.append({"role": "assistant", "content": blocks})
        elif m.content or m.role != "assistant":
            # Empty assistant turns are rejected by the API.
            result.append({"role": m.role, "content": m.content or ""})
        i += 1

    return result


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------


class OpenAIEngine(ReasoningEngine):
    """Requires: pip install 'n8n-dev-agent[openai]'"""

    def __init__(self, api_key: str, model: str = DEFAULT_OPENAI_MODEL) -> None:
        try:
            import openai as _openai
        except ImportError:
            raise ImportError(
                "OpenAIEngine depends on the optional 'openai' package. "
                "Install it with: pip install 'n8n-dev-agent[openai]'"
            )
        if not api_key:
            raise ValueError(
                "OpenAIEngine needs an API key: set OPENAI_API_KEY "
                "in the environment or in .env."
            )
        self._client = _openai.AsyncOpenAI(api_key=api_key)
        self._model = model
        logger.info("OpenAIEngine initialized: %s", model)

    @property
    def model(self) -> str:
        return self._model

    @property
    def model_id(self) -> str:
        return f"openai/{self._model}"

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        tools: list[ToolDef] | None = None,
        temperature: float = 0.2,
    ) -> EngineResponse:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": _to_openai_messages(messages, system),
            "temperature": temperature,
        }
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {"name": t.name, "description": t.description, "parameters": t.parameters},
                }
                for t in tools
            ]
            kwargs["tool_choice"] = "auto"

        logger.debug("OpenAIEngine.complete: %d messages, %d tools", len(messages), len(tools or []))
        response = await self._client.chat.completions.create(**kwargs)
        msg = response.choices[0].message

        tool_calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=json.loads(tc.function.arguments or "{}"))
            for tc in (msg.tool_calls or [])
        ]
        usage = response.usage
        return EngineResponse(
            content=msg.content,
            tool_calls=tool_calls,
            stop_reason="tool_use" if tool_calls else "end_turn",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


def _to_openai_messages(messages: list[Message], system: str | None) -> list[dict[str, Any]]:
    result: list[dict[str, Any]] = []
    if system:
        result.append({"role": "system", "content": system})

    for m in messages:
        if m.role == "tool_result":
            result.append({"role": "tool", "tool_call_id": m.tool_call_id, "content": m.content or ""})
        elif m.role == "assistant" and m.tool_calls:
            result.append({
                "role": "assistant",
                "content": m.content,
                "tool_calls": [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                    }
                    for tc in m.tool_calls
                ],
            })
        else:
            result.append({"role": m.role, "content": m.content or ""})

    return result


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class ReasoningSettings(BaseSettings):
    """Engine selection, read from the environment (or .env).

    Environment variables:
      REASONING_ENGINE       — "claude" | "openai" (default: "claude")
      REASONING_MODEL        — model name or alias; CLAUDE_MODEL is accepted too
      ANTHROPIC_API_KEY      — required for claude
      OPENAI_API_KEY         — required for openai
      REASONING_TEMPERATURE  — 0.0–1.0 (default: 0.2)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    provider: str = Field(default="claude", validation_alias="REASONING_ENGINE")
    model: str | None = Field(
        default=None,
        validation_alias=AliasChoices("REASONING_MODEL", "CLAUDE_MODEL"),
    )
    anthropic_api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="ANTHROPIC_API_KEY",
        repr=False,
    )
    openai_api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="OPENAI_API_KEY",
        repr=False,
    )
    temperature: float = Field(default=0.2, validation_alias="REASONING_TEMPERATURE")

    @field_validator("provider", mode="before")
    @classmethod
    def lowercase_provider(cls, v: object) -> str:
        return str(v).lower()

    @field_validator("model", mode="before")
    @classmethod
    def empty_str_to_none(cls, v: object) -> str | None:
        if not v:
            return None
        return str(v)

    @field_validator("temperature")
    @classmethod
    def clamp_temperature(cls, v: float) -> float:
        return max(0.0, min(1.0, v))


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_engine(settings: ReasoningSettings, model: str | None = None) -> ReasoningEngine:
    """Instantiate the configured engine. ``model`` overrides settings.model."""
    chosen = model or settings.model
    match settings.provider:
        case "claude" | "anthropic":
            return ClaudeEngine(
                api_key=settings.anthropic_api_key.get_secret_value(),
                model=chosen or DEFAULT_CLAUDE_MODEL,
            )
        case "openai" | "gpt":
            return OpenAIEngine(
                api_key=settings.openai_api_key.get_secret_value(),
                model=chosen or DEFAULT_OPENAI_MODEL,
            )
        case _:
            raise ValueError(
                f"Unknown reasoning engine provider: {settings.provider!r} "
                "(expected 'claude' or 'openai')"
            )
