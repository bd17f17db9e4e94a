"""LangGraph state for one build.

Each node receives the full BuildState and returns a partial dict with only
the keys it changes. Annotated fields are merged with their reducer
(append / sum); everything else is last-writer-wins.

The workflow graph itself is not part of this state: it lives in the
builder's WorkflowStateManager, which the tool and validation nodes share.
"""

from __future__ import annotations

from typing import Annotated, Any, TypedDict

from n8n_dev_agent.agent.classifier import ErrorAnalysis
from n8n_dev_agent.reasoning import Message, ToolCall


def _append_messages(existing: list[Message], incoming: list[Message] | None) -> list[Message]:
    return (existing or []) + (incoming or [])


def _append_lines(existing: list[str], incoming: list[str] | None) -> list[str]:
    return (existing or []) + (incoming or [])


def _sum_int(existing: int, incoming: int) -> int:
    return (existing or 0) + (incoming or 0)


class BuildState(TypedDict, total=False):
    # Conversation sent to the oracle, oldest first.
    messages: Annotated[list[Message], _append_messages]
    # Human-readable transcript ("Assistant: ...", "Tool: ...", "Result: ...").
    conversation_log: Annotated[list[str], _append_lines]

    workflow_name: str
    turn: int
    validation_attempts: int
    retries: int

    # Tool calls requested by the latest turn, consumed by tool_exec.
    pending_tool_calls: list[ToolCall]

    # Set by validate when a corrective retry is scheduled.
    last_errors: str
    last_analysis: ErrorAnalysis | None

    # Terminal result: success, error, warnings, workflow,
    # requires_human_input, human_input_reason. None while running.
    outcome: dict[str, Any] | None

    total_input_tokens: Annotated[int, _sum_int]
    total_output_tokens: Annotated[int, _sum_int]
