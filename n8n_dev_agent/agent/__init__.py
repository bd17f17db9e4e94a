"""Workflow builder agent: tool surface, error classification and the LangGraph generation loop.

Public API:
    WorkflowBuilder  — session-scoped builder; build(prompt) → BuildResult
    create_builder   — factory that wires engine, n8n client and settings
    build_graph      — the compiled generation loop, for callers that drive it directly
    WorkflowTools    — the six oracle-facing tools
"""

from n8n_dev_agent.agent.classifier import ErrorAnalysis, ErrorClassifier, classify_error
from n8n_dev_agent.agent.config import DEFAULT_WORKFLOW_NAME, BuilderSettings
from n8n_dev_agent.agent.graph import (
    BuildResult,
    ProgressEvent,
    ProgressType,
    WorkflowBuilder,
    build_graph,
    create_builder,
)
from n8n_dev_agent.agent.prompts import build_retry_prompt, get_system_prompt
from n8n_dev_agent.agent.state import BuildState
from n8n_dev_agent.agent.tools import TOOL_DEFINITIONS, ToolResult, WorkflowTools

__all__ = [
    # Builder
    "WorkflowBuilder",
    "BuildResult",
    "ProgressEvent",
    "ProgressType",
    "build_graph",
    "create_builder",
    "BuildState",
    "BuilderSettings",
    "DEFAULT_WORKFLOW_NAME",
    # Tools
    "WorkflowTools",
    "ToolResult",
    "TOOL_DEFINITIONS",
    # Errors
    "ErrorAnalysis",
    "ErrorClassifier",
    "classify_error",
    # Prompts
    "get_system_prompt",
    "build_retry_prompt",
]
