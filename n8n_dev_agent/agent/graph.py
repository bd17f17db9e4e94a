"""Generation loop: drives the oracle through build → validate → retry.

Graph topology:

    START ─▶ turn ─┬─ tool calls ───▶ tool_exec ─┬─▶ turn
                   │                             └─ turn limit ─▶ max_turns ─▶ END
                   └─ no tool calls ─▶ finalize_check ─┬─ no nodes ─▶ END
                                                       └─▶ validate ─┬─ valid / give up ─▶ END
                                                                     └─▶ retry ─▶ turn | max_turns

  turn           — one oracle call with the system prompt, all tool definitions
                   and the full history. Increments the turn counter.
  tool_exec      — runs each requested tool call, in order, through WorkflowTools
                   and appends one tool_result message per call.
  finalize_check — the oracle stopped calling tools; fail if nothing was built.
  validate       — local validation of the serialized workflow. Invalid results
                   are classified; recoverable errors within the retry budget go
                   to retry, everything else ends the build.
  retry          — injects a corrective user message and loops back.
  max_turns      — the turn limit was hit; one last validation decides the result.

The graph is compiled per build() call because the progress callback is
closed over by the nodes.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from langgraph.graph import END, START, StateGraph

from n8n_dev_agent.agent.classifier import ErrorAnalysis, ErrorClassifier
from n8n_dev_agent.agent.config import DEFAULT_WORKFLOW_NAME, BuilderSettings
from n8n_dev_agent.agent.prompts import build_retry_prompt, get_system_prompt
from n8n_dev_agent.agent.state import BuildState
from n8n_dev_agent.agent.tools import WorkflowTools
from n8n_dev_agent.client import N8nClient, Settings, create_n8n_client
from n8n_dev_agent.reasoning import Message, ReasoningEngine, ReasoningSettings, create_engine
from n8n_dev_agent.workflow import ValidationResult, WorkflowStateManager, validate_workflow

logger = logging.getLogger("n8n_dev_agent.agent.graph")

Validator = Callable[[Mapping[str, Any]], ValidationResult]

NO_WORKFLOW_ERROR = "No workflow was created. Please try a more specific request."
MAX_TURNS_INVALID_REASON = (
    "Maximum turns reached. Please simplify your request or provide more specific instructions."
)
MAX_TURNS_EMPTY_ERROR = "Max turns reached without completing the workflow."
MAX_TURNS_EMPTY_REASON = "Unable to complete the workflow within the turn limit. Please try a simpler request."


# ---------------------------------------------------------------------------
# Progress events and results
# ---------------------------------------------------------------------------


class ProgressType(str, Enum):
    TURN_START = "TURN_START"
    TOOL_CALL = "TOOL_CALL"
    TOOL_RESULT = "TOOL_RESULT"
    VALIDATION = "VALIDATION"
    RETRY = "RETRY"
    ERROR = "ERROR"
    SUCCESS = "SUCCESS"


@dataclass
class ProgressEvent:
    type: ProgressType
    message: str
    turn: int | None = None
    tool_name: str | None = None
    details: Any = None


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class BuildResult:
    """Terminal outcome of WorkflowBuilder.build().

    Pass a previous result as ``continue_from`` to refine the same workflow:
    its ``messages`` and ``conversation_log`` seed the next build.
    """

    success: bool
    workflow: dict[str, Any] | None = None
    error: str | None = None
    validation_warnings: list[str] = field(default_factory=list)
    conversation_log: list[str] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)
    model: str = ""
    validation_attempts: int = 0
    requires_human_input: bool = False
    human_input_reason: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0


def _emit(on_progress: ProgressCallback | None, event: ProgressEvent) -> None:
    logger.debug("[%s] %s", event.type.value, event.message)
    if on_progress is not None:
        on_progress(event)


def _success(workflow: dict[str, Any], warnings: list[str]) -> dict[str, Any]:
    return {"success": True, "workflow": workflow, "warnings": list(warnings)}


def _failure(error: str, requires_human_input: bool = False, reason: str | None = None) -> dict[str, Any]:
    return {
        "success": False,
        "error": error,
        "requires_human_input": requires_human_input,
        "human_input_reason": reason,
    }


# ---------------------------------------------------------------------------
# Node factories
# ---------------------------------------------------------------------------


def _make_turn_node(
    engine: ReasoningEngine,
    tools: WorkflowTools,
    temperature: float,
    on_progress: ProgressCallback | None,
):
    system = get_system_prompt(n8n_available=tools.n8n_available)
    tool_defs = tools.definitions

    async def turn(state: BuildState) -> dict:
        turn_no = state.get("turn", 0) + 1
        _emit(on_progress, ProgressEvent(ProgressType.TURN_START, "Thinking...", turn=turn_no))

        response = await engine.complete(
            messages=state["messages"],
            system=system,
            tools=tool_defs,
            temperature=temperature,
        )

        log: list[str] = []
        if response.content:
            log.append(f"Assistant: {response.content}")
            logger.debug("Assistant: %s", response.content)

        for tc in response.tool_calls:
            args_json = json.dumps(tc.arguments, default=str)
            _emit(on_progress, ProgressEvent(ProgressType.TOOL_CALL, args_json, turn=turn_no, tool_name=tc.name))
            log.append(f"Tool: {tc.name}({args_json})")

        return {
            "turn": turn_no,
            "messages": [Message(
                role="assistant",
                content=response.content,
                tool_calls=list(response.tool_calls) or None,
            )],
            "conversation_log": log,
            "pending_tool_calls": list(response.tool_calls),
            "total_input_tokens": response.input_tokens,
            "total_output_tokens": response.output_tokens,
        }

    return turn


def _make_tool_exec_node(tools: WorkflowTools, on_progress: ProgressCallback | None):
    async def tool_exec(state: BuildState) -> dict:
        turn_no = state.get("turn", 0)
        results: list[Message] = []
        log: list[str] = []

        for tc in state.get("pending_tool_calls", []):
            result = await tools.execute(tc.name, tc.arguments)
            icon = "✓" if result.success else "✗"
            _emit(on_progress, ProgressEvent(
                ProgressType.TOOL_RESULT,
                f"{icon} {result.message}",
                turn=turn_no,
                tool_name=tc.name,
                details=result.to_dict(),
            ))
            log.append(f"Result: {json.dumps(result.to_dict(), default=str)}")
            results.append(Message(
                role="tool_result",
                content=result.to_content(),
                tool_call_id=tc.id,
                tool_name=tc.name,
            ))

        return {"messages": results, "conversation_log": log, "pending_tool_calls": []}

    return tool_exec


def _make_finalize_check_node(workflow_state: WorkflowStateManager, on_progress: ProgressCallback | None):
    async def finalize_check(state: BuildState) -> dict:
        if workflow_state.node_count == 0:
            _emit(on_progress, ProgressEvent(ProgressType.ERROR, NO_WORKFLOW_ERROR, turn=state.get("turn")))
            return {"outcome": _failure(NO_WORKFLOW_ERROR)}
        return {"outcome": None}

    return finalize_check


def _make_validate_node(
    workflow_state: WorkflowStateManager,
    validator: Validator,
    classifier: Callable[[str], ErrorAnalysis],
    max_validation_retries: int,
    on_progress: ProgressCallback | None,
):
    async def validate(state: BuildState) -> dict:
        attempts = state.get("validation_attempts", 0) + 1
        workflow = workflow_state.to_workflow(state["workflow_name"])
        result = validator(workflow)

        _emit(on_progress, ProgressEvent(
            ProgressType.VALIDATION,
            "Workflow is valid" if result.valid else f"Validation failed: {'; '.join(result.errors)}",
            turn=state.get("turn"),
            details=result.to_dict(),
        ))
        for warning in result.warnings:
            logger.warning("Workflow warning: %s", warning)

        if result.valid:
            _emit(on_progress, ProgressEvent(ProgressType.SUCCESS, "Workflow created successfully!"))
            return {"validation_attempts": attempts, "outcome": _success(workflow, result.warnings)}

        errors = "\n".join(result.errors)
        analysis = classifier(errors)
        retries = state.get("retries", 0)

        if not analysis.recoverable or retries >= max_validation_retries:
            logger.error("Validation failed (recoverable=%s, retries=%d): %s", analysis.recoverable, retries, errors)
            _emit(on_progress, ProgressEvent(ProgressType.ERROR, analysis.suggested_action, details=result.to_dict()))
            return {
                "validation_attempts": attempts,
                "outcome": _failure(
                    f"Generated workflow is invalid:\n{errors}",
                    requires_human_input=True,
                    reason=analysis.suggested_action,
                ),
            }

        return {"validation_attempts": attempts, "last_errors": errors, "last_analysis": analysis}

    return validate


def _make_retry_node(max_validation_retries: int, on_progress: ProgressCallback | None):
    async def retry(state: BuildState) -> dict:
        retries = state.get("retries", 0) + 1
        errors = state.get("last_errors", "")
        analysis = state["last_analysis"]

        _emit(on_progress, ProgressEvent(
            ProgressType.RETRY,
            f"Retry {retries}/{max_validation_retries}: {errors}",
            turn=state.get("turn"),
            details={"attempt": retries, "maxRetries": max_validation_retries},
        ))
        return {
            "retries": retries,
            "messages": [Message(role="user", content=build_retry_prompt(errors, analysis))],
            "conversation_log": [f"Validation failed: {errors}"],
            "last_analysis": None,
        }

    return retry


def _make_max_turns_node(
    workflow_state: WorkflowStateManager,
    validator: Validator,
    on_progress: ProgressCallback | None,
):
    async def max_turns(state: BuildState) -> dict:
        logger.warning("Turn limit reached after %d turns", state.get("turn", 0))

        if workflow_state.node_count == 0:
            _emit(on_progress, ProgressEvent(ProgressType.ERROR, MAX_TURNS_EMPTY_ERROR))
            return {"outcome": _failure(MAX_TURNS_EMPTY_ERROR, True, MAX_TURNS_EMPTY_REASON)}

        workflow = workflow_state.to_workflow(state["workflow_name"])
        result = validator(workflow)
        attempts = state.get("validation_attempts", 0) + 1
        _emit(on_progress, ProgressEvent(ProgressType.VALIDATION, "Final validation", details=result.to_dict()))

        if not result.valid:
            errors = "\n".join(result.errors)
            _emit(on_progress, ProgressEvent(ProgressType.ERROR, MAX_TURNS_INVALID_REASON))
            return {
                "validation_attempts": attempts,
                "outcome": _failure(f"Generated workflow is invalid:\n{errors}", True, MAX_TURNS_INVALID_REASON),
            }

        _emit(on_progress, ProgressEvent(ProgressType.SUCCESS, "Workflow created successfully!"))
        return {"validation_attempts": attempts, "outcome": _success(workflow, result.warnings)}

    return max_turns


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


def _route_after_turn(state: BuildState) -> str:
    return "tool_exec" if state.get("pending_tool_calls") else "finalize_check"


def _route_after_outcome(next_node: str):
    def _route(state: BuildState) -> str:
        return END if state.get("outcome") else next_node

    return _route


def _route_next_turn(max_turns: int):
    def _route(state: BuildState) -> str:
        return "max_turns" if state.get("turn", 0) >= max_turns else "turn"

    return _route


# ---------------------------------------------------------------------------
# Graph builder
# ---------------------------------------------------------------------------


def build_graph(
    engine: ReasoningEngine,
    tools: WorkflowTools,
    *,
    validator: Validator = validate_workflow,
    classifier: Callable[[str], ErrorAnalysis] | None = None,
    max_turns: int = 20,
    max_validation_retries: int = 3,
    temperature: float = 0.2,
    on_progress: ProgressCallback | None = None,
):
    """Construct and compile the generation loop graph.

    Args:
        engine:                 Oracle used for every turn.
        tools:                  Tool surface bound to the build's state manager.
        validator:              Workflow validator (default: local schema + semantic checks).
        classifier:             Maps joined validation errors to an ErrorAnalysis.
        max_turns:              Oracle turns before the forced final validation.
        max_validation_retries: Corrective retries allowed after failed validations.
        on_progress:            Optional callback receiving ProgressEvents.
    """
    classify = classifier or ErrorClassifier()
    route_next_turn = _route_next_turn(max_turns)

    builder = StateGraph(BuildState)

    builder.add_node("turn", _make_turn_node(engine, tools, temperature, on_progress))
    builder.add_node("tool_exec", _make_tool_exec_node(tools, on_progress))
    builder.add_node("finalize_check", _make_finalize_check_node(tools.state, on_progress))
    builder.add_node(
        "validate",
        _make_validate_node(tools.state, validator, classify, max_validation_retries, on_progress),
    )
    builder.add_node("retry", _make_retry_node(max_validation_retries, on_progress))
    builder.add_node("max_turns", _make_max_turns_node(tools.state, validator, on_progress))

    builder.add_conditional_edges(START, route_next_turn, {"turn": "turn", "max_turns": "max_turns"})
    builder.add_conditional_edges(
        "turn",
        _route_after_turn,
        {"tool_exec": "tool_exec", "finalize_check": "finalize_check"},
    )
    builder.add_conditional_edges("tool_exec", route_next_turn, {"turn": "turn", "max_turns": "max_turns"})
    builder.add_conditional_edges(
        "finalize_check",
        _route_after_outcome("validate"),
        {END: END, "validate": "validate"},
    )
    builder.add_conditional_edges(
        "validate",
        _route_after_outcome("retry"),
        {END: END, "retry": "retry"},
    )
    builder.add_conditional_edges("retry", route_next_turn, {"turn": "turn", "max_turns": "max_turns"})
    builder.add_edge("max_turns", END)

    return builder.compile()


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class WorkflowBuilder:
    """Session-scoped entry point: one state manager, one build at a time.

    Example:
        builder = WorkflowBuilder(engine)
        result = await builder.build("Webhook that posts to Slack")
        refined = await builder.build("Also log to Google Sheets", continue_from=result)
    """

    def __init__(
        self,
        engine: ReasoningEngine,
        state: WorkflowStateManager | None = None,
        client: N8nClient | None = None,
        *,
        max_turns: int = 20,
        max_validation_retries: int = 3,
        workflow_name: str = DEFAULT_WORKFLOW_NAME,
        temperature: float = 0.2,
        validator: Validator = validate_workflow,
        classifier: Callable[[str], ErrorAnalysis] | None = None,
    ) -> None:
        self.engine = engine
        self.state = state if state is not None else WorkflowStateManager()
        self.tools = WorkflowTools(self.state, client)
        self.max_turns = max_turns
        self.max_validation_retries = max_validation_retries
        self.workflow_name = workflow_name
        self.temperature = temperature
        self._validator = validator
        self._classifier = classifier

    @property
    def client(self) -> N8nClient | None:
        return self.tools.client

    def reset(self) -> None:
        """Discard the current workflow."""
        self.state.reset()

    async def build(
        self,
        prompt: str,
        continue_from: BuildResult | None = None,
        on_progress: ProgressCallback | None = None,
        workflow_name: str | None = None,
    ) -> BuildResult:
        """Run the generation loop for one prompt.

        Without ``continue_from`` the state manager is reset first. With it,
        the current graph is kept and the previous conversation is replayed
        before the new prompt.
        """
        name = workflow_name or self.workflow_name
        if continue_from is None:
            self.state.reset()
            history: list[Message] = []
            log: list[str] = []
        else:
            history = list(continue_from.messages)
            log = list(continue_from.conversation_log)

        user_message = Message(role="user", content=prompt)
        graph = build_graph(
            self.engine,
            self.tools,
            validator=self._validator,
            classifier=self._classifier,
            max_turns=self.max_turns,
            max_validation_retries=self.max_validation_retries,
            temperature=self.temperature,
            on_progress=on_progress,
        )
        initial: BuildState = {
            "messages": history + [user_message],
            "conversation_log": log,
            "workflow_name": name,
            "turn": 0,
            "validation_attempts": 0,
            "retries": 0,
            "pending_tool_calls": [],
            "last_errors": "",
            "last_analysis": None,
            "outcome": None,
            "total_input_tokens": 0,
            "total_output_tokens": 0,
        }

        logger.info("Building workflow %r with %s", name, self.engine.model_id)
        # Last streamed state; its history matches the nodes already in self.state.
        final: dict[str, Any] = dict(initial)
        try:
            async for snapshot in graph.astream(
                initial,
                config={"recursion_limit": 4 * self.max_turns + 10},
                stream_mode="values",
            ):
                final = snapshot
        except Exception as e:
            logger.exception("Workflow build failed")
            _emit(on_progress, ProgressEvent(ProgressType.ERROR, str(e)))
            return BuildResult(
                success=False,
                error=str(e) or type(e).__name__,
                conversation_log=final.get("conversation_log", log),
                messages=final.get("messages", history + [user_message]),
                model=self.engine.model_id,
                validation_attempts=final.get("validation_attempts", 0),
                input_tokens=final.get("total_input_tokens", 0),
                output_tokens=final.get("total_output_tokens", 0),
            )

        outcome = final.get("outcome") or _failure("Build ended without a result.")
        return BuildResult(
            success=outcome["success"],
            workflow=outcome.get("workflow"),
            error=outcome.get("error"),
            validation_warnings=outcome.get("warnings", []),
            conversation_log=final.get("conversation_log", []),
            messages=final.get("messages", []),
            model=self.engine.model_id,
            validation_attempts=final.get("validation_attempts", 0),
            requires_human_input=outcome.get("requires_human_input", False),
            human_input_reason=outcome.get("human_input_reason"),
            input_tokens=final.get("total_input_tokens", 0),
            output_tokens=final.get("total_output_tokens", 0),
        )


# ---------------------------------------------------------------------------
# Convenience factory
# ---------------------------------------------------------------------------


def create_builder(
    reasoning_settings: ReasoningSettings | None = None,
    n8n_settings: Settings | None = None,
    builder_settings: BuilderSettings | None = None,
    model: str | None = None,
) -> tuple[WorkflowBuilder, N8nClient | None]:
    """Create a WorkflowBuilder from settings objects.

    Returns:
        (builder, n8n_client). The client is None when no n8n API key is
        configured; otherwise the caller closes it on shutdown.
    """
    reasoning_settings = reasoning_settings or ReasoningSettings()
    n8n_settings = n8n_settings or Settings.from_env()
    builder_settings = builder_settings or BuilderSettings()

    engine = create_engine(reasoning_settings, model=model)
    client = create_n8n_client(n8n_settings)
    builder = WorkflowBuilder(
        engine,
        client=client,
        max_turns=builder_settings.max_turns,
        max_validation_retries=builder_settings.max_validation_retries,
        temperature=reasoning_settings.temperature,
    )
    return builder, client
