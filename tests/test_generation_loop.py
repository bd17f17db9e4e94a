"""Generation loop: turn/tool/validate/retry graph driven by a scripted engine.

The engine is a ReasoningEngine that replays canned responses, so every test
exercises the real LangGraph graph, tool surface, state manager and
validator end to end.
"""

from __future__ import annotations

import itertools
from typing import Any

import pytest

from n8n_dev_agent.agent import (
    BuildResult,
    ProgressEvent,
    ProgressType,
    WorkflowBuilder,
)
from n8n_dev_agent.agent.classifier import CREDENTIALS, FALLBACK
from n8n_dev_agent.agent.graph import (
    MAX_TURNS_EMPTY_ERROR,
    MAX_TURNS_EMPTY_REASON,
    NO_WORKFLOW_ERROR,
)
from n8n_dev_agent.reasoning import EngineResponse, Message, ReasoningEngine, ToolCall, ToolDef
from n8n_dev_agent.workflow import ValidationResult

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_ids = itertools.count(1)


def _call(tool: str, /, **arguments: Any) -> ToolCall:
    return ToolCall(id=f"call_{next(_ids)}", name=tool, arguments=arguments)


def _tools(*calls: ToolCall) -> EngineResponse:
    return EngineResponse(
        content=None, tool_calls=list(calls), stop_reason="tool_use", input_tokens=10, output_tokens=5,
    )


def _text(content: str) -> EngineResponse:
    return EngineResponse(content=content, input_tokens=10, output_tokens=5)


def _add(name: str, type_: str = "n8n-nodes-base.set", version: int = 1, **parameters: Any) -> ToolCall:
    return _call("add_node", type=type_, typeVersion=version, name=name, parameters=parameters)


class ScriptedEngine(ReasoningEngine):
    """Replays a fixed list of responses; repeats ``fallback`` once the script runs out."""

    def __init__(self, responses: list[EngineResponse | Exception], fallback: EngineResponse | None = None) -> None:
        self._responses = list(responses)
        self._fallback = fallback or _text("Done.")
        self.calls: list[dict[str, Any]] = []

    @property
    def model_id(self) -> str:
        return "scripted/test"

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        tools: list[ToolDef] | None = None,
        temperature: float = 0.2,
    ) -> EngineResponse:
        self.calls.append({"messages": list(messages), "system": system, "tools": tools})
        item = self._responses.pop(0) if self._responses else self._fallback
        if isinstance(item, Exception):
            raise item
        return item


class SequenceValidator:
    """Returns queued ValidationResults, then always valid."""

    def __init__(self, *results: ValidationResult) -> None:
        self._results = list(results)
        self.seen: list[dict] = []

    def __call__(self, workflow):
        self.seen.append(workflow)
        return self._results.pop(0) if self._results else ValidationResult(valid=True)


def _invalid(*errors: str) -> ValidationResult:
    return ValidationResult(valid=False, errors=list(errors))


async def _build(builder: WorkflowBuilder, prompt: str = "build", **kwargs) -> tuple[BuildResult, list[ProgressEvent]]:
    events: list[ProgressEvent] = []
    result = await builder.build(prompt, on_progress=events.append, **kwargs)
    return result, events


def _types(events: list[ProgressEvent]) -> list[ProgressType]:
    return [e.type for e in events]


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestSuccess:
    @pytest.mark.asyncio
    async def test_webhook_to_slack(self):
        engine = ScriptedEngine([
            _tools(
                _add("Webhook Trigger", "n8n-nodes-base.webhook", 2, httpMethod="POST", path="webhook"),
                _add("Send Slack Message", "n8n-nodes-base.slack", 2, channel="#general", text="hi"),
                _call("connect_nodes", sourceNode="Webhook Trigger", targetNode="Send Slack Message"),
            ),
            _tools(_call("get_current_workflow", name="Webhook to Slack")),
            _text("The workflow is ready."),
        ])
        builder = WorkflowBuilder(engine)

        result, events = await _build(builder, "Create a webhook that sends a message to Slack")

        assert result.success, result.error
        assert result.workflow["name"] == "Generated Workflow"
        assert [n["name"] for n in result.workflow["nodes"]] == ["Webhook Trigger", "Send Slack Message"]
        assert result.workflow["connections"] == {
            "Webhook Trigger": {"main": [[{"node": "Send Slack Message", "type": "main", "index": 0}]]},
        }
        assert result.validation_warnings == []
        assert result.validation_attempts == 1
        assert result.model == "scripted/test"
        assert not result.requires_human_input
        assert _types(events).count(ProgressType.TURN_START) == 3
        assert _types(events)[-1] is ProgressType.SUCCESS

    @pytest.mark.asyncio
    async def test_messages_and_log(self):
        engine = ScriptedEngine([
            _tools(_add("Start", "n8n-nodes-base.manualTrigger")),
            _text("Done."),
        ])
        result, _ = await _build(WorkflowBuilder(engine), "one node please")

        assert [m.role for m in result.messages] == ["user", "assistant", "tool_result", "assistant"]
        assert result.messages[0].content == "one node please"
        assert result.messages[2].tool_call_id == result.messages[1].tool_calls[0].id
        assert result.conversation_log[0].startswith("Tool: add_node(")
        assert result.conversation_log[1].startswith("Result: ")
        assert result.conversation_log[-1] == "Assistant: Done."

    @pytest.mark.asyncio
    async def test_engine_sees_system_prompt_and_all_tools(self):
        engine = ScriptedEngine([_tools(_add("Start", "n8n-nodes-base.manualTrigger")), _text("ok")])
        await _build(WorkflowBuilder(engine))

        first = engine.calls[0]
        assert "n8n Workflow Builder" in first["system"]
        assert len(first["tools"]) == 6

    @pytest.mark.asyncio
    async def test_warnings_are_carried(self):
        engine = ScriptedEngine([_tools(_add("A"), _add("B")), _text("ok")])
        result, _ = await _build(WorkflowBuilder(engine))

        assert result.success
        assert any("no trigger node" in w for w in result.validation_warnings)
        assert 'Node "B" has no incoming connections' in result.validation_warnings

    @pytest.mark.asyncio
    async def test_custom_workflow_name(self):
        engine = ScriptedEngine([_tools(_add("Start", "n8n-nodes-base.manualTrigger")), _text("ok")])
        result, _ = await _build(WorkflowBuilder(engine), workflow_name="Nightly Sync")
        assert result.workflow["name"] == "Nightly Sync"

    @pytest.mark.asyncio
    async def test_token_usage_summed(self):
        engine = ScriptedEngine([_tools(_add("Start", "n8n-nodes-base.manualTrigger")), _text("ok")])
        result, _ = await _build(WorkflowBuilder(engine))
        assert (result.input_tokens, result.output_tokens) == (20, 10)

    @pytest.mark.asyncio
    async def test_tool_failure_is_fed_back_not_raised(self):
        engine = ScriptedEngine([
            _tools(_add("Start", "n8n-nodes-base.manualTrigger"), _add("Start", "n8n-nodes-base.manualTrigger")),
            _text("ok"),
        ])
        result, events = await _build(WorkflowBuilder(engine))

        assert result.success
        tool_results = [m for m in result.messages if m.role == "tool_result"]
        assert "already exists" in tool_results[1].content
        failed = [e for e in events if e.type is ProgressType.TOOL_RESULT and e.message.startswith("✗")]
        assert len(failed) == 1


# ---------------------------------------------------------------------------
# Failure paths
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_no_nodes_created(self):
        engine = ScriptedEngine([_text("I am not sure what you want.")])
        result, events = await _build(WorkflowBuilder(engine))

        assert not result.success
        assert result.error == NO_WORKFLOW_ERROR
        assert not result.requires_human_input
        assert result.validation_attempts == 0
        assert ProgressType.ERROR in _types(events)

    @pytest.mark.asyncio
    async def test_engine_exception_becomes_failure(self):
        engine = ScriptedEngine([RuntimeError("upstream unavailable")])
        result, events = await _build(WorkflowBuilder(engine), "hello")

        assert not result.success
        assert result.error == "upstream unavailable"
        assert result.messages[-1].content == "hello"
        assert _types(events)[-1] is ProgressType.ERROR

    @pytest.mark.asyncio
    async def test_engine_failure_mid_build_keeps_history(self):
        engine = ScriptedEngine([
            _tools(_add("Webhook", "n8n-nodes-base.webhook", 2)),
            RuntimeError("overloaded"),
        ])
        builder = WorkflowBuilder(engine)

        result, _ = await _build(builder, "a webhook")

        assert not result.success
        assert result.error == "overloaded"
        assert builder.state.node_count == 1
        assert [m.role for m in result.messages] == ["user", "assistant", "tool_result"]
        assert "Webhook" in result.messages[2].content
        assert result.conversation_log[0].startswith("Tool: add_node(")
        assert (result.input_tokens, result.output_tokens) == (10, 5)

    @pytest.mark.asyncio
    async def test_continue_after_engine_failure_sees_added_nodes(self):
        engine = ScriptedEngine([
            _tools(_add("Webhook", "n8n-nodes-base.webhook", 2)),
            RuntimeError("overloaded"),
            _tools(_add("Slack", "n8n-nodes-base.slack", 2), _call("connect_nodes", sourceNode="Webhook", targetNode="Slack")),
            _text("Done."),
        ])
        builder = WorkflowBuilder(engine)

        failed, _ = await _build(builder, "a webhook")
        result, _ = await _build(builder, "then post to slack", continue_from=failed)

        assert result.success, result.error
        replayed = engine.calls[2]["messages"]
        assert [m.role for m in replayed] == ["user", "assistant", "tool_result", "user"]
        assert [n["name"] for n in result.workflow["nodes"]] == ["Webhook", "Slack"]

    @pytest.mark.asyncio
    async def test_credential_error_escalates_immediately(self):
        validator = SequenceValidator(_invalid("Node Slack: credential slackApi is not set"))
        engine = ScriptedEngine([_tools(_add("Start", "n8n-nodes-base.manualTrigger")), _text("ok")])
        builder = WorkflowBuilder(engine, validator=validator)

        result, events = await _build(builder)

        assert not result.success
        assert result.requires_human_input
        assert result.human_input_reason == CREDENTIALS.suggested_action
        assert result.validation_attempts == 1
        assert ProgressType.RETRY not in _types(events)
        assert len(engine.calls) == 2

    @pytest.mark.asyncio
    async def test_zero_retry_budget(self):
        validator = SequenceValidator(_invalid("Something odd"))
        engine = ScriptedEngine([_tools(_add("Start", "n8n-nodes-base.manualTrigger")), _text("ok")])
        builder = WorkflowBuilder(engine, validator=validator, max_validation_retries=0)

        result, _ = await _build(builder)

        assert not result.success
        assert result.requires_human_input
        assert result.human_input_reason == FALLBACK.suggested_action


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


class TestRetry:
    @pytest.mark.asyncio
    async def test_recoverable_error_is_retried_then_fixed(self):
        validator = SequenceValidator(_invalid("Fetch: missing required parameter url"))
        engine = ScriptedEngine([
            _tools(_add("Start", "n8n-nodes-base.manualTrigger"), _add("Fetch", "n8n-nodes-base.httpRequest", 4)),
            _tools(_call("connect_nodes", sourceNode="Start", targetNode="Fetch")),
            _text("Built."),
            _tools(_call("update_node_parameters", nodeName="Fetch", parameters={"url": "https://example.com"})),
            _text("Fixed."),
        ])
        builder = WorkflowBuilder(engine, validator=validator)

        result, events = await _build(builder)

        assert result.success, result.error
        assert result.validation_attempts == 2
        assert result.workflow["nodes"][1]["parameters"] == {"url": "https://example.com"}
        retry_events = [e for e in events if e.type is ProgressType.RETRY]
        assert [e.message.split(":")[0] for e in retry_events] == ["Retry 1/3"]

        retry_messages = [m for m in result.messages if m.role == "user"][1:]
        assert len(retry_messages) == 1
        assert "missing required parameter url" in retry_messages[0].content
        assert "update_node_parameters" in retry_messages[0].content

    @pytest.mark.asyncio
    async def test_retry_budget_exhausted(self):
        # An unnamespaced type can never be fixed with the available tools.
        engine = ScriptedEngine([_tools(_add("Bad", "slack"))], fallback=_text("I tried."))
        builder = WorkflowBuilder(engine, max_validation_retries=2)

        result, events = await _build(builder)

        assert not result.success
        assert result.requires_human_input
        assert result.validation_attempts == 3
        assert result.error.startswith("Generated workflow is invalid:\nnodes.0.type")
        assert _types(events).count(ProgressType.RETRY) == 2
        assert len(engine.calls) == 4


# ---------------------------------------------------------------------------
# Turn limit
# ---------------------------------------------------------------------------


class TestMaxTurns:
    @pytest.mark.asyncio
    async def test_valid_workflow_at_turn_limit_succeeds(self):
        engine = ScriptedEngine(
            [_tools(_add("Start", "n8n-nodes-base.manualTrigger"))],
            fallback=_tools(_call("get_current_workflow", name="W")),
        )
        builder = WorkflowBuilder(engine, max_turns=3)

        result, _ = await _build(builder)

        assert result.success
        assert len(engine.calls) == 3
        assert result.validation_attempts == 1

    @pytest.mark.asyncio
    async def test_empty_workflow_at_turn_limit(self):
        engine = ScriptedEngine([], fallback=_tools(_call("get_current_workflow", name="W")))
        builder = WorkflowBuilder(engine, max_turns=2)

        result, _ = await _build(builder)

        assert not result.success
        assert result.error == MAX_TURNS_EMPTY_ERROR
        assert result.requires_human_input
        assert result.human_input_reason == MAX_TURNS_EMPTY_REASON
        assert len(engine.calls) == 2

    @pytest.mark.asyncio
    async def test_invalid_workflow_at_turn_limit(self):
        engine = ScriptedEngine(
            [_tools(_add("Bad", "not-a-namespace.node"))],
            fallback=_tools(_call("get_current_workflow", name="W")),
        )
        builder = WorkflowBuilder(engine, max_turns=2)

        result, _ = await _build(builder)

        assert not result.success
        assert result.requires_human_input
        assert "Maximum turns reached" in result.human_input_reason


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestContinuation:
    @pytest.mark.asyncio
    async def test_continue_keeps_graph_and_history(self):
        engine = ScriptedEngine([
            _tools(_add("Webhook", "n8n-nodes-base.webhook", 2)),
            _text("Added the webhook."),
            _tools(
                _add("Slack", "n8n-nodes-base.slack", 2),
                _call("connect_nodes", sourceNode="Webhook", targetNode="Slack"),
            ),
            _text("Added Slack."),
        ])
        builder = WorkflowBuilder(engine)

        first, _ = await _build(builder, "a webhook")
        second, _ = await _build(builder, "now post to slack", continue_from=first)

        assert second.success, second.error
        assert [n["id"] for n in second.workflow["nodes"]] == ["node_1", "node_2"]

        replayed = engine.calls[2]["messages"]
        assert replayed[: len(first.messages)] == first.messages
        assert replayed[len(first.messages)].content == "now post to slack"
        assert second.conversation_log[: len(first.conversation_log)] == first.conversation_log

    @pytest.mark.asyncio
    async def test_new_build_resets_state(self):
        engine = ScriptedEngine([
            _tools(_add("Webhook", "n8n-nodes-base.webhook", 2)),
            _text("ok"),
            _tools(_add("Schedule", "n8n-nodes-base.scheduleTrigger")),
            _text("ok"),
        ])
        builder = WorkflowBuilder(engine)

        await _build(builder, "first")
        second, _ = await _build(builder, "second")

        assert [n["name"] for n in second.workflow["nodes"]] == ["Schedule"]
        assert second.workflow["nodes"][0]["id"] == "node_1"
        assert len(engine.calls[2]["messages"]) == 1

    @pytest.mark.asyncio
    async def test_builders_do_not_share_state(self):
        a = WorkflowBuilder(ScriptedEngine([_tools(_add("Only A", "n8n-nodes-base.manualTrigger")), _text("ok")]))
        b = WorkflowBuilder(ScriptedEngine([_text("nothing")]))

        await _build(a)
        result_b, _ = await _build(b)

        assert a.state.node_count == 1
        assert b.state.node_count == 0
        assert result_b.error == NO_WORKFLOW_ERROR

    def test_reset(self):
        builder = WorkflowBuilder(ScriptedEngine([]))
        builder.state.add_node("n8n-nodes-base.set", 1, "A")
        builder.reset()
        assert builder.state.node_count == 0
