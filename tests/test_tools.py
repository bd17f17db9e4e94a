"""Tool surface: argument parsing, delegation and error envelopes."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from n8n_dev_agent.agent.tools import (
    NOT_CONFIGURED_INTEGRATION,
    NOT_CONFIGURED_VALIDATION,
    TOOL_DEFINITIONS,
    ToolResult,
    WorkflowTools,
)
from n8n_dev_agent.client import CreationCheck, ErrorType, N8nApiError, Settings
from n8n_dev_agent.workflow import CONNECTION_TYPES, WorkflowStateManager, validate_workflow


@pytest.fixture
def tools() -> WorkflowTools:
    return WorkflowTools(WorkflowStateManager())


def _fake_client() -> MagicMock:
    client = MagicMock()
    client.settings = Settings(api_key="a-valid-api-key", base_url="http://n8n.local:5678")
    client.validate_by_creation = AsyncMock()
    client.create_workflow = AsyncMock()
    return client


class TestDefinitions:
    def test_six_tools(self):
        assert [t.name for t in TOOL_DEFINITIONS] == [
            "add_node",
            "connect_nodes",
            "get_current_workflow",
            "update_node_parameters",
            "validate_workflow_with_n8n",
            "create_workflow_in_n8n",
        ]

    def test_schemas_are_objects(self):
        for tool in TOOL_DEFINITIONS:
            assert tool.parameters["type"] == "object"
            assert set(tool.parameters["required"]) <= set(tool.parameters["properties"])

    def test_connection_type_enum_matches_workflow_types(self):
        connect = next(t for t in TOOL_DEFINITIONS if t.name == "connect_nodes")
        enum = connect.parameters["properties"]["connectionType"]["enum"]
        assert tuple(enum) == CONNECTION_TYPES == ("main", "ai_tool", "ai_languageModel", "ai_memory")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("connection_type", CONNECTION_TYPES)
    async def test_every_connection_type_round_trips_through_validator(self, tools, connection_type):
        tools.state.add_node("n8n-nodes-base.manualTrigger", 1, "Start")
        tools.state.add_node("n8n-nodes-base.set", 1, "Next")
        result = await tools.execute(
            "connect_nodes", {"sourceNode": "Start", "targetNode": "Next", "connectionType": connection_type},
        )
        assert result.success, result.message
        assert validate_workflow(tools.state.to_workflow("W")).valid


class TestGraphTools:
    @pytest.mark.asyncio
    async def test_add_node(self, tools):
        result = await tools.execute(
            "add_node",
            {"type": "n8n-nodes-base.webhook", "typeVersion": 2, "name": "Webhook", "parameters": {"path": "x"}},
        )
        assert result.success
        assert "node_1" in result.message
        assert result.data["position"] == [100, 100]
        assert tools.state.get_node("Webhook").parameters == {"path": "x"}

    @pytest.mark.asyncio
    async def test_add_node_with_credentials(self, tools):
        result = await tools.execute(
            "add_node",
            {
                "type": "n8n-nodes-base.slack",
                "typeVersion": 2,
                "name": "Slack",
                "credentials": {"slackApi": {"id": "1", "name": "Slack account"}},
            },
        )
        assert result.success
        assert result.data["credentials"] == {"slackApi": {"id": "1", "name": "Slack account"}}

    @pytest.mark.asyncio
    async def test_duplicate_name_is_a_failed_result(self, tools):
        args = {"type": "n8n-nodes-base.set", "typeVersion": 1, "name": "Set"}
        await tools.execute("add_node", args)
        result = await tools.execute("add_node", args)
        assert not result.success
        assert result.message.startswith("Error adding node:")
        assert "already exists" in result.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("args", [
        {"type": "n8n-nodes-base.set", "name": "Set"},
        {"type": "n8n-nodes-base.set", "typeVersion": 0, "name": "Set"},
        {"type": "n8n-nodes-base.set", "typeVersion": 1, "name": ""},
        {"type": "n8n-nodes-base.set", "typeVersion": "two", "name": "Set"},
    ])
    async def test_invalid_add_node_arguments(self, tools, args):
        result = await tools.execute("add_node", args)
        assert not result.success
        assert result.message.startswith("Invalid arguments:")
        assert tools.state.node_count == 0

    @pytest.mark.asyncio
    async def test_connect_nodes_defaults(self, tools):
        tools.state.add_node("n8n-nodes-base.webhook", 2, "A")
        tools.state.add_node("n8n-nodes-base.set", 1, "B")
        result = await tools.execute("connect_nodes", {"sourceNode": "A", "targetNode": "B"})
        assert result.success
        assert result.message == 'Connected "A" -> "B"'
        edge = tools.state.get_connections("A")[0]
        assert (edge.source_output, edge.target_input, edge.connection_type) == (0, 0, "main")

    @pytest.mark.asyncio
    async def test_connect_missing_node(self, tools):
        tools.state.add_node("n8n-nodes-base.webhook", 2, "A")
        result = await tools.execute("connect_nodes", {"sourceNode": "A", "targetNode": "Nope"})
        assert not result.success
        assert 'Target node "Nope" not found' in result.message

    @pytest.mark.asyncio
    async def test_connect_rejects_unknown_connection_type(self, tools):
        result = await tools.execute(
            "connect_nodes", {"sourceNode": "A", "targetNode": "B", "connectionType": "sideways"},
        )
        assert not result.success
        assert result.message.startswith("Invalid arguments:")

    @pytest.mark.asyncio
    async def test_get_current_workflow(self, tools):
        tools.state.add_node("n8n-nodes-base.webhook", 2, "A")
        result = await tools.execute("get_current_workflow", {"name": "Demo"})
        assert result.success
        assert result.data["name"] == "Demo"
        assert json.loads(result.to_content())["nodes"][0]["name"] == "A"

    @pytest.mark.asyncio
    async def test_update_node_parameters(self, tools):
        tools.state.add_node("n8n-nodes-base.slack", 2, "Slack", {"channel": "#a"})
        result = await tools.execute(
            "update_node_parameters", {"nodeName": "Slack", "parameters": {"text": "hi"}},
        )
        assert result.success
        assert tools.state.get_node("Slack").parameters == {"channel": "#a", "text": "hi"}

    @pytest.mark.asyncio
    async def test_update_missing_node(self, tools):
        result = await tools.execute("update_node_parameters", {"nodeName": "X", "parameters": {}})
        assert not result.success
        assert result.message.startswith("Error updating parameters:")

    @pytest.mark.asyncio
    async def test_unknown_tool(self, tools):
        result = await tools.execute("remove_node", {"name": "A"})
        assert not result.success
        assert result.message == "Unknown tool: remove_node"

    @pytest.mark.asyncio
    async def test_none_arguments(self, tools):
        result = await tools.execute("get_current_workflow", None)
        assert not result.success
        assert "Invalid arguments" in result.message


class TestN8nTools:
    @pytest.mark.asyncio
    async def test_validate_without_client(self, tools):
        result = await tools.execute("validate_workflow_with_n8n", {"workflowName": "W"})
        assert not result.success
        assert result.message == NOT_CONFIGURED_VALIDATION

    @pytest.mark.asyncio
    async def test_create_without_client(self, tools):
        result = await tools.execute("create_workflow_in_n8n", {"workflowName": "W"})
        assert not result.success
        assert result.message == NOT_CONFIGURED_INTEGRATION

    @pytest.mark.asyncio
    async def test_validate_success(self):
        client = _fake_client()
        client.validate_by_creation.return_value = CreationCheck(valid=True)
        tools = WorkflowTools(WorkflowStateManager(), client)
        tools.state.add_node("n8n-nodes-base.webhook", 2, "A")

        result = await tools.execute("validate_workflow_with_n8n", {"workflowName": "Check"})

        assert result.success
        assert "validatedAt" in result.data
        sent = client.validate_by_creation.await_args.args[0]
        assert sent["name"] == "Check"

    @pytest.mark.asyncio
    async def test_validate_failure_reports_error_type(self):
        client = _fake_client()
        client.validate_by_creation.return_value = CreationCheck(
            valid=False,
            error=N8nApiError(400, "Workflow validation failed: missing parameter", ErrorType.VALIDATION, True),
        )
        tools = WorkflowTools(WorkflowStateManager(), client)

        result = await tools.execute("validate_workflow_with_n8n", {"workflowName": "W"})

        assert not result.success
        assert result.message.startswith("n8n validation failed:")
        assert result.data["errorType"] == "VALIDATION"
        assert result.data["recoverable"] is True
        assert "missing parameter" in result.to_content()

    @pytest.mark.asyncio
    async def test_create_success_returns_url(self):
        client = _fake_client()
        client.create_workflow.return_value = {"id": "42", "name": "W", "active": False}
        tools = WorkflowTools(WorkflowStateManager(), client)

        result = await tools.execute("create_workflow_in_n8n", {"workflowName": "W"})

        assert result.success
        assert result.data == {
            "id": "42",
            "name": "W",
            "url": "http://n8n.local:5678/workflow/42",
            "active": False,
        }

    @pytest.mark.asyncio
    async def test_create_api_error(self):
        client = _fake_client()
        client.create_workflow.side_effect = N8nApiError(
            401, "n8n API authentication failed. Check N8N_API_KEY.", ErrorType.AUTHENTICATION, False,
        )
        tools = WorkflowTools(WorkflowStateManager(), client)

        result = await tools.execute("create_workflow_in_n8n", {"workflowName": "W"})

        assert not result.success
        assert "authentication failed" in result.message
        assert result.data["recoverable"] is False

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_failed_result(self):
        client = _fake_client()
        client.validate_by_creation.side_effect = RuntimeError("boom")
        tools = WorkflowTools(WorkflowStateManager(), client)

        result = await tools.execute("validate_workflow_with_n8n", {"workflowName": "W"})

        assert not result.success
        assert "boom" in result.message


class TestToolResult:
    def test_success_without_data_uses_message(self):
        assert ToolResult(True, "done").to_content() == "done"

    def test_failure_includes_data(self):
        content = ToolResult(False, "bad", {"k": 1}).to_content()
        assert content.startswith("bad\n")
        assert '"k": 1' in content

    def test_to_dict_omits_missing_data(self):
        assert ToolResult(False, "bad").to_dict() == {"success": False, "message": "bad"}
