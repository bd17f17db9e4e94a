"""Tool surface exposed to the oracle.

Six tools, each declared twice: a ToolDef (JSON Schema the LLM sees) and a
pydantic model that parses the arguments the LLM actually sent. Every call
goes through WorkflowTools.execute(), which always returns a ToolResult:
state manager errors, n8n API errors and malformed arguments all come back
as success=False with a message the oracle can act on.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from n8n_dev_agent.client import N8nApiError, N8nClient
from n8n_dev_agent.reasoning import ToolDef
from n8n_dev_agent.workflow import CONNECTION_TYPES, ConnectionType, WorkflowStateError, WorkflowStateManager

logger = logging.getLogger("n8n_dev_agent.agent.tools")

NOT_CONFIGURED_VALIDATION = (
    "n8n API is not configured. Set N8N_API_KEY environment variable to enable n8n validation."
)
NOT_CONFIGURED_INTEGRATION = (
    "n8n API is not configured. Set N8N_API_KEY environment variable to enable n8n integration."
)


# ---------------------------------------------------------------------------
# Result envelope
# ---------------------------------------------------------------------------


@dataclass
class ToolResult:
    """Outcome of one tool call.

    success: False when the call was rejected or the delegate failed.
    message: short human-readable summary.
    data:    structured payload (node, workflow, n8n record), when any.
    """

    success: bool
    message: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        return out

    def to_content(self) -> str:
        """Text sent back to the oracle as the tool_result."""
        if self.success:
            if self.data is None:
                return self.message
            return json.dumps(self.data, indent=2, default=str)
        if self.data is None:
            return self.message
        return f"{self.message}\n{json.dumps(self.data, indent=2, default=str)}"


# ---------------------------------------------------------------------------
# Argument models
# ---------------------------------------------------------------------------


class _CredentialArg(BaseModel):
    id: str
    name: str


class AddNodeArgs(BaseModel):
    type: str = Field(min_length=1)
    typeVersion: int = Field(gt=0)
    name: str = Field(min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)
    credentials: dict[str, _CredentialArg] | None = None


class ConnectNodesArgs(BaseModel):
    sourceNode: str = Field(min_length=1)
    targetNode: str = Field(min_length=1)
    sourceOutput: int = Field(default=0, ge=0)
    targetInput: int = Field(default=0, ge=0)
    connectionType: ConnectionType = "main"


class GetCurrentWorkflowArgs(BaseModel):
    name: str = Field(min_length=1)


class UpdateNodeParametersArgs(BaseModel):
    nodeName: str = Field(min_length=1)
    parameters: dict[str, Any]


class WorkflowNameArgs(BaseModel):
    workflowName: str = Field(min_length=1)


_ARG_MODELS: dict[str, type[BaseModel]] = {
    "add_node": AddNodeArgs,
    "connect_nodes": ConnectNodesArgs,
    "get_current_workflow": GetCurrentWorkflowArgs,
    "update_node_parameters": UpdateNodeParametersArgs,
    "validate_workflow_with_n8n": WorkflowNameArgs,
    "create_workflow_in_n8n": WorkflowNameArgs,
}


def _format_arg_errors(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}" for err in e.errors()
    )


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


def _td(name: str, description: str, properties: dict[str, Any], required: list[str]) -> ToolDef:
    return ToolDef(
        name=name,
        description=description,
        parameters={"type": "object", "properties": properties, "required": required},
    )


TOOL_DEFINITIONS: list[ToolDef] = [
    _td(
        "add_node",
        "Add a node to the workflow. Use this to add triggers, actions, or control nodes. "
        "The node ID and canvas position are assigned automatically.",
        {
            "type": {"type": "string", "description": "n8n node type (e.g., 'n8n-nodes-base.httpRequest')"},
            "typeVersion": {"type": "integer", "minimum": 1, "description": "Node version number"},
            "name": {"type": "string", "description": "Unique display name for the node"},
            "parameters": {"type": "object", "description": "Node parameters"},
            "credentials": {
                "type": "object",
                "description": "Credential references keyed by credential type, e.g. "
                               "{\"slackApi\": {\"id\": \"1\", \"name\": \"Slack account\"}}",
            },
        },
        ["type", "typeVersion", "name"],
    ),
    _td(
        "connect_nodes",
        "Connect two nodes in the workflow. Data flows from source to target.",
        {
            "sourceNode": {"type": "string", "description": "Name of the source node"},
            "targetNode": {"type": "string", "description": "Name of the target node"},
            "sourceOutput": {"type": "integer", "minimum": 0, "description": "Source output index (default: 0)"},
            "targetInput": {"type": "integer", "minimum": 0, "description": "Target input index (default: 0)"},
            "connectionType": {
                "type": "string",
                "enum": list(CONNECTION_TYPES),
                "description": "Connection type (default: main)",
            },
        },
        ["sourceNode", "targetNode"],
    ),
    _td(
        "get_current_workflow",
        "Get the current workflow state as JSON. Use this to verify the workflow before finalizing.",
        {"name": {"type": "string", "description": "Name for the workflow"}},
        ["name"],
    ),
    _td(
        "update_node_parameters",
        "Update parameters for an existing node. New keys are merged over existing ones.",
        {
            "nodeName": {"type": "string", "description": "Name of the node to update"},
            "parameters": {"type": "object", "description": "Parameters to update"},
        },
        ["nodeName", "parameters"],
    ),
    _td(
        "validate_workflow_with_n8n",
        "Validate the current workflow by creating a temporary workflow through the n8n API, "
        "then immediately deleting it. Returns success or the detailed error from n8n. "
        "Only available if N8N_API_KEY is configured.",
        {"workflowName": {"type": "string", "description": "Name for the temporary validation workflow"}},
        ["workflowName"],
    ),
    _td(
        "create_workflow_in_n8n",
        "Create the workflow in the n8n instance permanently. Call this only after validation "
        "passes. Returns the workflow ID and URL. Only available if N8N_API_KEY is configured.",
        {"workflowName": {"type": "string", "description": "Name for the workflow in n8n"}},
        ["workflowName"],
    ),
]


# ---------------------------------------------------------------------------
# Tool surface
# ---------------------------------------------------------------------------


class WorkflowTools:
    """Binds the tool set to one state manager and an optional n8n client."""

    def __init__(self, state: WorkflowStateManager, client: N8nClient | None = None) -> None:
        self.state = state
        self.client = client

    @property
    def n8n_available(self) -> bool:
        return self.client is not None

    @property
    def definitions(self) -> list[ToolDef]:
        return list(TOOL_DEFINITIONS)

    async def execute(self, name: str, arguments: dict[str, Any] | None) -> ToolResult:
        """Run one tool call. Never raises."""
        model = _ARG_MODELS.get(name)
        if model is None:
            logger.warning("Unknown tool requested: %r", name)
            return ToolResult(False, f"Unknown tool: {name}")

        try:
            args = model.model_validate(arguments or {})
        except ValidationError as e:
            logger.warning("Tool %s called with invalid arguments %s", name, arguments)
            return ToolResult(False, f"Invalid arguments: {_format_arg_errors(e)}")

        handler = getattr(self, f"_{name}")
        try:
            result = await handler(args)
        except Exception as e:
            logger.exception("Tool %s failed unexpectedly", name)
            return ToolResult(False, f"{name} error: {e}")

        logger.debug("Tool %s -> success=%s", name, result.success)
        return result

    # ------------------------------------------------------------------
    # Graph tools
    # ------------------------------------------------------------------

    async def _add_node(self, args: AddNodeArgs) -> ToolResult:
        try:
            node = self.state.add_node(
                type=args.type,
                type_version=args.typeVersion,
                name=args.name,
                parameters=args.parameters,
                credentials={k: v.model_dump() for k, v in args.credentials.items()} if args.credentials else None,
            )
        except WorkflowStateError as e:
            return ToolResult(False, f"Error adding node: {e}")
        return ToolResult(True, f'Added node "{node.name}" ({node.type}) with ID: {node.id}', node.to_dict())

    async def _connect_nodes(self, args: ConnectNodesArgs) -> ToolResult:
        try:
            self.state.connect_nodes(
                args.sourceNode,
                args.targetNode,
                source_output=args.sourceOutput,
                target_input=args.targetInput,
                connection_type=args.connectionType,
            )
        except WorkflowStateError as e:
            return ToolResult(False, f"Error connecting nodes: {e}")
        return ToolResult(True, f'Connected "{args.sourceNode}" -> "{args.targetNode}"')

    async def _get_current_workflow(self, args: GetCurrentWorkflowArgs) -> ToolResult:
        return ToolResult(True, "Current workflow state:", self.state.to_workflow(args.name))

    async def _update_node_parameters(self, args: UpdateNodeParametersArgs) -> ToolResult:
        try:
            self.state.update_node_parameters(args.nodeName, args.parameters)
        except WorkflowStateError as e:
            return ToolResult(False, f"Error updating parameters: {e}")
        return ToolResult(True, f'Updated parameters for node "{args.nodeName}"')

    # ------------------------------------------------------------------
    # n8n tools
    # ------------------------------------------------------------------

    async def _validate_workflow_with_n8n(self, args: WorkflowNameArgs) -> ToolResult:
        if self.client is None:
            return ToolResult(False, NOT_CONFIGURED_VALIDATION)

        check = await self.client.validate_by_creation(self.state.to_workflow(args.workflowName))
        if check.valid:
            return ToolResult(
                True,
                "Workflow validated successfully against n8n API.",
                {"validatedAt": datetime.now(timezone.utc).isoformat()},
            )

        error = check.error
        return ToolResult(
            False,
            f"n8n validation failed: {error.message if error else 'Unknown error'}",
            {
                "errorType": error.error_type.value if error else None,
                "recoverable": error.recoverable if error else None,
                "details": error.details if error else None,
            },
        )

    async def _create_workflow_in_n8n(self, args: WorkflowNameArgs) -> ToolResult:
        if self.client is None:
            return ToolResult(False, NOT_CONFIGURED_INTEGRATION)

        try:
            created = await self.client.create_workflow(self.state.to_workflow(args.workflowName))
        except N8nApiError as e:
            return ToolResult(
                False,
                f"Error creating workflow in n8n: {e.message}",
                {"errorType": e.error_type.value, "recoverable": e.recoverable},
            )

        return ToolResult(
            True,
            "Workflow created successfully in n8n.",
            {
                "id": created.get("id"),
                "name": created.get("name"),
                "url": self.client.settings.workflow_url(str(created.get("id"))),
                "active": created.get("active", False),
            },
        )
