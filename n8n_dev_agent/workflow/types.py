"""n8n workflow data types.

These mirror n8n's workflow import format. WorkflowNode is what the state
manager stores; Connection is the internal edge record it keeps per source
node. The serialized workflow itself is a plain dict in the exact wire shape:

    {
      "name": "Webhook to Slack",
      "nodes": [
        {"id": "node_1", "name": "Webhook", "type": "n8n-nodes-base.webhook",
         "typeVersion": 2, "position": [100, 100], "parameters": {}}
      ],
      "connections": {
        "Webhook": {"main": [[{"node": "Slack", "type": "main", "index": 0}]]}
      },
      "settings": {"executionOrder": "v1"}
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, get_args

ConnectionType = Literal["main", "ai_tool", "ai_languageModel", "ai_memory"]

CONNECTION_TYPES: tuple[str, ...] = get_args(ConnectionType)

# Node type namespaces n8n accepts on import.
PRIMARY_NAMESPACE = "n8n-nodes-base."
EXTENSION_NAMESPACE = "@n8n/n8n-nodes-langchain."

EXECUTION_ORDER = "v1"


@dataclass
class CredentialReference:
    """Reference to a credential already stored in n8n."""

    id: str
    name: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name}


@dataclass
class WorkflowNode:
    """A single node in an n8n workflow.

    id:          Assigned by WorkflowStateManager ("node_<n>"), never by the caller.
    name:        Unique display name. The only handle used to connect or update it.
    type:        Namespaced n8n node type, e.g. "n8n-nodes-base.httpRequest".
                 Opaque here; checked by the validator, not at mutation time.
    typeVersion: Positive integer node version.
    position:    (x, y) canvas coordinates from the grid layout.
    parameters:  Node-specific configuration.
    credentials: Optional credential type → CredentialReference mapping.
    """

    id: str
    name: str
    type: str
    typeVersion: int
    position: tuple[int, int]
    parameters: dict[str, Any] = field(default_factory=dict)
    credentials: dict[str, CredentialReference] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the n8n node shape. credentials is omitted when unset."""
        node: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "typeVersion": self.typeVersion,
            "position": [self.position[0], self.position[1]],
            "parameters": dict(self.parameters),
        }
        if self.credentials:
            node["credentials"] = {k: v.to_dict() for k, v in self.credentials.items()}
        return node


@dataclass(frozen=True)
class Connection:
    """Internal edge record, stored under its source node name."""

    target: str
    source_output: int = 0
    target_input: int = 0
    connection_type: ConnectionType = "main"

    def to_target(self) -> dict[str, Any]:
        """Serialize as an n8n connection target: {node, type, index}."""
        return {"node": self.target, "type": self.connection_type, "index": self.target_input}
