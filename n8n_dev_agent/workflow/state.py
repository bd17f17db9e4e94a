"""In-memory state of the workflow being built.

WorkflowStateManager is the single owner of nodes and connections for one
build session. Nodes are keyed by their (unique, case-sensitive) name; edges
are stored per source name in insertion order. Every mutation goes through
the methods below.

There is no module-level instance. Each WorkflowBuilder creates (or is
handed) its own manager and resets it between independent builds.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from n8n_dev_agent.workflow.types import (
    EXECUTION_ORDER,
    Connection,
    ConnectionType,
    CredentialReference,
    WorkflowNode,
)

logger = logging.getLogger("n8n_dev_agent.workflow.state")

# Grid layout: 4 nodes per row.
_GRID_COLUMNS: int = 4
_GRID_X: int = 250
_GRID_Y: int = 150
_START_X: int = 100
_START_Y: int = 100


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class WorkflowStateError(Exception):
    """Base class for state manager mutation failures."""


class DuplicateNameError(WorkflowStateError):
    def __init__(self, name: str) -> None:
        super().__init__(f'Node with name "{name}" already exists')
        self.name = name


class NodeNotFoundError(WorkflowStateError):
    def __init__(self, name: str, role: str | None = None) -> None:
        label = f"{role.capitalize()} node" if role else "Node"
        super().__init__(f'{label} "{name}" not found')
        self.name = name
        self.role = role


class DuplicateConnectionError(WorkflowStateError):
    def __init__(self, source: str, target: str, source_output: int, target_input: int) -> None:
        super().__init__(
            f'Connection from "{source}" (output {source_output}) to "{target}" '
            f"(input {target_input}) already exists"
        )
        self.source = source
        self.target = target


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------


def grid_position(index: int) -> tuple[int, int]:
    """Canvas position for the index-th node (0-based) in the auto-layout grid."""
    return (
        _START_X + (index % _GRID_COLUMNS) * _GRID_X,
        _START_Y + (index // _GRID_COLUMNS) * _GRID_Y,
    )


def _to_credentials(
    credentials: Mapping[str, CredentialReference | Mapping[str, str]] | None,
) -> dict[str, CredentialReference] | None:
    if not credentials:
        return None
    out: dict[str, CredentialReference] = {}
    for cred_type, ref in credentials.items():
        if isinstance(ref, CredentialReference):
            out[cred_type] = ref
        else:
            out[cred_type] = CredentialReference(id=str(ref["id"]), name=str(ref["name"]))
    return out


# ---------------------------------------------------------------------------
# State manager
# ---------------------------------------------------------------------------


class WorkflowStateManager:
    """Authoritative in-memory graph for the workflow being built."""

    def __init__(self) -> None:
        self._nodes: dict[str, WorkflowNode] = {}
        self._connections: dict[str, list[Connection]] = {}
        self._node_counter = 0

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_node(
        self,
        type: str,
        type_version: int,
        name: str,
        parameters: Mapping[str, Any] | None = None,
        credentials: Mapping[str, CredentialReference | Mapping[str, str]] | None = None,
    ) -> WorkflowNode:
        """Add a node and return it.

        The ID and position are assigned here. Raises DuplicateNameError
        (without touching state) when a node with the same name exists.
        """
        if name in self._nodes:
            raise DuplicateNameError(name)

        self._node_counter += 1
        node = WorkflowNode(
            id=f"node_{self._node_counter}",
            name=name,
            type=type,
            typeVersion=type_version,
            position=grid_position(len(self._nodes)),
            parameters=dict(parameters or {}),
            credentials=_to_credentials(credentials),
        )
        self._nodes[name] = node
        logger.debug("Added node %s %r (%s v%d)", node.id, name, type, type_version)
        return node

    def remove_node(self, name: str) -> bool:
        """Remove a node and every connection touching it. False if absent."""
        if name not in self._nodes:
            return False

        del self._nodes[name]
        self._connections.pop(name, None)

        for source in list(self._connections):
            remaining = [c for c in self._connections[source] if c.target != name]
            if remaining:
                self._connections[source] = remaining
            else:
                del self._connections[source]

        logger.debug("Removed node %r", name)
        return True

    def connect_nodes(
        self,
        source: str,
        target: str,
        source_output: int = 0,
        target_input: int = 0,
        connection_type: ConnectionType = "main",
    ) -> Connection:
        """Wire source[source_output] → target[target_input]."""
        if source not in self._nodes:
            raise NodeNotFoundError(source, role="source")
        if target not in self._nodes:
            raise NodeNotFoundError(target, role="target")

        edges = self._connections.get(source, [])
        for edge in edges:
            if (
                edge.target == target
                and edge.source_output == source_output
                and edge.target_input == target_input
            ):
                raise DuplicateConnectionError(source, target, source_output, target_input)

        connection = Connection(
            target=target,
            source_output=source_output,
            target_input=target_input,
            connection_type=connection_type,
        )
        self._connections.setdefault(source, []).append(connection)
        logger.debug("Connected %r[%d] -> %r[%d] (%s)", source, source_output, target, target_input, connection_type)
        return connection

    def update_node_parameters(self, name: str, parameters: Mapping[str, Any]) -> WorkflowNode:
        """Shallow-merge parameters into the node; overlapping keys are overwritten."""
        node = self._nodes.get(name)
        if node is None:
            raise NodeNotFoundError(name)
        node.parameters = {**node.parameters, **parameters}
        return node

    def reset(self) -> None:
        """Clear nodes, connections and the ID counter."""
        self._nodes.clear()
        self._connections.clear()
        self._node_counter = 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_node(self, name: str) -> WorkflowNode | None:
        return self._nodes.get(name)

    def get_nodes(self) -> list[WorkflowNode]:
        return list(self._nodes.values())

    def get_connections(self, source: str) -> list[Connection]:
        return list(self._connections.get(source, []))

    def to_workflow(self, name: str) -> dict[str, Any]:
        """Serialize the current graph to n8n workflow JSON (as a dict).

        Each source's edges are grouped by output slot. The "main" array is
        sized max(source_output) + 1 so output indices stay positional; slots
        without edges serialize as empty lists.
        """
        connections: dict[str, dict[str, list[list[dict[str, Any]]]]] = {}

        for source, edges in self._connections.items():
            slots: dict[int, list[Connection]] = {}
            for edge in edges:
                slots.setdefault(edge.source_output, []).append(edge)

            main = [
                [edge.to_target() for edge in slots.get(i, [])]
                for i in range(max(slots) + 1)
            ]
            connections[source] = {"main": main}

        return {
            "name": name,
            "nodes": [node.to_dict() for node in self._nodes.values()],
            "connections": connections,
            "settings": {"executionOrder": EXECUTION_ORDER},
        }

    def summary(self) -> str:
        """Human-readable listing of nodes and connections."""
        node_lines = [f"- {n.name} ({n.type})" for n in self._nodes.values()]
        edge_lines = [
            f"- {source} -> {edge.target}"
            for source, edges in self._connections.items()
            for edge in edges
        ]
        nodes_text = "\n".join(node_lines) or "(none)"
        edges_text = "\n".join(edge_lines) or "(none)"
        return (
            f"Nodes ({len(node_lines)}):\n{nodes_text}\n\n"
            f"Connections ({len(edge_lines)}):\n{edges_text}"
        )
