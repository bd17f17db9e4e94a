"""Workflow graph: data types, in-memory state manager and validator."""

from n8n_dev_agent.workflow.state import (
    DuplicateConnectionError,
    DuplicateNameError,
    NodeNotFoundError,
    WorkflowStateError,
    WorkflowStateManager,
    grid_position,
)
from n8n_dev_agent.workflow.types import (
    CONNECTION_TYPES,
    Connection,
    ConnectionType,
    CredentialReference,
    WorkflowNode,
)
from n8n_dev_agent.workflow.validator import (
    SemanticValidationError,
    StructuralValidationError,
    ValidationResult,
    WorkflowValidationError,
    is_trigger_type,
    validate_and_clean,
    validate_workflow,
)

__all__ = [
    # State
    "WorkflowStateManager",
    "WorkflowStateError",
    "DuplicateNameError",
    "DuplicateConnectionError",
    "NodeNotFoundError",
    "grid_position",
    # Types
    "CONNECTION_TYPES",
    "Connection",
    "ConnectionType",
    "CredentialReference",
    "WorkflowNode",
    # Validation
    "ValidationResult",
    "WorkflowValidationError",
    "StructuralValidationError",
    "SemanticValidationError",
    "is_trigger_type",
    "validate_workflow",
    "validate_and_clean",
]
