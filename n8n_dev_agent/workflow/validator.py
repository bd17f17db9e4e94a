"""n8n workflow validator.

Two phases, both pure (the input is never mutated):

  1. Structural — the workflow dict is parsed against pydantic models that
     describe n8n's import format. Any violation returns immediately with the
     full list of problems; the semantic checks assume a well-formed shape.
  2. Semantic — graph-level checks on the structurally valid workflow:
     duplicate names/IDs and dangling connection endpoints are errors;
     a missing trigger and orphan nodes are warnings.

Warnings never affect validity: ValidationResult.valid is True iff there are
no errors.

The trigger and orphan heuristics match on substrings of the node type. They
are best-effort against n8n's open-ended node vocabulary.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from pydantic import BaseModel, Field, StrictFloat, StrictInt, ValidationError, field_validator

from n8n_dev_agent.workflow.types import EXTENSION_NAMESPACE, PRIMARY_NAMESPACE, ConnectionType

logger = logging.getLogger("n8n_dev_agent.workflow.validator")

_TRIGGER_MARKERS: tuple[str, ...] = ("trigger", "webhook")
# Legacy polling triggers whose type name carries no "trigger" marker.
_POLLING_TRIGGER_SUFFIXES: tuple[str, ...] = (".cron", ".interval")

NO_TRIGGER_WARNING = "Workflow has no trigger node. It can only be executed manually via API."


# ---------------------------------------------------------------------------
# Structural schema
# ---------------------------------------------------------------------------

_Number = Union[StrictInt, StrictFloat]


class _CredentialSchema(BaseModel):
    id: str
    name: str


class _NodeSchema(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    type: str = Field(min_length=1)
    typeVersion: StrictInt = Field(gt=0)
    position: tuple[_Number, _Number]
    parameters: dict[str, Any]
    credentials: dict[str, _CredentialSchema] | None = None

    @field_validator("type")
    @classmethod
    def known_namespace(cls, v: str) -> str:
        if not v.startswith((PRIMARY_NAMESPACE, EXTENSION_NAMESPACE)):
            raise ValueError(
                f"Node type must start with '{PRIMARY_NAMESPACE}' or '{EXTENSION_NAMESPACE}'"
            )
        return v


class _ConnectionTargetSchema(BaseModel):
    node: str = Field(min_length=1)
    type: ConnectionType
    index: StrictInt = Field(ge=0)


class _NodeConnectionsSchema(BaseModel):
    main: list[list[_ConnectionTargetSchema]]


class _SettingsSchema(BaseModel):
    executionOrder: Literal["v1"]


class _WorkflowSchema(BaseModel):
    name: str = Field(min_length=1)
    nodes: list[_NodeSchema] = Field(min_length=1)
    connections: dict[str, _NodeConnectionsSchema]
    settings: _SettingsSchema


# ---------------------------------------------------------------------------
# Results and errors
# ---------------------------------------------------------------------------


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}


class WorkflowValidationError(Exception):
    """Raised by validate_and_clean() for an invalid workflow.

    errors:   every hard error found.
    warnings: non-fatal findings (empty for structural failures).
    """

    def __init__(self, errors: list[str], warnings: list[str] | None = None) -> None:
        super().__init__("Invalid workflow:\n" + "\n".join(errors))
        self.errors = errors
        self.warnings = warnings or []


class StructuralValidationError(WorkflowValidationError):
    """The workflow does not match n8n's import schema."""


class SemanticValidationError(WorkflowValidationError):
    """The workflow is well-formed but its graph is inconsistent."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def is_trigger_type(node_type: str) -> bool:
    """True if an n8n node type looks like something that starts a workflow."""
    lowered = node_type.lower()
    return any(m in lowered for m in _TRIGGER_MARKERS) or lowered.endswith(_POLLING_TRIGGER_SUFFIXES)


def _format_issue(error: Mapping[str, Any]) -> str:
    path = ".".join(str(p) for p in error.get("loc", ()))
    return f"{path or 'workflow'}: {error.get('msg', 'invalid value')}"


def _structural_errors(workflow: Any) -> list[str]:
    try:
        _WorkflowSchema.model_validate(workflow)
    except ValidationError as e:
        return [_format_issue(err) for err in e.errors()]
    return []


def _iter_targets(connections: Mapping[str, Any]):
    """Yield (source_name, target_name) for every connection target."""
    for source, outputs in connections.items():
        for slot in outputs.get("main", []):
            for target in slot:
                yield source, target["node"]


def _semantic_checks(workflow: Mapping[str, Any]) -> tuple[list[str], list[str]]:
    errors: list[str] = []
    warnings: list[str] = []

    nodes = workflow["nodes"]
    connections = workflow["connections"]

    seen_names: set[str] = set()
    for node in nodes:
        if node["name"] in seen_names:
            errors.append(f'Duplicate node name: "{node["name"]}"')
        seen_names.add(node["name"])

    seen_ids: set[str] = set()
    for node in nodes:
        if node["id"] in seen_ids:
            errors.append(f'Duplicate node ID: "{node["id"]}"')
        seen_ids.add(node["id"])

    for source in connections:
        if source not in seen_names:
            errors.append(f'Connection source "{source}" does not exist as a node')

    connected: set[str] = set()
    for source, target in _iter_targets(connections):
        connected.add(target)
        if target not in seen_names:
            errors.append(f'Connection target "{target}" (from "{source}") does not exist as a node')

    if not any(is_trigger_type(n["type"]) for n in nodes):
        warnings.append(NO_TRIGGER_WARNING)

    if len(nodes) > 1:
        for node in nodes:
            if not is_trigger_type(node["type"]) and node["name"] not in connected:
                warnings.append(f'Node "{node["name"]}" has no incoming connections')

    return errors, warnings


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_workflow(workflow: Mapping[str, Any]) -> ValidationResult:
    """Validate a serialized workflow. Returns ValidationResult; never raises."""
    structural = _structural_errors(workflow)
    if structural:
        return ValidationResult(valid=False, errors=structural, warnings=[])

    errors, warnings = _semantic_checks(workflow)
    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def validate_and_clean(workflow: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return the workflow unchanged if valid, otherwise raise.

    Raises StructuralValidationError or SemanticValidationError. Warnings of
    a valid workflow are logged, not raised.
    """
    structural = _structural_errors(workflow)
    if structural:
        raise StructuralValidationError(structural)

    errors, warnings = _semantic_checks(workflow)
    if errors:
        raise SemanticValidationError(errors, warnings)

    for warning in warnings:
        logger.warning("Workflow warning: %s", warning)
    return workflow
