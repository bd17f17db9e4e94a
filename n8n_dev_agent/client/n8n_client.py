"""Async n8n REST API client using httpx.

Only the workflow endpoints the agent needs are wrapped. Unlike a plain
passthrough client, every non-2xx response and every transport failure is
raised as a typed N8nApiError so callers can decide whether the agent can
recover from it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from n8n_dev_agent.client.config import Settings

logger = logging.getLogger("n8n_dev_agent.client")

_CREDENTIAL_MARKERS: tuple[str, ...] = ("credential", "authentication", "oauth", "api key")
_FIXABLE_MARKERS: tuple[str, ...] = (
    "required",
    "missing",
    "invalid",
    "unknown",
    "not found",
    "parameter",
    "property",
    "type",
    "connection",
    "trigger",
)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorType(str, Enum):
    AUTHENTICATION = "AUTHENTICATION"
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    SERVER_ERROR = "SERVER_ERROR"
    NETWORK = "NETWORK"


class N8nApiError(Exception):
    """A failed n8n API call.

    status_code: HTTP status, or 0 when the request never got a response.
    error_type:  ErrorType category.
    recoverable: True if the agent can plausibly fix the cause itself
                 (e.g. a missing parameter), False if a human must act
                 (bad API key, missing credentials, wrong workflow ID).
    details:     Parsed response body when available.
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        error_type: ErrorType,
        recoverable: bool,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.error_type = error_type
        self.recoverable = recoverable
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "statusCode": self.status_code,
            "message": self.message,
            "errorType": self.error_type.value,
            "recoverable": self.recoverable,
            "details": self.details,
        }


@dataclass
class CreationCheck:
    """Outcome of validate_by_creation()."""

    valid: bool
    error: N8nApiError | None = None


def is_recoverable_validation_message(message: str) -> bool:
    """Classify an n8n 400/422 message as agent-fixable or not."""
    lowered = message.lower()
    if any(m in lowered for m in _CREDENTIAL_MARKERS):
        return False
    return any(m in lowered for m in _FIXABLE_MARKERS)


def _extract_validation_message(body: Any) -> str:
    if not isinstance(body, dict):
        return "Unknown validation error"
    if isinstance(body.get("message"), str):
        return body["message"]
    if isinstance(body.get("error"), str):
        return body["error"]
    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        return "; ".join(str(e) for e in errors)
    return json.dumps(body)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class N8nClient:
    """Thin async wrapper around n8n's public workflow API."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.api_url,
            headers=settings.headers,
            timeout=httpx.Timeout(settings.timeout, connect=10.0),
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict | None = None,
        params: dict | None = None,
    ) -> httpx.Response:
        try:
            return await self._client.request(method, path, json=payload, params=params)
        except httpx.HTTPError as e:
            logger.error("%s %s failed: %s", method, path, e)
            raise N8nApiError(
                status_code=0,
                message=f"Network error: {e or 'failed to connect to n8n'}",
                error_type=ErrorType.NETWORK,
                recoverable=True,
            ) from e

    @staticmethod
    def _parse_error(response: httpx.Response) -> N8nApiError:
        try:
            body = response.json()
        except ValueError:
            body = None

        status = response.status_code
        if status in (401, 403):
            return N8nApiError(
                status, "n8n API authentication failed. Check N8N_API_KEY.",
                ErrorType.AUTHENTICATION, recoverable=False, details=body,
            )
        if status in (400, 422):
            message = _extract_validation_message(body)
            return N8nApiError(
                status, f"Workflow validation failed: {message}",
                ErrorType.VALIDATION,
                recoverable=is_recoverable_validation_message(message),
                details=body,
            )
        if status == 404:
            return N8nApiError(
                status, "Workflow not found", ErrorType.NOT_FOUND, recoverable=False, details=body,
            )
        if status == 429:
            return N8nApiError(
                status, "Rate limit exceeded. Please wait before retrying.",
                ErrorType.RATE_LIMIT, recoverable=True, details=body,
            )
        return N8nApiError(
            status, f"n8n server error: {response.reason_phrase}",
            ErrorType.SERVER_ERROR, recoverable=True, details=body,
        )

    # ==================================================================
    # WORKFLOWS
    # ==================================================================

    async def create_workflow(self, workflow: dict[str, Any]) -> dict[str, Any]:
        """Create a workflow. Returns n8n's record (id, name, active, createdAt, updatedAt, ...)."""
        r = await self._request("POST", "/workflows", workflow)
        if not r.is_success:
            error = self._parse_error(r)
            logger.error("POST /workflows -> %s (%s)", r.status_code, error.error_type.value)
            raise error
        return r.json()

    async def delete_workflow(self, workflow_id: str) -> None:
        r = await self._request("DELETE", f"/workflows/{workflow_id}")
        if not r.is_success:
            logger.error("DELETE /workflows/%s -> %s", workflow_id, r.status_code)
            raise self._parse_error(r)

    async def validate_by_creation(self, workflow: dict[str, Any]) -> CreationCheck:
        """Validate with n8n's own import logic: create the workflow, then delete it.

        A failed cleanup is logged and does not turn a successful creation
        into a validation failure.
        """
        try:
            created = await self.create_workflow(workflow)
        except N8nApiError as e:
            return CreationCheck(valid=False, error=e)

        try:
            await self.delete_workflow(str(created["id"]))
        except N8nApiError as e:
            logger.warning("Failed to delete temporary workflow %s: %s", created.get("id"), e)

        return CreationCheck(valid=True)

    async def health_check(self) -> bool:
        """True if the API answers an authenticated list request."""
        try:
            r = await self._request("GET", "/workflows", params={"limit": 1})
        except N8nApiError:
            return False
        return r.is_success


def create_n8n_client(settings: Settings) -> N8nClient | None:
    """Return a client when an API key is configured, else None."""
    if not settings.is_configured:
        logger.info("n8n API key not configured; remote validation disabled")
        return None
    return N8nClient(settings)
