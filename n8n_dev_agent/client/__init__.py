"""n8n REST API client."""

from n8n_dev_agent.client.config import Settings
from n8n_dev_agent.client.n8n_client import (
    CreationCheck,
    ErrorType,
    N8nApiError,
    N8nClient,
    create_n8n_client,
    is_recoverable_validation_message,
)

__all__ = [
    "Settings",
    "N8nClient",
    "N8nApiError",
    "ErrorType",
    "CreationCheck",
    "create_n8n_client",
    "is_recoverable_validation_message",
]
