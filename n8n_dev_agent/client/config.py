"""Configuration for the n8n HTTP client."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

_PLACEHOLDER_KEYS = frozenset({"your-n8n-api-key"})
_MIN_KEY_LENGTH = 10


@dataclass(frozen=True)
class Settings:
    """Immutable settings loaded from environment variables."""

    api_key: str = field(default="", repr=False)
    base_url: str = "http://localhost:5678"
    timeout: int = 30

    @classmethod
    def from_env(cls) -> Settings:
        api_key = os.getenv("N8N_API_KEY", "")
        base_url = os.getenv("N8N_BASE_URL", "http://localhost:5678").rstrip("/")
        timeout = int(os.getenv("N8N_TIMEOUT", "30"))
        return cls(api_key=api_key, base_url=base_url, timeout=timeout)

    @property
    def is_configured(self) -> bool:
        """False for a missing, placeholder or obviously truncated API key."""
        key = self.api_key.strip()
        return bool(key) and key not in _PLACEHOLDER_KEYS and len(key) >= _MIN_KEY_LENGTH

    @property
    def api_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/api/v1"

    @property
    def headers(self) -> dict[str, str]:
        return {
            "X-N8N-API-KEY": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def workflow_url(self, workflow_id: str) -> str:
        """Editor URL for a workflow created on this instance."""
        return f"{self.base_url.rstrip('/')}/workflow/{workflow_id}"
