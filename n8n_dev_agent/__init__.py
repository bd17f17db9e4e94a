"""Generate n8n workflows from natural language with a tool-calling LLM."""

__version__ = "0.1.0"
