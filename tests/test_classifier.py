"""Error classification and corrective prompts."""

from __future__ import annotations

import pytest

from n8n_dev_agent.agent.classifier import (
    CREDENTIALS,
    FALLBACK,
    ErrorAnalysis,
    ErrorClassifier,
    classify_error,
    contains_any,
)
from n8n_dev_agent.agent.prompts import NODE_CATALOG, build_retry_prompt, format_node_catalog, get_system_prompt


class TestClassifyError:
    @pytest.mark.parametrize("text", [
        "Missing credential for slackApi",
        "OAuth token expired",
        "Invalid API key",
        "Authentication failed",
        # credentials win even when a fixable marker is also present
        "required credential parameter missing",
    ])
    def test_credential_errors_are_not_recoverable(self, text):
        analysis = classify_error(text)
        assert analysis.recoverable is False
        assert analysis.category == "credentials"

    def test_missing_parameter(self):
        analysis = classify_error("nodes.0.parameters: Field required")
        assert analysis.recoverable
        assert "update_node_parameters" in analysis.suggested_action

    def test_invalid_value(self):
        assert classify_error("Invalid value for 'method'").category == "invalid_value"

    def test_unknown_node(self):
        assert classify_error("Unknown node type foo").category == "invalid_value"

    def test_connection(self):
        analysis = classify_error('Connection target "Ghost" (from "A") does not exist as a node')
        assert analysis.category == "connection"
        assert analysis.recoverable

    def test_not_found(self):
        assert classify_error("Node Ghost not found").category == "connection"

    def test_fallback(self):
        assert classify_error('Duplicate node name: "A"') == FALLBACK
        assert FALLBACK.recoverable

    def test_case_insensitive(self):
        assert classify_error("CREDENTIALS MISSING") == CREDENTIALS


class TestCustomRules:
    def test_first_match_wins(self):
        first = ErrorAnalysis(False, "stop", "first")
        second = ErrorAnalysis(True, "go", "second")
        classifier = ErrorClassifier([(contains_any("x"), first), (contains_any("x"), second)])
        assert classifier.classify("x") is first

    def test_custom_default(self):
        default = ErrorAnalysis(False, "ask a human", "manual")
        classifier = ErrorClassifier([], default=default)
        assert classifier("anything") is default


class TestPrompts:
    def test_retry_prompt_names_errors_and_action(self):
        text = build_retry_prompt("Duplicate node ID: \"x\"", FALLBACK)
        assert 'Duplicate node ID: "x"' in text
        assert f"Suggested action: {FALLBACK.suggested_action}" in text
        assert "get_current_workflow" in text

    def test_retry_prompt_only_mentions_available_tools(self):
        text = build_retry_prompt("err", FALLBACK)
        assert "remove" not in text.lower()

    def test_system_prompt_lists_catalog(self):
        prompt = get_system_prompt(n8n_available=True)
        assert "n8n-nodes-base.webhook" in prompt
        assert "validate_workflow_with_n8n)" in prompt
        assert "{{ $json.field }}" in prompt

    def test_system_prompt_without_n8n(self):
        assert "not configured" in get_system_prompt(n8n_available=False)

    def test_catalog_types_are_namespaced(self):
        for node in NODE_CATALOG:
            assert node.type.startswith(("n8n-nodes-base.", "@n8n/n8n-nodes-langchain."))
            assert node.version > 0

    def test_catalog_grouped_by_category(self):
        text = format_node_catalog()
        assert text.startswith("### Trigger Nodes")
        assert "### Ai Nodes" in text
