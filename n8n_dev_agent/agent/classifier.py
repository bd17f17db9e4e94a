"""Validation error classification.

Decides whether a failed validation is something the oracle can fix on its
own (retry with a corrective message) or something a human must handle.
Rules are plain (predicate, analysis) pairs evaluated in order; the first
matching predicate wins.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

Predicate = Callable[[str], bool]


@dataclass(frozen=True)
class ErrorAnalysis:
    recoverable: bool
    suggested_action: str
    category: str = "unknown"


def contains_any(*needles: str) -> Predicate:
    """Case-insensitive substring predicate."""
    lowered = tuple(n.lower() for n in needles)

    def _match(text: str) -> bool:
        t = text.lower()
        return any(n in t for n in lowered)

    return _match


CREDENTIALS = ErrorAnalysis(
    recoverable=False,
    suggested_action=(
        "Credentials need to be configured in n8n. "
        "Please set up the required credentials in your n8n instance."
    ),
    category="credentials",
)
MISSING_PARAMETER = ErrorAnalysis(
    recoverable=True,
    suggested_action="Add the missing required parameter using update_node_parameters.",
    category="parameter",
)
INVALID_VALUE = ErrorAnalysis(
    recoverable=True,
    suggested_action="Check the node type or parameter value against the node catalog.",
    category="invalid_value",
)
CONNECTION = ErrorAnalysis(
    recoverable=True,
    suggested_action="Check node names and ensure they exist before connecting.",
    category="connection",
)
FALLBACK = ErrorAnalysis(
    recoverable=True,
    suggested_action="Review the error message and fix the issue.",
)

DEFAULT_RULES: tuple[tuple[Predicate, ErrorAnalysis], ...] = (
    (contains_any("credential", "oauth", "api key", "authentication"), CREDENTIALS),
    (contains_any("required", "missing", "parameter"), MISSING_PARAMETER),
    (contains_any("invalid", "unknown node"), INVALID_VALUE),
    (contains_any("connection", "not found"), CONNECTION),
)


class ErrorClassifier:
    def __init__(
        self,
        rules: Sequence[tuple[Predicate, ErrorAnalysis]] = DEFAULT_RULES,
        default: ErrorAnalysis = FALLBACK,
    ) -> None:
        self._rules = tuple(rules)
        self._default = default

    def classify(self, error_text: str) -> ErrorAnalysis:
        for predicate, analysis in self._rules:
            if predicate(error_text):
                return analysis
        return self._default

    __call__ = classify


_default_classifier = ErrorClassifier()


def classify_error(error_text: str) -> ErrorAnalysis:
    """Classify with the built-in rule set."""
    return _default_classifier.classify(error_text)
