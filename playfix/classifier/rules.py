from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Tuple

from playfix.models import HeuristicAnalysis


Predicate = Callable[[str], bool]


def _selector_timeout(msg: str) -> bool:
    return "Timeout" in msg and "waiting for selector" in msg


def _assertion_failure(msg: str) -> bool:
    return "expect(" in msg


def _visibility_or_stability(msg: str) -> bool:
    return "element is not visible" in msg or "element is not stable" in msg


DEFAULT_RULES: List[Tuple[str, Predicate, str]] = [
    ("selector_timeout", _selector_timeout, "Heuristic: Potential Selector Timeout."),
    ("assertion_failure", _assertion_failure, "Heuristic: Potential Assertion Failure."),
    ("visibility_stability", _visibility_or_stability, "Heuristic: Potential Element Visibility/Stability Issue."),
]


@dataclass(frozen=True)
class HeuristicClassifier:
    """
    Ordered string-match rules over the runner's error message. First match wins,
    so at most one hint is produced per failure.
    """

    rules: List[Tuple[str, Predicate, str]] = field(default_factory=lambda: list(DEFAULT_RULES))

    def classify(self, message: str | None) -> HeuristicAnalysis:
        msg = message or ""
        for category, predicate, hint in self.rules:
            if predicate(msg):
                return HeuristicAnalysis(suggestions=[hint], category=category)
        return HeuristicAnalysis()
