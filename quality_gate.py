"""
Quality gate for generated completions.

Rejects suggestions that exhibit known corruption patterns before they are
stored in or served from the completion cache. The checks are plain data
(``QualityRule`` entries) evaluated by a single reducer: any matching rule
rejects the suggestion.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Dict, Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class QualityRule:
    """A single rejection rule.

    kind is one of ``blank``, ``prefix``, ``substring`` (case-insensitive),
    ``raw_substring`` (case-sensitive), ``exact`` (case-insensitive equality)
    or ``regex`` (``re.search`` on the raw suggestion).
    """
    kind: str
    value: str = ""
    description: str = ""

    def matches(self, suggestion: str) -> bool:
        return _MATCHERS[self.kind](self.value, suggestion)


@lru_cache(maxsize=256)
def _compiled(pattern: str) -> "re.Pattern":
    return re.compile(pattern)


_MATCHERS: Dict[str, Callable[[str, str], bool]] = {
    "blank": lambda value, s: not s.strip(),
    "prefix": lambda value, s: s.startswith(value),
    "substring": lambda value, s: value.lower() in s.lower(),
    "raw_substring": lambda value, s: value in s,
    "exact": lambda value, s: s.lower() == value.lower(),
    "regex": lambda value, s: _compiled(value).search(s) is not None,
}

RULE_KINDS = tuple(_MATCHERS)

# Misspelled keywords and garbled identifiers seen in broken generations
CORRUPTED_TOKENS = (
    "npump", "inmport", "imort", "deff ", "clas ", "pring",
    "___init__", "def ___", "self.super(", "self d self",
)

# Imports that are syntactically fine but use non-standard aliases
NON_STANDARD_IMPORTS = (
    "import numpy as n",
    "import pandas as p",
    "import matplotlib as m",
    "import matplotlib.pyplot as p",
)

# Methods emitted without indentation inside a class body
INDENTATION_BREAKS = (
    "def __init__(\n",
    "class DNN:\ndef",
)

DEFAULT_RULES: Tuple[QualityRule, ...] = (
    (QualityRule("blank", description="empty or whitespace-only"),
     QualityRule("prefix", "#", "comment marker used as error sentinel"))
    + tuple(QualityRule("substring", token, "corrupted token") for token in CORRUPTED_TOKENS)
    + tuple(QualityRule("exact", stmt, "non-standard import alias") for stmt in NON_STANDARD_IMPORTS)
    + tuple(QualityRule("raw_substring", text, "unindented method") for text in INDENTATION_BREAKS)
    + (QualityRule("raw_substring", "self.super(", "invalid super() call"),
       QualityRule("regex", r"def _{3,}", "triple underscore method name"))
)


class QualityGate:
    """
    Predicate over suggestion strings.

    Pure and deterministic: the same rules always give the same verdict for
    the same suggestion.
    """

    def __init__(self, rules: Optional[Iterable[QualityRule]] = None):
        self.rules: Tuple[QualityRule, ...] = tuple(DEFAULT_RULES if rules is None else rules)
        for rule in self.rules:
            if rule.kind not in _MATCHERS:
                raise ValueError(f"Unknown quality rule kind: {rule.kind}")

    @classmethod
    def from_config(cls, config_manager) -> "QualityGate":
        """
        Build the default gate extended with rules from configuration.

        Reads ``quality_gate.extra_substrings`` and
        ``quality_gate.extra_patterns`` (lists of strings).
        """
        extra: List[QualityRule] = []
        for token in config_manager.get("quality_gate.extra_substrings", []) or []:
            extra.append(QualityRule("substring", token, "configured token"))
        for pattern in config_manager.get("quality_gate.extra_patterns", []) or []:
            extra.append(QualityRule("regex", pattern, "configured pattern"))
        return cls(DEFAULT_RULES + tuple(extra))

    def extend(self, rules: Iterable[QualityRule]) -> "QualityGate":
        """Return a new gate with additional rules appended."""
        return QualityGate(self.rules + tuple(rules))

    def first_violation(self, suggestion: str) -> Optional[QualityRule]:
        """Return the first rule that rejects *suggestion*, or None."""
        for rule in self.rules:
            if rule.matches(suggestion):
                return rule
        return None

    def is_acceptable(self, suggestion: str) -> bool:
        if suggestion is None:
            return False
        return not any(rule.matches(suggestion) for rule in self.rules)

    def __call__(self, suggestion: str) -> bool:
        return self.is_acceptable(suggestion)

    def __len__(self) -> int:
        return len(self.rules)


default_gate = QualityGate()


def is_acceptable(suggestion: str) -> bool:
    """Evaluate *suggestion* against the default rule set."""
    return default_gate.is_acceptable(suggestion)
