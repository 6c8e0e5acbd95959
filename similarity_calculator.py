import math
import numpy as np
from typing import Dict, Iterable, Optional, Union
import logging
from enum import Enum

import Levenshtein

from context_descriptor import ContextDescriptor


class SimilarityComponent(Enum):
    """Sub-scores combined into the context similarity."""
    LINE = "line"
    FUNCTION = "function"
    CLASS = "class"
    LANGUAGE = "language"
    VARIABLES = "variables"


DEFAULT_WEIGHTS: Dict[SimilarityComponent, float] = {
    SimilarityComponent.LINE: 0.4,
    SimilarityComponent.FUNCTION: 0.2,
    SimilarityComponent.CLASS: 0.2,
    SimilarityComponent.LANGUAGE: 0.1,
    SimilarityComponent.VARIABLES: 0.1,
}


def levenshtein_distance(str1: str, str2: str) -> int:
    """
    Minimum number of single-character insertions, deletions and
    substitutions turning *str1* into *str2*.

    Exact unit-cost edit distance over code points. Any ``str`` is accepted,
    including lone surrogates left by ``surrogateescape`` decoding and
    characters outside the BMP.

    Args:
        str1: First string
        str2: Second string

    Returns:
        Edit distance
    """
    return Levenshtein.distance(str1, str2)


def line_similarity(line1: str, line2: str) -> float:
    """Normalised edit similarity of two lines, case-insensitive."""
    if line1 == line2:
        return 1.0
    if not line1 or not line2:
        return 0.0

    # lower() may change the length (e.g. "İ"), so the result is clamped
    distance = levenshtein_distance(line1.lower(), line2.lower())
    max_length = max(len(line1), len(line2))
    return min(1.0, max(0.0, 1.0 - distance / max_length))


def exact_match(value1: str, value2: str) -> float:
    """
    1.0 when both names are equal, otherwise 0.0.

    Two empty names count as equal. Requiring both to be non-empty would
    leave every descriptor outside a function or class short of 1.0 against
    itself, and a top-level line such as ``for i`` could then never be
    served from a near-identical entry (its score caps near 0.53).
    A non-empty name still only matches the same non-empty name.
    """
    return 1.0 if value1 == value2 else 0.0


def jaccard_overlap(values1, values2) -> float:
    set1, set2 = set(values1), set(values2)
    if not set1 and not set2:
        return 1.0
    if not set1 or not set2:
        return 0.0
    return len(set1 & set2) / len(set1 | set2)


class ContextSimilarityCalculator:
    """
    Weighted similarity between two context descriptors.

    Stateless apart from its weights: scoring the same pair always returns
    the same value, in either argument order.
    """

    def __init__(self,
                 weights: Optional[Dict[Union[str, SimilarityComponent], float]] = None,
                 config_manager=None):
        """
        Initialize the similarity calculator.

        Args:
            weights: Mapping of component (or component name) to weight.
                Missing components keep their default weight.
            config_manager: ConfigManager used when *weights* is not given
                (section ``similarity_weights``)
        """
        self.logger = logging.getLogger("completion.similarity.calculator")

        if weights is None and config_manager is not None:
            weights = config_manager.get_similarity_weights()

        self.weights = dict(DEFAULT_WEIGHTS)
        for key, value in (weights or {}).items():
            component = key if isinstance(key, SimilarityComponent) else SimilarityComponent(key.lower())
            if value < 0:
                raise ValueError(f"Weight for {component.value} must be non-negative, got {value}")
            self.weights[component] = float(value)

        self.total_weight = math.fsum(self.weights.values())
        if self.total_weight <= 0:
            raise ValueError("At least one similarity weight must be positive")

    def score_components(self, a: ContextDescriptor, b: ContextDescriptor) -> Dict[SimilarityComponent, float]:
        """
        Compute the individual sub-scores for a pair of descriptors.

        Returns:
            Dict mapping each component to a score in [0, 1]
        """
        return {
            SimilarityComponent.LINE: line_similarity(a.current_line, b.current_line),
            SimilarityComponent.FUNCTION: exact_match(a.current_function, b.current_function),
            SimilarityComponent.CLASS: exact_match(a.current_class, b.current_class),
            SimilarityComponent.LANGUAGE: exact_match(a.language, b.language),
            SimilarityComponent.VARIABLES: jaccard_overlap(a.variables, b.variables),
        }

    def score(self, a: ContextDescriptor, b: ContextDescriptor) -> float:
        """
        Calculate the weighted similarity of two descriptors.

        Args:
            a: First descriptor
            b: Second descriptor

        Returns:
            Similarity score between 0 and 1
        """
        components = self.score_components(a, b)
        # fsum keeps boundary sums exact, e.g. 0.4 + 0.2 + 0.1 + 0.1 == 0.8
        weighted = math.fsum(self.weights[c] * value for c, value in components.items())
        similarity = weighted / self.total_weight

        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(
                "Context similarity %.4f (%s)", similarity,
                ", ".join(f"{c.value}={v:.2f}" for c, v in components.items())
            )
        return min(1.0, max(0.0, similarity))

    def score_many(self, query: ContextDescriptor, candidates: Iterable[ContextDescriptor]) -> np.ndarray:
        """Scores of *query* against each candidate, in candidate order."""
        return np.fromiter((self.score(query, candidate) for candidate in candidates), dtype=np.float64)

    def __call__(self, a: ContextDescriptor, b: ContextDescriptor) -> float:
        return self.score(a, b)


default_calculator = ContextSimilarityCalculator()


def score(a: ContextDescriptor, b: ContextDescriptor) -> float:
    """Score two descriptors with the default weights."""
    return default_calculator.score(a, b)
