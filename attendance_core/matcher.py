"""Descriptor matcher using Euclidean distance.

Two 128-D face descriptors are compared by Euclidean distance, converted to a
confidence score (1 - distance, clamped at 0) and accepted when the
confidence reaches the threshold.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np

from attendance_core.interfaces import MatchResult, as_feature_vector
from attendance_core.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 0.6

Candidate = Tuple[str, Sequence[float] | np.ndarray]


class DescriptorMatcher:
    """Compares face descriptors and picks the best candidate.

    The workflow is:
    1. compare() - Score one descriptor against another
    2. find_best_match() - Score a descriptor against an ordered candidate list
    3. match_identity() - Score a descriptor against one identity's templates

    Attributes:
        threshold: Minimum confidence (inclusive) for a match

    Example:
        >>> matcher = DescriptorMatcher(threshold=0.6)
        >>> result = matcher.compare(live_vector, template)
        >>> if result.matched:
        ...     print(f"Confirmed with confidence {result.confidence:.2f}")
    """

    def __init__(self, threshold: float = DEFAULT_CONFIDENCE_THRESHOLD):
        """Initialize matcher.

        Args:
            threshold: Confidence threshold in [0, 1]. Default 0.6 corresponds
                       to the standard dlib distance tolerance of 0.4.

        Raises:
            ValueError: If threshold is not in valid range.
        """
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"Threshold must be in [0, 1], got {threshold}")

        self.threshold = threshold

    def compare(
        self,
        a: Sequence[float] | np.ndarray,
        b: Sequence[float] | np.ndarray,
    ) -> MatchResult:
        """Compare two feature vectors.

        Args:
            a: First 128-D feature vector
            b: Second 128-D feature vector

        Returns:
            MatchResult with distance, confidence and match verdict.

        Raises:
            InvalidVectorLength: If either vector is not 128 numbers long.
        """
        vec_a = as_feature_vector(a)
        vec_b = as_feature_vector(b)

        distance = float(np.linalg.norm(vec_a - vec_b))
        confidence = max(0.0, 1.0 - distance)

        return MatchResult(
            distance=distance,
            confidence=confidence,
            matched=confidence >= self.threshold,
        )

    def find_best_match(
        self,
        query: Sequence[float] | np.ndarray,
        candidates: Sequence[Candidate],
    ) -> Optional[Tuple[str, MatchResult]]:
        """Find the candidate most similar to the query.

        Candidates are scanned in order and only a strictly higher confidence
        replaces the current best, so ties resolve to the earliest candidate.

        Args:
            query: Live 128-D feature vector
            candidates: Ordered (identity, feature vector) pairs

        Returns:
            (identity, MatchResult) of the best candidate, or None if there
            are no candidates. The result may be unmatched.

        Example:
            >>> best = matcher.find_best_match(query, [("alice", t1), ("bob", t2)])
            >>> if best and best[1].matched:
            ...     print(f"Identified: {best[0]}")
        """
        query_vec = as_feature_vector(query)

        best: Optional[Tuple[str, MatchResult]] = None

        for identity, vector in candidates:
            result = self.compare(query_vec, vector)
            if best is None or result.confidence > best[1].confidence:
                best = (identity, result)

        if best is not None:
            logger.debug(
                f"Best match among {len(candidates)} candidates: {best[0]} "
                f"(distance={best[1].distance:.3f}, confidence={best[1].confidence:.3f})"
            )

        return best

    def match_identity(
        self,
        query: Sequence[float] | np.ndarray,
        templates: Sequence[Sequence[float] | np.ndarray],
    ) -> Optional[MatchResult]:
        """Compare a query against every template of a single identity.

        Args:
            query: Live 128-D feature vector
            templates: Templates enrolled for the identity

        Returns:
            Best MatchResult, or None if the identity has no templates.
        """
        best = self.find_best_match(query, [("", template) for template in templates])
        return best[1] if best is not None else None

    def __repr__(self) -> str:
        """String representation of matcher."""
        return f"DescriptorMatcher(threshold={self.threshold})"
