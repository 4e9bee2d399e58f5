"""
Entity resolution for matching mentions to identities.

This module implements layered, rule-based resolution:
- Comparison: Similarity scorers and candidate ranking
- Resolver: Six-layer match-or-create pipeline
"""

from entitymatch.resolution.comparison import (
    CandidateScore,
    ScoreWeights,
    SimilarityEngine,
    SimilarityScores,
    alias_similarity,
    edit_similarity,
    levenshtein_distance,
    phonetic_code,
    phonetic_similarity,
    token_set_similarity,
)
from entitymatch.resolution.resolver import (
    MatchResult,
    Resolver,
    ResolverConfig,
    update_with_retry,
)

__all__ = [
    # Comparison
    "CandidateScore",
    "ScoreWeights",
    "SimilarityEngine",
    "SimilarityScores",
    "alias_similarity",
    "edit_similarity",
    "levenshtein_distance",
    "phonetic_code",
    "phonetic_similarity",
    "token_set_similarity",
    # Main resolver
    "MatchResult",
    "Resolver",
    "ResolverConfig",
    "update_with_retry",
]
