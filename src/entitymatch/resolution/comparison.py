"""
Similarity scoring for entity resolution.

Four independent scorers compare a query key with a candidate name, each
returning a score in [0, 100]:
- edit: normalized Levenshtein similarity
- phonetic: edit similarity of consonant-skeleton codes
- alias: nickname-aware token equivalence
- token_set: Jaccard similarity of whitespace tokens

Every pairwise scorer is symmetric. A weighted combiner ranks candidates.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

import jellyfish

from entitymatch.config import Settings
from entitymatch.errors import EmptyNameError
from entitymatch.nicknames import NicknameTable
from entitymatch.normalization import comparison_key
from entitymatch.schemas import Identity

logger = logging.getLogger(__name__)

# Applied in order before vowel removal
PHONETIC_DIGRAPHS = (
    ("PH", "F"),
    ("CK", "K"),
    ("SH", "S"),
    ("GH", "G"),
    ("KN", "N"),
    ("WR", "R"),
)
PHONETIC_VOWELS = frozenset("AEIOUY")


def levenshtein_distance(s1: str, s2: str) -> int:
    """Classic edit distance (insert, delete, substitute)."""
    return jellyfish.levenshtein_distance(s1, s2)


def edit_similarity(s1: str, s2: str) -> float:
    """(maxLen - distance) / maxLen * 100; two empty strings score 100."""
    max_len = max(len(s1), len(s2))
    if max_len == 0:
        return 100.0
    return (max_len - levenshtein_distance(s1, s2)) / max_len * 100.0


def _token_code(token: str) -> str:
    letters = "".join(c for c in token.upper() if c.isalnum())
    if not letters:
        return ""
    for digraph, replacement in PHONETIC_DIGRAPHS:
        letters = letters.replace(digraph, replacement)
    skeleton = letters[0] + "".join(c for c in letters[1:] if c not in PHONETIC_VOWELS)
    collapsed = [skeleton[0]]
    for c in skeleton[1:]:
        if c != collapsed[-1]:
            collapsed.append(c)
    return "".join(collapsed)


def phonetic_code(text: str) -> str:
    """
    Consonant-skeleton code, one code per token.

    "Stephen Schmidt" -> "STFN SCHMDT", "Steven Shmit" -> "STVN SMT"
    """
    return " ".join(code for code in (_token_code(t) for t in text.split()) if code)


def phonetic_similarity(s1: str, s2: str) -> float:
    """Edit similarity of phonetic codes; identical codes score 100."""
    code1 = phonetic_code(s1)
    code2 = phonetic_code(s2)
    if code1 == code2:
        return 100.0
    return edit_similarity(code1, code2)


def token_set_similarity(s1: str, s2: str) -> float:
    """Jaccard similarity of whitespace tokens, robust to reordering."""
    tokens1 = set(s1.split())
    tokens2 = set(s2.split())
    if not tokens1 and not tokens2:
        return 100.0
    union = tokens1 | tokens2
    return len(tokens1 & tokens2) / len(union) * 100.0


def _max_equivalent_pairs(
    tokens1: list[str], tokens2: list[str], nicknames: NicknameTable
) -> int:
    """Size of a maximum one-to-one pairing of equivalent tokens."""
    adjacency = [
        [j for j, t2 in enumerate(tokens2) if nicknames.equivalent(t1, t2)]
        for t1 in tokens1
    ]
    owner: dict[int, int] = {}

    def assign(i: int, visited: set[int]) -> bool:
        for j in adjacency[i]:
            if j in visited:
                continue
            visited.add(j)
            if j not in owner or assign(owner[j], visited):
                owner[j] = i
                return True
        return False

    return sum(1 for i in range(len(tokens1)) if assign(i, set()))


def alias_similarity(s1: str, s2: str, nicknames: NicknameTable) -> float:
    """
    Nickname-aware equivalence.

    100 when the strings are equal or every token pairs with an equivalent
    token ("bob smith" vs "robert smith"); otherwise the share of tokens
    that pair up, over the larger token count.
    """
    if s1 == s2:
        return 100.0
    tokens1 = s1.split()
    tokens2 = s2.split()
    if not tokens1 or not tokens2:
        return 0.0
    pairs = _max_equivalent_pairs(tokens1, tokens2, nicknames)
    return pairs / max(len(tokens1), len(tokens2)) * 100.0


@dataclass
class SimilarityScores:
    """Per-scorer similarity between a query and one candidate name form."""

    edit: float = 0.0
    phonetic: float = 0.0
    alias: float = 0.0
    token_set: float = 0.0

    def to_dict(self) -> dict[str, float]:
        """Convert to dictionary."""
        return {
            "edit": self.edit,
            "phonetic": self.phonetic,
            "alias": self.alias,
            "token_set": self.token_set,
        }


@dataclass
class ScoreWeights:
    """Combiner weights; must sum to 1."""

    edit: float = 0.30
    phonetic: float = 0.25
    alias: float = 0.25
    token_set: float = 0.20

    def combine(self, scores: SimilarityScores) -> float:
        return (
            self.edit * scores.edit
            + self.phonetic * scores.phonetic
            + self.alias * scores.alias
            + self.token_set * scores.token_set
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScoreWeights":
        return cls(
            edit=settings.weight_edit,
            phonetic=settings.weight_phonetic,
            alias=settings.weight_alias,
            token_set=settings.weight_token_set,
        )


@dataclass
class CandidateScore:
    """A candidate identity with its combined score."""

    identity: Identity
    score: float
    scores: SimilarityScores
    distance: int  # raw edit distance to the canonical key
    matched_form: str = ""

    def to_dict(self) -> dict:
        return {
            "identity_id": str(self.identity.id),
            "name": self.identity.canonical_name,
            "score": round(self.score, 2),
            "distance": self.distance,
            "matched_form": self.matched_form,
            "scores": self.scores.to_dict(),
        }


@dataclass
class SimilarityEngine:
    """
    Scores a query key against candidate identities.

    Each candidate is compared through every name form it is known by
    (canonical name and accumulated aliases) and keeps its best form.
    """

    nicknames: NicknameTable = field(default_factory=NicknameTable.default)
    weights: ScoreWeights = field(default_factory=ScoreWeights)

    def compare(self, query: str, name: str) -> SimilarityScores:
        """Run the four scorers on two comparison keys."""
        return SimilarityScores(
            edit=edit_similarity(query, name),
            phonetic=phonetic_similarity(query, name),
            alias=alias_similarity(query, name, self.nicknames),
            token_set=token_set_similarity(query, name),
        )

    def score(self, query: str, name: str) -> float:
        """Combined score of two comparison keys."""
        return self.weights.combine(self.compare(query, name))

    def score_candidate(self, query: str, identity: Identity) -> CandidateScore:
        canonical = comparison_key(identity.canonical_name, identity.kind)
        forms = _name_forms(canonical, identity)
        known_alias = query in forms

        best: Optional[CandidateScore] = None
        for form in forms:
            scores = self.compare(query, form)
            if known_alias:
                scores.alias = 100.0
            combined = self.weights.combine(scores)
            if best is None or combined > best.score:
                best = CandidateScore(
                    identity=identity,
                    score=combined,
                    scores=scores,
                    distance=0,
                    matched_form=form,
                )

        best.distance = levenshtein_distance(query, canonical)
        return best

    def rank(self, query: str, identities: Iterable[Identity]) -> list[CandidateScore]:
        """All candidates sorted by combined score, best first."""
        ranked = [self.score_candidate(query, identity) for identity in identities]
        ranked.sort(
            key=lambda c: (-c.score, c.distance, c.identity.canonical_name, str(c.identity.id))
        )
        if ranked:
            logger.debug(
                f"Ranked {len(ranked)} candidates for '{query}', "
                f"best={ranked[0].identity.canonical_name} ({ranked[0].score:.1f})"
            )
        return ranked


def _name_forms(canonical: str, identity: Identity) -> list[str]:
    forms = [canonical]
    for alias in identity.aliases:
        try:
            key = comparison_key(alias, identity.kind)
        except EmptyNameError:
            continue
        if key not in forms:
            forms.append(key)
    return forms
