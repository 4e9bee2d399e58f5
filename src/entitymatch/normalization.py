"""
Name normalization.

Produces two forms of every raw name:
- display: trimmed, whitespace collapsed, title-cased (legal suffix kept)
- key: case-folded, punctuation removed, legal suffix stripped for vendors

All comparisons in the engine run on keys.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from entitymatch.errors import EmptyNameError
from entitymatch.schemas import IdentityKind

# Corporate legal suffixes stripped from vendor keys
COMPANY_SUFFIXES = frozenset(
    {"inc", "llc", "corp", "corporation", "company", "co", "ltd", "limited"}
)

_WHITESPACE_RE = re.compile(r"\s+")
_DROPPED_RE = re.compile(r"['’.]")  # O'Brien -> obrien, Inc. -> inc
_SEPARATOR_RE = re.compile(r"[^\w\s]|_")
_WORD_START_RE = re.compile(r"\b\w")


@dataclass(frozen=True)
class NormalizedName:
    """Display and comparison forms of a name."""

    display: str
    key: str

    @property
    def tokens(self) -> list[str]:
        return self.key.split()


def collapse_whitespace(raw: str) -> str:
    """Trim and collapse runs of whitespace to single spaces."""
    return _WHITESPACE_RE.sub(" ", raw).strip()


def _title_token(token: str, keep_acronyms: bool) -> str:
    if keep_acronyms and len(token) > 1 and token.isupper():
        return token
    return _WORD_START_RE.sub(lambda m: m.group(0).upper(), token.lower())


def display_name(raw: str, kind: IdentityKind = IdentityKind.PERSON) -> str:
    """
    Title-cased display form.

    Vendor names keep upper-case acronyms ("ABC Supply LLC").

    Raises:
        EmptyNameError: if nothing is left after trimming
    """
    collapsed = collapse_whitespace(raw or "")
    if not collapsed:
        raise EmptyNameError(raw)
    keep_acronyms = kind == IdentityKind.VENDOR
    return " ".join(_title_token(t, keep_acronyms) for t in collapsed.split(" "))


def strip_company_suffix(tokens: list[str]) -> list[str]:
    """Drop trailing legal suffixes, never the last remaining token."""
    stripped = list(tokens)
    while len(stripped) > 1 and stripped[-1] in COMPANY_SUFFIXES:
        stripped.pop()
    return stripped


def comparison_key(raw: str, kind: IdentityKind = IdentityKind.PERSON) -> str:
    """
    Case-folded, punctuation-free comparison key.

    Raises:
        EmptyNameError: if no letters or digits remain
    """
    text = _DROPPED_RE.sub("", (raw or "").casefold())
    text = _SEPARATOR_RE.sub(" ", text)
    tokens = text.split()
    if kind == IdentityKind.VENDOR:
        tokens = strip_company_suffix(tokens)
    key = " ".join(tokens)
    if not key:
        raise EmptyNameError(raw)
    return key


def normalize(raw: str, kind: IdentityKind = IdentityKind.PERSON) -> NormalizedName:
    """Normalize a raw mention into display and key forms."""
    if raw is None or not raw.strip():
        raise EmptyNameError(raw)
    return NormalizedName(display=display_name(raw, kind), key=comparison_key(raw, kind))


def alias_keys(aliases: Iterable[str], kind: IdentityKind) -> set[str]:
    """Comparison keys of a collection of aliases, skipping unusable ones."""
    keys = set()
    for alias in aliases:
        try:
            keys.add(comparison_key(alias, kind))
        except EmptyNameError:
            continue
    return keys


def merge_aliases(
    existing: list[str],
    additions: Iterable[str],
    kind: IdentityKind,
) -> list[str]:
    """
    Append aliases whose keys are not already present.

    The result always starts with every existing alias in its original
    order, so alias lists only ever grow.
    """
    merged = list(existing)
    seen = alias_keys(existing, kind)
    for alias in additions:
        try:
            key = comparison_key(alias, kind)
        except EmptyNameError:
            continue
        if key not in seen:
            merged.append(alias)
            seen.add(key)
    return merged


@dataclass(frozen=True)
class PersonNameParts:
    """First / middle / last split of a person name."""

    first_name: str
    last_name: str
    middle_name: Optional[str] = None


def parse_person_name(name: str) -> PersonNameParts:
    """
    Split a display name into parts.

    Examples:
        "Robert James Smith" -> Robert / James / Smith
        "Bob Smith" -> Bob / Smith
        "Madonna" -> Madonna / Madonna (single name fills both)
    """
    parts = display_name(name).split(" ")
    if len(parts) == 1:
        return PersonNameParts(first_name=parts[0], last_name=parts[0])
    if len(parts) == 2:
        return PersonNameParts(first_name=parts[0], last_name=parts[1])
    return PersonNameParts(
        first_name=parts[0],
        middle_name=" ".join(parts[1:-1]),
        last_name=parts[-1],
    )
