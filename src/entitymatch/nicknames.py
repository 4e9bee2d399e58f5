"""
Nickname equivalence repository.

Loaded once at construction and passed to the similarity engine, so
matching stays a pure function of (query, candidates, tables).
"""

import json
import logging
from importlib import resources
from pathlib import Path
from typing import Iterable, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "nicknames.json"


class NicknameTable:
    """
    Groups of interchangeable first names.

    A name may belong to several groups ("chris" is short for Christopher,
    Christian and Christine); two names are equivalent when they share a group.
    """

    def __init__(self, groups: Iterable[Iterable[str]] = ()):
        self._groups: list[frozenset[str]] = []
        self._index: dict[str, set[int]] = {}
        for group in groups:
            self.add_group(group)

    def add_group(self, names: Iterable[str]) -> None:
        """Register a group of equivalent names."""
        group = frozenset(n.strip().casefold() for n in names if n and n.strip())
        if len(group) < 2:
            return
        group_id = len(self._groups)
        self._groups.append(group)
        for name in group:
            self._index.setdefault(name, set()).add(group_id)

    def equivalent(self, a: str, b: str) -> bool:
        """True if two tokens are equal or share a nickname group."""
        a = a.casefold()
        b = b.casefold()
        if a == b:
            return True
        groups_a = self._index.get(a)
        if not groups_a:
            return False
        return not groups_a.isdisjoint(self._index.get(b, ()))

    def variants(self, name: str) -> set[str]:
        """All names equivalent to the given one, including itself."""
        name = name.casefold()
        result = {name}
        for group_id in self._index.get(name, ()):
            result.update(self._groups[group_id])
        return result

    def __len__(self) -> int:
        return len(self._groups)

    def __contains__(self, name: str) -> bool:
        return name.casefold() in self._index

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "NicknameTable":
        """Load groups from a JSON file: {"groups": [["robert", "bob"], ...]}."""
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        table = cls(data.get("groups", []))
        logger.info(f"Loaded {len(table)} nickname groups from {path}")
        return table

    @classmethod
    def default(cls) -> "NicknameTable":
        """Load the bundled nickname table."""
        source = resources.files("entitymatch.data").joinpath(DEFAULT_TABLE)
        data = json.loads(source.read_text(encoding="utf-8"))
        return cls(data.get("groups", []))

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "NicknameTable":
        """Load from a path when configured, else the bundled table."""
        if path is not None:
            return cls.from_file(path)
        return cls.default()
