"""
Resolving a name pattern against the entry listing.

A pattern is a regular expression searched anywhere in the name; a pattern
that does not compile is searched for literally. An exact name always
resolves to itself.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import click

from .errors import InvalidOptionError, NotFoundError
from .prompt import ChoiceSource


@dataclass(frozen=True)
class NoMatch:
    pattern: str


@dataclass(frozen=True)
class Unique:
    name: str


@dataclass(frozen=True)
class Ambiguous:
    candidates: Tuple[str, ...]


Match = Union[NoMatch, Unique, Ambiguous]


def parse_choice(answer: str, count: int) -> Optional[int]:
    """0-based index for a 1-based answer, None for an empty answer."""
    answer = answer.strip()
    if not answer:
        return None
    if not answer.isdecimal():
        raise InvalidOptionError(f"Invalid option: {answer}")
    n = int(answer)
    if not 1 <= n <= count:
        raise InvalidOptionError(f"Invalid option: {answer} (choose 1-{count})")
    return n - 1


class SearchMatcher:
    def __init__(self, ignore_case: bool = True):
        self.ignore_case = ignore_case

    def compile(self, pattern: str) -> re.Pattern:
        flags = re.IGNORECASE if self.ignore_case else 0
        try:
            return re.compile(pattern, flags)
        except re.error:
            return re.compile(re.escape(pattern), flags)

    def matches(self, pattern: str, names: Sequence[str]) -> Tuple[str, ...]:
        rx = self.compile(pattern)
        return tuple(sorted(n for n in names if rx.search(n)))

    def resolve(self, pattern: str, names: Sequence[str]) -> Match:
        if pattern in names:
            return Unique(pattern)
        found = self.matches(pattern, names)
        if not found:
            return NoMatch(pattern)
        if len(found) == 1:
            return Unique(found[0])
        return Ambiguous(found)

    def select(self, pattern: str, names: Sequence[str], chooser: ChoiceSource) -> Optional[str]:
        """
        Resolve pattern to exactly one name.

        Several matches are listed as ``1) name`` on stdout and the chooser
        is asked once. Returns None when the operator cancels with an empty
        answer.
        """
        result = self.resolve(pattern, names)
        if isinstance(result, NoMatch):
            raise NotFoundError(f"No entry matches {pattern}")
        if isinstance(result, Unique):
            return result.name
        for i, name in enumerate(result.candidates, start=1):
            click.echo(f"{i}) {name}")
        index = parse_choice(chooser.choice("Choice"), len(result.candidates))
        if index is None:
            return None
        return result.candidates[index]
