"""Kubernetes label selector parsing and matching.

Supports the equality- and set-based forms accepted by ``kubectl -l``::

    app=web, tier==frontend, env!=prod, canary, !legacy,
    zone in (a, b), track notin (beta)
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum

from kubenav.errors import ValidationError

_KEY_RE = re.compile(r"^([A-Za-z0-9][-A-Za-z0-9_.]*/)?[A-Za-z0-9]([-A-Za-z0-9_.]*[A-Za-z0-9])?$")
_SET_RE = re.compile(r"^\s*(?P<key>[^\s!=()]+)\s+(?P<op>in|notin)\s*\((?P<values>[^()]*)\)\s*$")
_EQ_RE = re.compile(r"^\s*(?P<key>[^\s!=()]+)\s*(?P<op>==|!=|=)\s*(?P<value>[^\s!=(),]*)\s*$")


class Operator(StrEnum):
    EQUALS = "="
    NOT_EQUALS = "!="
    IN = "in"
    NOT_IN = "notin"
    EXISTS = "exists"
    NOT_EXISTS = "!"


@dataclass(frozen=True)
class Requirement:
    key: str
    operator: Operator
    values: frozenset[str] = frozenset()

    def matches(self, labels: Mapping[str, str]) -> bool:
        if self.operator is Operator.EXISTS:
            return self.key in labels
        if self.operator is Operator.NOT_EXISTS:
            return self.key not in labels
        if self.operator in (Operator.EQUALS, Operator.IN):
            return self.key in labels and labels[self.key] in self.values
        # != and notin also match when the key is absent
        return self.key not in labels or labels[self.key] not in self.values


@dataclass(frozen=True)
class Selector:
    """A parsed label selector; all requirements must match."""

    requirements: tuple[Requirement, ...] = ()

    @classmethod
    def parse(cls, text: str) -> Selector:
        """Parse a comma-separated selector string.

        Raises:
            ValidationError: the selector is malformed.
        """
        requirements = [_parse_requirement(term) for term in _split_terms(text)]
        return cls(tuple(requirements))

    @classmethod
    def from_labels(cls, labels: Mapping[str, str]) -> Selector:
        """Equality selector matching every key/value in ``labels``."""
        return cls(tuple(Requirement(k, Operator.EQUALS, frozenset({v})) for k, v in sorted(labels.items())))

    @property
    def empty(self) -> bool:
        return not self.requirements

    def matches(self, labels: Mapping[str, str]) -> bool:
        return all(req.matches(labels) for req in self.requirements)

    def __str__(self) -> str:
        parts = []
        for req in self.requirements:
            if req.operator is Operator.EXISTS:
                parts.append(req.key)
            elif req.operator is Operator.NOT_EXISTS:
                parts.append(f"!{req.key}")
            elif req.operator in (Operator.IN, Operator.NOT_IN):
                parts.append(f"{req.key} {req.operator} ({','.join(sorted(req.values))})")
            else:
                parts.append(f"{req.key}{req.operator}{next(iter(req.values))}")
        return ",".join(parts)


def _split_terms(text: str) -> list[str]:
    """Split on commas that are not inside a parenthesised value set."""
    terms: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise ValidationError(f"unbalanced parentheses in selector {text!r}")
        if ch == "," and depth == 0:
            terms.append("".join(current))
            current = []
        else:
            current.append(ch)
    if depth != 0:
        raise ValidationError(f"unbalanced parentheses in selector {text!r}")
    terms.append("".join(current))
    return [t.strip() for t in terms if t.strip()]


def _parse_requirement(term: str) -> Requirement:
    match = _SET_RE.match(term)
    if match:
        key = _check_key(match["key"], term)
        values = frozenset(v.strip() for v in match["values"].split(",") if v.strip())
        if not values:
            raise ValidationError(f"empty value set in selector term {term!r}")
        return Requirement(key, Operator(match["op"]), values)

    match = _EQ_RE.match(term)
    if match:
        key = _check_key(match["key"], term)
        op = Operator.NOT_EQUALS if match["op"] == "!=" else Operator.EQUALS
        return Requirement(key, op, frozenset({match["value"]}))

    if term.startswith("!"):
        return Requirement(_check_key(term[1:].strip(), term), Operator.NOT_EXISTS)
    return Requirement(_check_key(term, term), Operator.EXISTS)


def _check_key(key: str, term: str) -> str:
    if not _KEY_RE.match(key):
        raise ValidationError(f"invalid label key in selector term {term!r}")
    return key
