"""Opaque domain objects that exports render as text.

Source rows can carry references produced by the entity platform instead of
primitive values. None of them has a columnar representation; each one has a
stable text form used by every output format.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import ParseResult, SplitResult


@dataclass(frozen=True)
class PersonReference:
    name: str
    entity_id: Optional[str] = None

    def __str__(self) -> str:
        if self.entity_id:
            return f"{self.name} <{self.entity_id}>"
        return self.name


@dataclass(frozen=True)
class EntityUri:
    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class EntityCode:
    """Entity code in ``/Type#Origin:Value`` form."""

    entity_type: str
    origin: str
    value: str

    def __str__(self) -> str:
        return f"{self.entity_type}#{self.origin}:{self.value}"


@dataclass(frozen=True)
class Tag:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class EntityEdge:
    edge_type: str
    from_reference: str
    to_reference: str
    properties: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def __str__(self) -> str:
        return (
            f"EdgeType: {self.edge_type}; From: {self.from_reference}; "
            f"To: {self.to_reference}; Properties: {len(self.properties)}"
        )


@dataclass(frozen=True)
class Locale:
    language: str
    territory: Optional[str] = None

    def __str__(self) -> str:
        if self.territory:
            return f"{self.language}-{self.territory}"
        return self.language


OPAQUE_TYPES = (
    PersonReference,
    EntityUri,
    EntityCode,
    Tag,
    EntityEdge,
    Locale,
    ParseResult,
    SplitResult,
)


def is_opaque_type(tp: Any) -> bool:
    return isinstance(tp, type) and issubclass(tp, OPAQUE_TYPES)


def to_text(value: Any) -> str:
    """Render an opaque domain object."""
    if isinstance(value, (ParseResult, SplitResult)):
        return value.geturl()
    return str(value)
