"""Semantic types, domain objects and type projection.

``lakeexport.schema.builder`` is imported on its own; it depends on the
field transformers in ``lakeexport.transform``.
"""

from lakeexport.schema.domain import (
    EntityCode,
    EntityEdge,
    EntityUri,
    Locale,
    PersonReference,
    Tag,
)
from lakeexport.schema.projector import Projection, TypeProjector
from lakeexport.schema.types import Field, Schema, SemanticType

__all__ = [
    "EntityCode",
    "EntityEdge",
    "EntityUri",
    "Field",
    "Locale",
    "PersonReference",
    "Projection",
    "Schema",
    "SemanticType",
    "Tag",
    "TypeProjector",
]
