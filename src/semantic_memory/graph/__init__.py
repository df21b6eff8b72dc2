"""Relationship graph between memories."""

from .relationship_graph import RelationshipGraph
from .schema import BUILTIN_RELATION_TYPES, normalize_relation_type

__all__ = ["BUILTIN_RELATION_TYPES", "RelationshipGraph", "normalize_relation_type"]
