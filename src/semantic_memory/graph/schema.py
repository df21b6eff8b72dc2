"""
Relationship type vocabulary.

Built-in types:
    RELATED_TO  - Generic semantic association
    SUPPORTS    - Source is evidence for the target
    CONTRADICTS - Conflicting information between two memories
    CAUSES      - Source led to the target
    FOLLOWS     - Temporal ordering: source comes after target

Callers may use any other tag matching ``^[A-Z][A-Z0-9_]{0,63}$`` after
upper-casing; the built-ins carry no special traversal semantics.
"""

from ..errors import ValidationError
from ..models.relationship import RelationshipType
from ..models.validators import normalize_tag

BUILTIN_RELATION_TYPES: frozenset[str] = frozenset(t.value for t in RelationshipType)


def normalize_relation_type(relation_type: str) -> str:
    """Upper-case and validate a relationship type tag."""
    try:
        return normalize_tag(relation_type)
    except ValueError as e:
        raise ValidationError(f"Invalid relationship type: {relation_type!r}") from e


def normalize_relation_types(relation_types: list[str] | None) -> frozenset[str] | None:
    if relation_types is None:
        return None
    return frozenset(normalize_relation_type(t) for t in relation_types)
