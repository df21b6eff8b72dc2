"""Data models for the semantic memory engine."""

from .access_event import AccessEvent, AccessType
from .audit_log import AuditLog, AuditOperation
from .memory import BASELINE_IMPORTANCE, USABLE_STATES, Memory, MemoryState, MemoryType
from .relationship import RelatedMemory, Relationship, RelationshipType
from .search import MemoryFilter, SearchFilters, SearchResult

__all__ = [
    "AccessEvent",
    "AccessType",
    "AuditLog",
    "AuditOperation",
    "BASELINE_IMPORTANCE",
    "Memory",
    "MemoryFilter",
    "MemoryState",
    "MemoryType",
    "RelatedMemory",
    "Relationship",
    "RelationshipType",
    "SearchFilters",
    "SearchResult",
    "USABLE_STATES",
]
