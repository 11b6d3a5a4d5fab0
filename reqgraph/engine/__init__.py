"""Core engines for reqgraph."""

from reqgraph.engine.identifiers import IdentifierAllocator, parse_key
from reqgraph.engine.relationships import RelationshipEngine, ValidationResult
from reqgraph.engine.record_store import RecordStore

__all__ = [
    "IdentifierAllocator",
    "parse_key",
    "RelationshipEngine",
    "ValidationResult",
    "RecordStore",
]
