"""Error taxonomy for reqgraph.

Every failure raised by the engine carries a stable ``code`` and the context
needed to correct the input (which record, which kind, which limit). Callers
surface ``code`` and ``str(error)``; nothing is reported as a bare failure.
"""
from typing import Any, Dict, List, Optional


class ReqGraphError(Exception):
    """Base class for all reqgraph errors."""

    code = "error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **{k: str(v) for k, v in self.context.items()}}


class NotFound(ReqGraphError):
    """No record, user or definition exists for the given key."""

    code = "not_found"

    def __init__(self, kind: str, key: Any):
        super().__init__(f"{kind} not found: {key}", kind=kind, key=key)
        self.kind = kind
        self.key = key


class DuplicateRecord(ReqGraphError):
    """A record with the same internal id is already stored."""

    code = "duplicate_record"

    def __init__(self, record_id: Any):
        super().__init__(f"Requirement {record_id} already exists", record_id=record_id)
        self.record_id = record_id


class DuplicateAlternateKey(ReqGraphError):
    """An alternate key would be assigned twice."""

    code = "duplicate_alternate_key"

    def __init__(self, spec_id: str, existing_id: Any, requested_id: Any = None):
        super().__init__(
            f"Alternate key {spec_id} is already assigned to {existing_id}",
            spec_id=spec_id, existing_id=existing_id, requested_id=requested_id,
        )
        self.spec_id = spec_id
        self.existing_id = existing_id
        self.requested_id = requested_id


# -- Relationship validation -------------------------------------------------

class RelationshipError(ReqGraphError):
    """Base class for rejected relationship edges."""

    def __init__(self, message: str, source_id: Any, kind: str, target_id: Any, **context: Any):
        super().__init__(message, source_id=source_id, kind=kind, target_id=target_id, **context)
        self.source_id = source_id
        self.kind = kind
        self.target_id = target_id


class TypeNotAllowed(RelationshipError):
    code = "type_not_allowed"

    def __init__(self, source_id: Any, kind: str, target_id: Any, side: str, record_type: str, allowed: List[str]):
        super().__init__(
            f"'{kind}' does not allow {side} type '{record_type}' (allowed: {', '.join(allowed)})",
            source_id, kind, target_id, side=side, record_type=record_type, allowed=allowed,
        )
        self.side = side
        self.record_type = record_type
        self.allowed = allowed


class CardinalityExceeded(RelationshipError):
    code = "cardinality_exceeded"

    def __init__(self, source_id: Any, kind: str, target_id: Any, cardinality: str, side: str, limit: int):
        super().__init__(
            f"'{kind}' is {cardinality}: the {side} already has {limit} such relationship(s)",
            source_id, kind, target_id, cardinality=cardinality, side=side, limit=limit,
        )
        self.cardinality = cardinality
        self.side = side
        self.limit = limit


class CycleDetected(RelationshipError):
    code = "cycle_detected"

    def __init__(self, source_id: Any, kind: str, target_id: Any, path: Optional[List[Any]] = None):
        super().__init__(
            f"Adding '{kind}' from {source_id} to {target_id} would create a cycle",
            source_id, kind, target_id, path=path or [],
        )
        self.path = path or []


class SelfReference(RelationshipError):
    code = "self_reference"

    def __init__(self, source_id: Any, kind: str):
        super().__init__(f"'{kind}' cannot point a requirement at itself", source_id, kind, source_id)


class RelationshipExists(RelationshipError):
    code = "relationship_exists"

    def __init__(self, source_id: Any, kind: str, target_id: Any):
        super().__init__(f"Relationship '{kind}' to {target_id} already exists", source_id, kind, target_id)


# -- Identifier configuration ------------------------------------------------

class DigitOverflow(ReqGraphError):
    code = "digit_overflow"

    def __init__(self, digits: int, highest: int):
        super().__init__(
            f"{digits} digit(s) cannot represent number {highest} already in use "
            f"(need at least {len(str(highest))})",
            digits=digits, highest=highest,
        )
        self.digits = digits
        self.highest = highest


class FormatIncompatible(ReqGraphError):
    code = "format_incompatible"

    def __init__(self, message: str, id_format: Any = None, numbering: Any = None):
        super().__init__(message, id_format=id_format, numbering=numbering)
        self.id_format = id_format
        self.numbering = numbering


class InvalidPrefix(ReqGraphError):
    code = "invalid_prefix"

    def __init__(self, prefix: str, reason: str):
        super().__init__(f"Invalid prefix '{prefix}': {reason}", prefix=prefix, reason=reason)
        self.prefix = prefix


# -- Definitions and deletion guards -----------------------------------------

class DefinitionExists(ReqGraphError):
    code = "definition_exists"

    def __init__(self, kind: str, name: str):
        super().__init__(f"{kind} '{name}' already exists", kind=kind, name=name)
        self.name = name


class DefinitionProtected(ReqGraphError):
    code = "definition_protected"

    def __init__(self, name: str, reason: str):
        super().__init__(f"Built-in definition '{name}': {reason}", name=name, reason=reason)
        self.name = name


class InvalidDefinition(ReqGraphError):
    code = "invalid_definition"

    def __init__(self, name: str, reason: str):
        super().__init__(f"Invalid definition '{name}': {reason}", name=name, reason=reason)
        self.name = name


class InUseError(ReqGraphError):
    """Deletion blocked because records still reference the value."""

    def __init__(self, message: str, name: str, value: str, record_ids: List[Any]):
        super().__init__(message, name=name, value=value, records=len(record_ids))
        self.name = name
        self.value = value
        self.record_ids = record_ids


class TypeInUse(InUseError):
    code = "type_in_use"

    def __init__(self, type_name: str, record_ids: List[Any]):
        super().__init__(
            f"Type '{type_name}' is used by {len(record_ids)} requirement(s)",
            type_name, type_name, record_ids,
        )


class StatusInUse(InUseError):
    code = "status_in_use"

    def __init__(self, type_name: str, status: str, record_ids: List[Any]):
        super().__init__(
            f"Status '{status}' of type '{type_name}' is held by {len(record_ids)} requirement(s)",
            type_name, status, record_ids,
        )


class FieldInUse(InUseError):
    code = "field_in_use"

    def __init__(self, type_name: str, field_name: str, record_ids: List[Any]):
        super().__init__(
            f"Field '{field_name}' of type '{type_name}' has values in {len(record_ids)} requirement(s)",
            type_name, field_name, record_ids,
        )


class FieldValidationError(ReqGraphError):
    code = "invalid_field"

    def __init__(self, record: Any, field: str, reason: str):
        super().__init__(f"{record}: field '{field}' {reason}", record=record, field=field, reason=reason)
        self.record = record
        self.field = field
        self.reason = reason


# -- Backends ----------------------------------------------------------------

class BackendUnavailable(ReqGraphError):
    code = "backend_unavailable"

    def __init__(self, path: Any, reason: str):
        super().__init__(f"Storage {path} unavailable: {reason}", path=path, reason=reason)
        self.path = path
        self.reason = reason


class SchemaMismatch(ReqGraphError):
    code = "schema_mismatch"

    def __init__(self, path: Any, found: int, supported: int):
        super().__init__(
            f"{path} uses schema version {found}, this version of reqgraph supports up to {supported}",
            path=path, found=found, supported=supported,
        )
        self.found = found
        self.supported = supported


class MigrationMismatch(ReqGraphError):
    code = "migration_mismatch"

    def __init__(self, reason: str, record_id: Any = None, expected: int = 0, found: int = 0):
        super().__init__(
            f"Migration rejected: {reason}", reason=reason, record_id=record_id, expected=expected, found=found,
        )
        self.reason = reason
        self.record_id = record_id
        self.expected = expected
        self.found = found
