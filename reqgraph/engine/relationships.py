"""
Relationship Graph Engine - validates and maintains typed edges.

Edges are owned by their source requirement. Every edge of a kind with a
declared inverse (or of a symmetric kind) is paired with an edge on the
target; adding or removing one side always does the same to the other.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from reqgraph.errors import (
    CardinalityExceeded,
    CycleDetected,
    NotFound,
    RelationshipError,
    RelationshipExists,
    ReqGraphError,
    SelfReference,
    TypeNotAllowed,
)
from reqgraph.models.definitions import RelationshipDefinition
from reqgraph.models.requirement import Relationship, Requirement, utcnow

logger = logging.getLogger("reqgraph.relationships")


@dataclass
class ValidationResult:
    """Outcome of validating one edge: ok, or rejected with the error."""
    source_id: UUID
    kind: str
    target_id: UUID
    error: Optional[ReqGraphError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def code(self) -> Optional[str]:
        return self.error.code if self.error else None


class RelationshipEngine:
    """
    Validates relationship edges against their definitions.

    The engine reads records and definitions through the owning store
    (``store.get(id)``, ``store.get_relationship_definition(name)`` and
    ``store.requirements``) and holds no state of its own.
    """

    def __init__(self, store):
        self.store = store

    # -- Validation -----------------------------------------------------------

    def validate(self, source_id: UUID, kind: str, target_id: UUID) -> ValidationResult:
        """
        Validate a new edge ``source -kind-> target``.

        Checks run in order: type constraint, cardinality, cycle avoidance
        (hierarchical kinds only), self-reference.

        Returns:
            ValidationResult, with ``error`` set when the edge is rejected

        Raises:
            NotFound: If either record or the kind does not exist
        """
        source = self.store.get(source_id)
        target = self.store.get(target_id)
        definition = self.store.get_relationship_definition(kind)

        result = ValidationResult(source.id, definition.name, target.id)
        if source.has_relationship(definition.name, target.id):
            result.error = RelationshipExists(source.display_id, definition.name, target.display_id)
            return result
        result.error = self._check(source, definition, target, existing=False)
        return result

    def _check(
        self,
        source: Requirement,
        definition: RelationshipDefinition,
        target: Requirement,
        existing: bool,
    ) -> Optional[RelationshipError]:
        kind = definition.name

        if not definition.allows_source(source.req_type):
            return TypeNotAllowed(source.display_id, kind, target.display_id,
                                  "source", source.req_type, definition.source_types)
        if not definition.allows_target(target.req_type):
            return TypeNotAllowed(source.display_id, kind, target.display_id,
                                  "target", target.req_type, definition.target_types)

        # An edge being audited counts itself once
        allowed = 2 if existing else 1
        if definition.cardinality.limits_source:
            if len(source.relationships_of(kind)) >= allowed:
                return CardinalityExceeded(source.display_id, kind, target.display_id,
                                           definition.cardinality.value, "source", 1)
        if definition.cardinality.limits_target:
            inbound = sum(
                1 for record in self.store.requirements
                for edge in record.relationships
                if edge.rel_type == kind and edge.target_id == target.id
            )
            if inbound >= allowed:
                return CardinalityExceeded(source.display_id, kind, target.display_id,
                                           definition.cardinality.value, "target", 1)

        if definition.hierarchical:
            path = self._find_path(target.id, source.id, definition)
            if path is not None:
                return CycleDetected(source.display_id, kind, target.display_id,
                                     [self._label(node) for node in path])

        if source.id == target.id and not definition.allow_self:
            return SelfReference(source.display_id, kind)
        return None

    def _label(self, record_id: UUID) -> str:
        try:
            return self.store.get(record_id).display_id
        except NotFound:
            return str(record_id)

    def _find_path(
        self, start: UUID, goal: UUID, definition: RelationshipDefinition
    ) -> Optional[List[UUID]]:
        """
        Breadth-first walk along the kind's chain from ``start``.

        A node's successors are its own edges of the kind plus the sources of
        inverse-kind edges pointing at it, so half-paired legacy data is still
        walked correctly.

        Returns:
            The node path from ``start`` to ``goal``, or None if unreachable
        """
        successors: Dict[UUID, List[UUID]] = {}
        for record in self.store.requirements:
            for edge in record.relationships:
                if edge.rel_type == definition.name:
                    successors.setdefault(record.id, []).append(edge.target_id)
                elif definition.inverse and edge.rel_type == definition.inverse:
                    successors.setdefault(edge.target_id, []).append(record.id)

        previous: Dict[UUID, Optional[UUID]] = {start: None}
        queue = deque([start])
        while queue:
            node = queue.popleft()
            for nxt in successors.get(node, []):
                if nxt == goal:
                    path = [goal, node]
                    while previous[node] is not None:
                        node = previous[node]
                        path.append(node)
                    path.reverse()
                    return path
                if nxt not in previous:
                    previous[nxt] = node
                    queue.append(nxt)
        return None

    # -- Mutation -------------------------------------------------------------

    def paired_kind(self, definition: RelationshipDefinition) -> Optional[str]:
        """Kind of the edge created on the target, if any."""
        if definition.symmetric:
            return definition.name
        if definition.inverse:
            try:
                return self.store.get_relationship_definition(definition.inverse).name
            except NotFound:
                return None
        return None

    def add(self, source_id: UUID, kind: str, target_id: UUID, advisory: bool = False) -> ValidationResult:
        """
        Add an edge and its paired edge.

        Args:
            source_id: Source requirement ID
            kind: Relationship definition name
            target_id: Target requirement ID
            advisory: Keep a violating edge, flagged with the error code,
                instead of rejecting it. Used for bulk and legacy imports.

        Returns:
            The ValidationResult of the edge

        Raises:
            NotFound: If either record or the kind does not exist
            RelationshipExists: If the edge is already present
            RelationshipError: The specific rejection, unless ``advisory``
        """
        result = self.validate(source_id, kind, target_id)
        if isinstance(result.error, RelationshipExists):
            raise result.error
        if result.error is not None:
            if not advisory:
                raise result.error
            logger.warning("Advisory: keeping flagged edge (%s): %s", result.code, result.error)

        source = self.store.get(source_id)
        target = self.store.get(target_id)
        definition = self.store.get_relationship_definition(kind)
        source.relationships.append(Relationship(rel_type=definition.name, target_id=target.id, flag=result.code))

        paired = self.paired_kind(definition)
        if paired and not (paired == definition.name and source.id == target.id):
            if not target.has_relationship(paired, source.id):
                target.relationships.append(Relationship(rel_type=paired, target_id=source.id, flag=result.code))
        now = utcnow()
        source.modified_at = now
        target.modified_at = now
        logger.debug("Added %s -%s-> %s", source.display_id, definition.name, target.display_id)
        return result

    def remove(self, source_id: UUID, kind: str, target_id: UUID) -> None:
        """
        Remove an edge and its paired edge.

        The pair is located through the relationship definition. If the kind's
        definition has been removed, only the named edge is removed.

        Raises:
            NotFound: If the edge does not exist
        """
        source = self.store.get(source_id)
        if not source.has_relationship(kind, target_id):
            raise NotFound("Relationship", f"{source.display_id} -{kind}-> {target_id}")
        source.relationships = [
            e for e in source.relationships if not (e.rel_type == kind and e.target_id == target_id)
        ]
        source.modified_at = utcnow()

        try:
            definition = self.store.get_relationship_definition(kind)
        except NotFound:
            return
        paired = self.paired_kind(definition)
        if not paired:
            return
        try:
            target = self.store.get(target_id)
        except NotFound:
            return
        target.relationships = [
            e for e in target.relationships if not (e.rel_type == paired and e.target_id == source.id)
        ]
        target.modified_at = utcnow()

    # -- Bulk -----------------------------------------------------------------

    def audit(self) -> List[ValidationResult]:
        """
        Validate every existing edge in advisory mode.

        Violating edges are flagged with the error code and logged; edges that
        pass have any old flag cleared.

        Returns:
            The results of the violating edges
        """
        violations: List[ValidationResult] = []
        for record in list(self.store.requirements):
            for edge in record.relationships:
                result = ValidationResult(record.id, edge.rel_type, edge.target_id)
                try:
                    definition = self.store.get_relationship_definition(edge.rel_type)
                    target = self.store.get(edge.target_id)
                except NotFound as e:
                    result.error = e
                else:
                    result.error = self._check(record, definition, target, existing=True)
                edge.flag = result.code
                if not result.ok:
                    logger.warning("Advisory: %s -%s-> %s flagged (%s): %s",
                                   record.display_id, edge.rel_type, edge.target_id, result.code, result.error)
                    violations.append(result)
        return violations

    def clear_flags(self) -> int:
        """Remove advisory flags from all edges. Returns the number cleared."""
        cleared = 0
        for record in self.store.requirements:
            for edge in record.relationships:
                if edge.flag:
                    edge.flag = None
                    cleared += 1
        return cleared

    def related(self, record_id: UUID, kind: Optional[str] = None) -> List[Tuple[str, Requirement]]:
        """Outgoing neighbours of a record as ``(kind, target)`` pairs, dangling edges skipped."""
        record = self.store.get(record_id)
        result = []
        for edge in record.relationships:
            if kind and edge.rel_type != kind:
                continue
            try:
                result.append((edge.rel_type, self.store.get(edge.target_id)))
            except NotFound:
                continue
        return result
