"""
Record Store - the authoritative in-memory model of a requirements project.

The store owns a ``ProjectData`` plus index maps for O(1) lookup by internal
id and by alternate key. All mutations go through the store so that the
identifier allocator and the relationship engine see every change.
"""

import logging
from collections import Counter
from datetime import date
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from reqgraph.config import config
from reqgraph.engine.identifiers import IdentifierAllocator
from reqgraph.engine.relationships import RelationshipEngine, ValidationResult
from reqgraph.errors import (
    DefinitionExists,
    DefinitionProtected,
    DuplicateAlternateKey,
    DuplicateRecord,
    FieldInUse,
    FieldValidationError,
    InvalidDefinition,
    NotFound,
    StatusInUse,
    TypeInUse,
)
from reqgraph.models.definitions import (
    STRUCTURAL_FIELDS,
    CustomFieldType,
    FeatureDefinition,
    RelationshipDefinition,
    TypeDefinition,
)
from reqgraph.models.project import META_PREFIX_USER, IdConfiguration, IdFormat, NumberingStrategy, ProjectData
from reqgraph.models.requirement import (
    Comment,
    CommentReaction,
    FieldChange,
    HistoryEntry,
    Requirement,
    UrlLink,
    User,
    utcnow,
)

logger = logging.getLogger("reqgraph.record_store")

# Fields update_requirement may change
UPDATABLE_FIELDS = (
    "title", "description", "status", "custom_status", "priority", "owner", "feature",
    "req_type", "tags", "prefix_override", "custom_fields", "archived", "created_by",
)
IMMUTABLE_FIELDS = ("id", "spec_id")

_BOOLEAN_VALUES = ("true", "false", "yes", "no", "1", "0")


def _format_value(value: Any) -> str:
    """Render a field value for history entries."""
    if value is None:
        return ""
    if hasattr(value, "value"):
        return str(value.value)
    if isinstance(value, (set, frozenset, list, tuple)):
        return ", ".join(sorted(str(v) for v in value))
    if isinstance(value, dict):
        return ", ".join(f"{k}={v}" for k, v in sorted(value.items()))
    return str(value)


class RecordStore:
    """
    In-memory requirements store.

    Usage:
        store = RecordStore()
        req = store.add_requirement(Requirement(title="Login"))
        store.add_relationship(req.spec_id, "parent", "FR-002")
    """

    def __init__(self, data: Optional[ProjectData] = None):
        self.data = data or ProjectData()
        self._by_id: Dict[UUID, Requirement] = {}
        self._by_spec_id: Dict[str, UUID] = {}
        self.allocator = IdentifierAllocator(self.data, self._by_spec_id)
        self.relationships = RelationshipEngine(self)
        self.rebuild_index()
        self.allocator.sync_counters()

    # -- Index ----------------------------------------------------------------

    def rebuild_index(self) -> None:
        """
        Rebuild the id and alternate-key index maps from ``data.requirements``.

        Raises:
            DuplicateRecord: If two records share an internal id
            DuplicateAlternateKey: If two records share an alternate key
        """
        self._by_id.clear()
        self._by_spec_id.clear()
        for req in self.data.requirements:
            if req.id in self._by_id:
                raise DuplicateRecord(req.id)
            self._by_id[req.id] = req
            if req.spec_id:
                if req.spec_id in self._by_spec_id:
                    raise DuplicateAlternateKey(req.spec_id, self._by_spec_id[req.spec_id], req.id)
                self._by_spec_id[req.spec_id] = req.id

    @property
    def requirements(self) -> List[Requirement]:
        return self.data.requirements

    def __len__(self) -> int:
        return len(self.data.requirements)

    # -- Lookup ---------------------------------------------------------------

    def get(self, record_id: UUID) -> Requirement:
        """
        Get a requirement by internal id.

        Raises:
            NotFound: If no requirement has the id
        """
        req = self._by_id.get(record_id)
        if req is None:
            raise NotFound("Requirement", record_id)
        return req

    def get_by_spec_id(self, spec_id: str) -> Requirement:
        """
        Get a requirement by alternate key (case-insensitive).

        Raises:
            NotFound: If no requirement has the key
        """
        record_id = self._by_spec_id.get(spec_id) or self._by_spec_id.get(spec_id.strip().upper())
        if record_id is None:
            raise NotFound("Requirement", spec_id)
        return self._by_id[record_id]

    def resolve(self, text: str) -> Requirement:
        """
        Resolve a caller-supplied string to a requirement.

        Internal id syntax is tried first, then the alternate key.

        Raises:
            NotFound: If neither resolves
        """
        try:
            record_id = UUID(text.strip())
        except ValueError:
            record_id = None
        if record_id is not None and record_id in self._by_id:
            return self._by_id[record_id]
        try:
            return self.get_by_spec_id(text)
        except NotFound:
            raise NotFound("Requirement", text) from None

    def _lookup(self, key) -> Requirement:
        if isinstance(key, Requirement):
            return self.get(key.id)
        if isinstance(key, UUID):
            return self.get(key)
        return self.resolve(str(key))

    def list_requirements(
        self,
        feature: Optional[str] = None,
        req_type: Optional[str] = None,
        status: Optional[str] = None,
        include_archived: bool = False,
    ) -> List[Requirement]:
        """List requirements matching all given filters, in stored order."""
        result = []
        for req in self.data.requirements:
            if req.archived and not include_archived:
                continue
            if feature and req.feature != feature:
                continue
            if req_type and req.req_type != req_type:
                continue
            if status and req.effective_status != status:
                continue
            result.append(req)
        return result

    # -- Records --------------------------------------------------------------

    def add_requirement(self, req: Requirement, actor: Optional[str] = None) -> Requirement:
        """
        Add a requirement, assigning its alternate key.

        A requirement that already carries an alternate key (an import) keeps
        it and the counters are moved past it. Relationships carried by the
        new requirement are validated one by one after it is stored; if any is
        rejected the requirement is removed again and the error raised.

        Args:
            req: The requirement to add
            actor: Who creates it, defaults to ``config.default_actor``

        Returns:
            The stored requirement

        Raises:
            DuplicateRecord: If the id is already stored
            DuplicateAlternateKey: If the given alternate key is taken
            FieldValidationError: If the record does not fit its type
            InvalidPrefix: If the prefix override is not allowed
        """
        if req.id in self._by_id:
            raise DuplicateRecord(req.id)
        if req.spec_id and req.spec_id in self._by_spec_id:
            raise DuplicateAlternateKey(req.spec_id, self._by_spec_id[req.spec_id], req.id)
        if req.prefix_override:
            req.prefix_override = self.allocator.validate_prefix(req.prefix_override)

        self._apply_type_defaults(req)
        self.validate_requirement(req)
        if req.created_by is None:
            req.created_by = actor or config.default_actor

        pending = list(req.relationships)
        req.relationships = []
        self.allocator.assign(req)
        self.data.requirements.append(req)
        self._by_id[req.id] = req
        self._by_spec_id[req.spec_id] = req.id
        self.allocator.sync_counters()

        try:
            for edge in pending:
                self.relationships.add(req.id, edge.rel_type, edge.target_id)
        except Exception:
            self.remove_requirement(req.id)
            raise

        logger.info("Added requirement %s (%s)", req.spec_id, req.id)
        return req

    def update_requirement(self, key, actor: Optional[str] = None, **changes: Any) -> Optional[HistoryEntry]:
        """
        Update fields of a requirement and record the change in its history.

        Args:
            key: Internal id, alternate key or the requirement itself
            actor: Who makes the change, defaults to ``config.default_actor``
            **changes: Field name -> new value

        Returns:
            The HistoryEntry recorded, or None if nothing changed

        Raises:
            FieldValidationError: For immutable or unknown fields, or values
                the requirement's type does not accept
        """
        req = self._lookup(key)
        for name in changes:
            if name in IMMUTABLE_FIELDS:
                raise FieldValidationError(req.display_id, name, "is immutable")
            if name not in UPDATABLE_FIELDS:
                raise FieldValidationError(req.display_id, name, "is not an updatable field")

        if changes.get("prefix_override"):
            changes["prefix_override"] = self.allocator.validate_prefix(changes["prefix_override"])
        try:
            candidate = Requirement.model_validate({**req.model_dump(), **changes})
        except ValueError as e:
            raise FieldValidationError(req.display_id, ", ".join(changes), str(e)) from e
        self._apply_type_defaults(candidate, reset_status=candidate.req_type != req.req_type)
        self.validate_requirement(candidate)

        field_changes = []
        for name in UPDATABLE_FIELDS:
            old, new = getattr(req, name), getattr(candidate, name)
            if old != new:
                field_changes.append(FieldChange(field_name=name, old_value=_format_value(old),
                                                 new_value=_format_value(new)))
                setattr(req, name, new)
        if not field_changes:
            return None

        entry = HistoryEntry(author=actor or config.default_actor, changes=field_changes)
        req.history.append(entry)
        req.modified_at = entry.timestamp
        logger.info("Updated %s: %s", req.display_id, ", ".join(c.field_name for c in field_changes))
        return entry

    def remove_requirement(self, key) -> Requirement:
        """
        Remove a requirement and every edge or dependency pointing at it.

        Counters are not touched, so the removed alternate key is never reused.
        """
        req = self._lookup(key)
        for other in self.data.requirements:
            if other.id == req.id:
                continue
            before = len(other.relationships) + len(other.dependencies)
            other.relationships = [e for e in other.relationships if e.target_id != req.id]
            other.dependencies = [d for d in other.dependencies if d != req.id]
            if len(other.relationships) + len(other.dependencies) != before:
                other.modified_at = utcnow()
        self.data.requirements = [r for r in self.data.requirements if r.id != req.id]
        del self._by_id[req.id]
        if req.spec_id:
            self._by_spec_id.pop(req.spec_id, None)
        logger.info("Removed requirement %s", req.display_id)
        return req

    def archive(self, key, archived: bool = True, actor: Optional[str] = None) -> Optional[HistoryEntry]:
        return self.update_requirement(key, actor=actor, archived=archived)

    # -- Relationships --------------------------------------------------------

    def add_relationship(self, source, kind: str, target, advisory: bool = False) -> ValidationResult:
        """Add an edge between two requirements given by id or alternate key."""
        return self.relationships.add(self._lookup(source).id, kind, self._lookup(target).id, advisory=advisory)

    def remove_relationship(self, source, kind: str, target) -> None:
        self.relationships.remove(self._lookup(source).id, kind, self._lookup(target).id)

    def get_relationship_definition(self, name: str) -> RelationshipDefinition:
        normalized = name.strip().lower().replace("_", "-")
        for definition in self.data.relationship_definitions:
            if definition.name == normalized:
                return definition
        raise NotFound("Relationship definition", name)

    def _has_relationship_definition(self, name: str) -> bool:
        try:
            self.get_relationship_definition(name)
            return True
        except NotFound:
            return False

    def _check_relationship_definition(self, definition: RelationshipDefinition) -> None:
        if definition.symmetric and definition.inverse:
            raise InvalidDefinition(definition.name, "symmetric relationships have no inverse")
        if definition.inverse == definition.name:
            raise InvalidDefinition(definition.name, "a relationship cannot be its own inverse, mark it symmetric")
        known_types = {t.name for t in self.data.type_definitions}
        for type_name in definition.source_types + definition.target_types:
            if type_name not in known_types:
                raise InvalidDefinition(definition.name, f"unknown requirement type '{type_name}'")

    def add_relationship_definition(
        self, definition: RelationshipDefinition, create_inverse: bool = False
    ) -> RelationshipDefinition:
        """
        Add a relationship kind.

        Args:
            definition: The new definition
            create_inverse: Create the mirrored inverse definition when the
                declared inverse does not exist yet

        Raises:
            DefinitionExists: If the name is taken
            InvalidDefinition: If the definition breaks the inverse rules
            DefinitionProtected: If a built-in kind would have to change its inverse
        """
        if self._has_relationship_definition(definition.name):
            raise DefinitionExists("Relationship definition", definition.name)
        self._check_relationship_definition(definition)

        mirror = None
        if definition.inverse:
            if self._has_relationship_definition(definition.inverse):
                existing = self.get_relationship_definition(definition.inverse)
                if existing.symmetric:
                    raise InvalidDefinition(definition.name, f"'{existing.name}' is symmetric and cannot be an inverse")
                if existing.inverse and existing.inverse != definition.name:
                    raise InvalidDefinition(
                        definition.name, f"'{existing.name}' is already the inverse of '{existing.inverse}'"
                    )
                if existing.inverse is None:
                    if existing.built_in:
                        raise DefinitionProtected(existing.name, "cannot take a new inverse")
                    existing.inverse = definition.name
            elif create_inverse:
                mirror = definition.mirrored()
            else:
                raise InvalidDefinition(definition.name, f"inverse '{definition.inverse}' does not exist")

        definition.built_in = False
        self.data.relationship_definitions.append(definition)
        if mirror is not None:
            self.data.relationship_definitions.append(mirror)
            logger.info("Added relationship definitions %s and %s", definition.name, mirror.name)
        else:
            logger.info("Added relationship definition %s", definition.name)
        return definition

    def edit_relationship_definition(self, kind: str, **changes: Any) -> RelationshipDefinition:
        """
        Edit a relationship kind.

        Built-in kinds only accept display metadata and type set changes.
        On a custom kind the inverse pair is kept consistent: a new inverse
        is pointed back at the kind, the previous inverse is released, and
        the inverse always carries the flipped cardinality.

        Raises:
            DefinitionProtected: For structural changes to a built-in kind,
                or when a built-in kind would have to change as the inverse
            InvalidDefinition: For renames or invalid results
        """
        definition = self.get_relationship_definition(kind)
        for field_name in ("name", "built_in"):
            if field_name in changes and changes[field_name] != getattr(definition, field_name):
                raise InvalidDefinition(definition.name, f"'{field_name}' cannot be changed")
        candidate = RelationshipDefinition.model_validate({**definition.model_dump(), **changes})
        if definition.built_in:
            for field_name in STRUCTURAL_FIELDS:
                if getattr(candidate, field_name) != getattr(definition, field_name):
                    raise DefinitionProtected(definition.name, f"structural field '{field_name}' cannot be changed")
        self._check_relationship_definition(candidate)

        partner = None
        if candidate.inverse and not definition.built_in:
            if not self._has_relationship_definition(candidate.inverse):
                raise InvalidDefinition(definition.name, f"inverse '{candidate.inverse}' does not exist")
            partner = self.get_relationship_definition(candidate.inverse)
            if partner.symmetric:
                raise InvalidDefinition(definition.name, f"'{partner.name}' is symmetric and cannot be an inverse")
            if partner.inverse and partner.inverse != definition.name:
                raise InvalidDefinition(
                    definition.name, f"'{partner.name}' is already the inverse of '{partner.inverse}'"
                )
            if partner.built_in and (partner.inverse != definition.name
                                     or partner.cardinality != candidate.cardinality.flipped()):
                raise DefinitionProtected(partner.name, "built-in inverse cannot change")
        previous = None
        if definition.inverse and definition.inverse != candidate.inverse \
                and self._has_relationship_definition(definition.inverse):
            previous = self.get_relationship_definition(definition.inverse)
            if previous.inverse != definition.name:
                previous = None

        for field_name in RelationshipDefinition.model_fields:
            setattr(definition, field_name, getattr(candidate, field_name))
        if previous is not None:
            previous.inverse = None
            logger.warning("Relationship definition %s is no longer the inverse of %s", previous.name, definition.name)
        if partner is not None:
            partner.inverse = definition.name
            partner.cardinality = definition.cardinality.flipped()
        logger.info("Edited relationship definition %s", definition.name)
        return definition

    def remove_relationship_definition(self, name: str) -> RelationshipDefinition:
        """
        Remove a custom relationship kind.

        Existing edges of the kind are kept; the inverse kind, if any, stops
        pointing at it.

        Raises:
            DefinitionProtected: For built-in kinds
        """
        definition = self.get_relationship_definition(name)
        if definition.built_in:
            raise DefinitionProtected(definition.name, "built-in relationships cannot be removed")
        self.data.relationship_definitions = [
            d for d in self.data.relationship_definitions if d.name != definition.name
        ]
        for other in self.data.relationship_definitions:
            if other.inverse == definition.name:
                other.inverse = None
        in_use = sum(len(r.relationships_of(definition.name)) for r in self.data.requirements)
        if in_use:
            logger.warning("Removed relationship definition %s still used by %d edge(s)", definition.name, in_use)
        return definition

    # -- Types ----------------------------------------------------------------

    def get_type_definition(self, name: str) -> TypeDefinition:
        for tdef in self.data.type_definitions:
            if tdef.name == name:
                return tdef
        raise NotFound("Type definition", name)

    def type_for(self, req: Requirement) -> Optional[TypeDefinition]:
        for tdef in self.data.type_definitions:
            if tdef.name == req.req_type:
                return tdef
        return None

    def add_type_definition(self, tdef: TypeDefinition) -> TypeDefinition:
        if any(t.name == tdef.name for t in self.data.type_definitions):
            raise DefinitionExists("Type definition", tdef.name)
        tdef.built_in = False
        self.data.type_definitions.append(tdef)
        logger.info("Added type definition %s (%s)", tdef.name, tdef.prefix)
        return tdef

    def _records_of_type(self, name: str) -> List[Requirement]:
        return [r for r in self.data.requirements if r.req_type == name]

    def _check_statuses_unused(self, type_name: str, statuses: List[str], custom_only: bool = False) -> None:
        for status in statuses:
            holders = [
                r.id for r in self._records_of_type(type_name)
                if (r.custom_status if custom_only else r.effective_status) == status
            ]
            if holders:
                raise StatusInUse(type_name, status, holders)

    def _check_fields_unused(self, type_name: str, field_names: List[str]) -> None:
        for field_name in field_names:
            holders = [r.id for r in self._records_of_type(type_name) if r.custom_fields.get(field_name)]
            if holders:
                raise FieldInUse(type_name, field_name, holders)

    def edit_type_definition(self, type_name: str, **changes: Any) -> TypeDefinition:
        """
        Edit a type definition.

        Raises:
            StatusInUse: If a removed status is held by a record
            FieldInUse: If a removed field has a stored value
            InvalidDefinition: For renames
        """
        tdef = self.get_type_definition(type_name)
        if "name" in changes and changes["name"] != tdef.name:
            raise InvalidDefinition(tdef.name, "types cannot be renamed")
        candidate = TypeDefinition.model_validate({**tdef.model_dump(), **changes})

        removed_statuses = [s for s in tdef.statuses if s not in candidate.statuses]
        self._check_statuses_unused(tdef.name, removed_statuses)
        kept_fields = {f.name for f in candidate.fields}
        self._check_fields_unused(tdef.name, [f.name for f in tdef.fields if f.name not in kept_fields])

        for field_name in TypeDefinition.model_fields:
            if field_name != "built_in":
                setattr(tdef, field_name, getattr(candidate, field_name))
        if not tdef.uses_standard_statuses:
            # Statuses held in `status` move to `custom_status`
            for req in self._records_of_type(tdef.name):
                if req.custom_status is None:
                    req.custom_status = req.status.value
        logger.info("Edited type definition %s", tdef.name)
        return tdef

    def remove_type_definition(self, name: str) -> TypeDefinition:
        """
        Remove a type definition.

        Checked in order: a custom status of the type held by a record, a
        field of the type holding a value, any record of the type.

        Raises:
            StatusInUse, FieldInUse, TypeInUse
        """
        tdef = self.get_type_definition(name)
        self._check_statuses_unused(tdef.name, tdef.statuses, custom_only=True)
        self._check_fields_unused(tdef.name, [f.name for f in tdef.fields])
        holders = [r.id for r in self._records_of_type(tdef.name)]
        if holders:
            raise TypeInUse(tdef.name, holders)
        self.data.type_definitions = [t for t in self.data.type_definitions if t.name != tdef.name]
        logger.info("Removed type definition %s", tdef.name)
        return tdef

    def _apply_type_defaults(self, req: Requirement, reset_status: bool = False) -> None:
        tdef = self.type_for(req)
        if tdef is None:
            return
        if reset_status and req.custom_status not in tdef.statuses:
            req.custom_status = None
        if not tdef.uses_standard_statuses and req.custom_status is None:
            req.custom_status = req.status.value if req.status.value in tdef.statuses else tdef.statuses[0]
        for field in tdef.fields:
            if field.default_value is not None and not req.custom_fields.get(field.name):
                req.custom_fields[field.name] = field.default_value

    def validate_requirement(self, req: Requirement) -> None:
        """
        Check a requirement against its type definition.

        Raises:
            FieldValidationError: For an unknown type, a status outside the
                type's list, or an invalid field value
        """
        tdef = self.type_for(req)
        if tdef is None:
            raise FieldValidationError(req.display_id, "req_type", f"unknown type '{req.req_type}'")
        if req.custom_status is not None and req.custom_status not in tdef.statuses:
            raise FieldValidationError(
                req.display_id, "custom_status",
                f"'{req.custom_status}' is not a status of {tdef.name} ({', '.join(tdef.statuses)})",
            )
        if not tdef.uses_standard_statuses and req.custom_status is None:
            raise FieldValidationError(req.display_id, "custom_status", f"is required for type {tdef.name}")

        for field in tdef.fields:
            value = req.custom_fields.get(field.name, "")
            if not value:
                if field.required:
                    raise FieldValidationError(req.display_id, field.name, "is required")
                continue
            reason = self._field_error(field.field_type, field.options, value)
            if reason:
                raise FieldValidationError(req.display_id, field.name, reason)

    def _field_error(self, field_type: CustomFieldType, options: List[str], value: str) -> Optional[str]:
        if field_type == CustomFieldType.SELECT and options and value not in options:
            return f"must be one of {', '.join(options)}"
        if field_type == CustomFieldType.BOOLEAN and value.lower() not in _BOOLEAN_VALUES:
            return "must be true or false"
        if field_type == CustomFieldType.NUMBER:
            try:
                float(value)
            except ValueError:
                return f"'{value}' is not a number"
        if field_type == CustomFieldType.DATE:
            try:
                date.fromisoformat(value)
            except ValueError:
                return f"'{value}' is not a date (YYYY-MM-DD)"
        if field_type == CustomFieldType.REQUIREMENT:
            try:
                self.resolve(value)
            except NotFound:
                return f"references unknown requirement '{value}'"
        if field_type == CustomFieldType.USER:
            try:
                self.get_user(value)
            except NotFound:
                return f"references unknown user '{value}'"
        return None

    # -- Identifiers ----------------------------------------------------------

    def configure_ids(
        self,
        id_format: Optional[IdFormat] = None,
        numbering: Optional[NumberingStrategy] = None,
        digits: Optional[int] = None,
    ) -> IdConfiguration:
        return self.allocator.configure(id_format=id_format, numbering=numbering, digits=digits)

    def assign_missing_keys(self) -> int:
        """
        Give alternate keys to loaded records and users that lack them.

        Records are keyed in creation order. Returns the number assigned.
        """
        assigned = 0
        for req in sorted(self.data.requirements, key=lambda r: r.created_at):
            if not req.spec_id:
                self._by_spec_id[self.allocator.assign(req)] = req.id
                assigned += 1
        for user in self.data.users:
            if not user.spec_id:
                user.spec_id = self.allocator.next_meta_id(META_PREFIX_USER)
                assigned += 1
        if assigned:
            logger.warning("Assigned %d missing identifier(s)", assigned)
        return assigned

    def rederive_ids(self, new_config: IdConfiguration) -> Dict[UUID, Tuple[Optional[str], str]]:
        """Re-derive all alternate keys under ``new_config`` and reindex."""
        changed = self.allocator.rederive(new_config)
        self.rebuild_index()
        return changed

    # -- Comments and links ---------------------------------------------------

    def add_comment(self, key, author: str, content: str, parent_id: Optional[UUID] = None) -> Comment:
        """
        Add a comment, or a reply when ``parent_id`` is given.

        Raises:
            NotFound: If the parent comment does not exist
        """
        req = self._lookup(key)
        if parent_id is not None and req.get_comment(parent_id) is None:
            raise NotFound("Comment", parent_id)
        comment = Comment(author=author, content=content, parent_id=parent_id)
        req.comments.append(comment)
        req.modified_at = comment.created_at
        return comment

    def add_reaction(self, key, comment_id: UUID, reaction: str, author: str) -> Comment:
        """Toggle a reaction on a comment."""
        req = self._lookup(key)
        comment = req.get_comment(comment_id)
        if comment is None:
            raise NotFound("Comment", comment_id)
        if not any(r.name == reaction for r in self.data.reaction_definitions):
            raise NotFound("Reaction", reaction)
        existing = [r for r in comment.reactions if r.reaction == reaction and r.author == author]
        if existing:
            comment.reactions.remove(existing[0])
        else:
            comment.reactions.append(CommentReaction(reaction=reaction, author=author))
        return comment

    def add_url(self, key, url: str, title: str = "", description: str = "",
                added_by: Optional[str] = None) -> UrlLink:
        req = self._lookup(key)
        link = UrlLink(url=url, title=title, description=description, added_by=added_by or config.default_actor)
        req.urls.append(link)
        req.modified_at = link.added_at
        return link

    # -- Users and features ---------------------------------------------------

    def add_user(self, name: str, handle: str, email: str = "") -> User:
        """
        Add a user with a ``$USER-NNN`` meta identifier.

        Raises:
            DefinitionExists: If the handle is taken
        """
        if any(u.handle == handle for u in self.data.users):
            raise DefinitionExists("User", handle)
        user = User(name=name, handle=handle, email=email,
                    spec_id=self.allocator.next_meta_id(META_PREFIX_USER))
        self.data.users.append(user)
        logger.info("Added user %s (%s)", user.handle, user.spec_id)
        return user

    def get_user(self, key: str) -> User:
        """Find a user by handle, meta identifier or internal id."""
        for user in self.data.users:
            if key in (user.handle, user.spec_id, str(user.id)):
                return user
        raise NotFound("User", key)

    def add_feature(self, name: str, prefix: str, description: str = "") -> FeatureDefinition:
        """
        Add a numbered feature.

        Raises:
            DefinitionExists: If the name is taken
            InvalidPrefix: If the prefix is not allowed
        """
        if self.get_feature(name) is not None:
            raise DefinitionExists("Feature", name)
        feature = FeatureDefinition(
            number=self.data.next_feature_number,
            name=name,
            prefix=self.allocator.validate_prefix(prefix),
            description=description,
        )
        self.data.next_feature_number += 1
        self.data.features.append(feature)
        logger.info("Added feature %d %s (%s)", feature.number, feature.name, feature.prefix)
        return feature

    def get_feature(self, name: str) -> Optional[FeatureDefinition]:
        for feature in self.data.features:
            if feature.name == name:
                return feature
        return None

    # -- Summary --------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        """Counts by status, type and feature plus edge totals."""
        active = [r for r in self.data.requirements if not r.archived]
        edges = [e for r in self.data.requirements for e in r.relationships]
        return {
            "total": len(self.data.requirements),
            "archived": len(self.data.requirements) - len(active),
            "by_status": dict(Counter(r.effective_status for r in active)),
            "by_type": dict(Counter(r.req_type for r in active)),
            "by_feature": dict(Counter(r.feature for r in active)),
            "relationships": len(edges),
            "flagged_relationships": sum(1 for e in edges if e.flag),
            "users": len(self.data.users),
        }
