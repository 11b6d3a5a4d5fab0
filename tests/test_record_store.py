"""Tests for the in-memory record store."""
from uuid import uuid4

import pytest

from reqgraph.engine.record_store import RecordStore
from reqgraph.errors import (
    CardinalityExceeded,
    DefinitionExists,
    DefinitionProtected,
    DuplicateAlternateKey,
    FieldInUse,
    FieldValidationError,
    InvalidDefinition,
    InvalidPrefix,
    NotFound,
    StatusInUse,
    TypeInUse,
)
from reqgraph.models import (
    STANDARD_STATUSES,
    Cardinality,
    CustomFieldDefinition,
    ProjectData,
    Relationship,
    RelationshipDefinition,
    Requirement,
    TypeDefinition,
)


class TestRecords:
    """Test adding, resolving, updating and removing requirements."""

    def test_resolve_by_id_and_key(self, store, add):
        req = add("Login")

        assert store.resolve(str(req.id)) is req
        assert store.resolve("FR-001") is req
        assert store.resolve("fr-001") is req
        with pytest.raises(NotFound) as exc_info:
            store.resolve("FR-404")
        assert exc_info.value.key == "FR-404"

    def test_created_by_defaults_to_actor(self, add):
        assert add("Login").created_by == "tester"

    def test_update_records_history(self, store, add):
        req = add("Login")

        entry = store.update_requirement(req.spec_id, actor="bob", title="Sign in", priority="High")

        assert req.title == "Sign in"
        assert entry.author == "bob"
        assert [(c.field_name, c.old_value, c.new_value) for c in entry.changes] == [
            ("title", "Login", "Sign in"),
            ("priority", "Medium", "High"),
        ]
        assert req.history == [entry]
        assert req.modified_at == entry.timestamp

    def test_update_without_change_returns_none(self, store, add):
        req = add("Login")
        assert store.update_requirement(req.id, title="Login") is None
        assert req.history == []

    @pytest.mark.parametrize("field_name", ["id", "spec_id"])
    def test_immutable_fields(self, store, add, field_name):
        req = add("Login")
        with pytest.raises(FieldValidationError) as exc_info:
            store.update_requirement(req.id, **{field_name: "FR-999"})
        assert exc_info.value.field == field_name
        assert req.spec_id == "FR-001"

    def test_unknown_field_rejected(self, store, add):
        req = add("Login")
        with pytest.raises(FieldValidationError):
            store.update_requirement(req.id, history=[])

    def test_type_change_resets_status_and_defaults(self, store, add):
        req = add("Crash")

        entry = store.update_requirement(req.id, req_type="Bug")

        assert req.custom_status == "New"
        assert req.custom_fields == {"severity": "Major"}
        assert {c.field_name for c in entry.changes} == {"req_type", "custom_status", "custom_fields"}
        assert req.spec_id == "FR-001"

    def test_type_fields_validated(self, add):
        with pytest.raises(FieldValidationError) as exc_info:
            add("Crash", "Bug", custom_fields={"severity": "Huge"})
        assert exc_info.value.field == "severity"

        with pytest.raises(FieldValidationError):
            add("Estimate", "Story", custom_fields={"story_points": "many"})

    def test_custom_status_must_belong_to_type(self, add):
        assert add("Do it", "Task").custom_status == "To Do"
        with pytest.raises(FieldValidationError) as exc_info:
            add("Do it", "Task", custom_status="Blocked")
        assert exc_info.value.field == "custom_status"

    def test_unknown_type_rejected(self, add):
        with pytest.raises(FieldValidationError):
            add("Odd", "Nonexistent")

    def test_remove_strips_inbound_edges(self, store, add):
        a, b = add("A"), add("B")
        store.add_relationship(a.id, "parent", b.id)
        a.dependencies.append(b.id)

        store.remove_requirement(b.spec_id)

        assert a.relationships == []
        assert a.dependencies == []
        assert len(store) == 1
        assert add("C").spec_id == "FR-003"

    def test_rejected_initial_edge_rolls_back(self, store):
        req = Requirement(title="Orphan", relationships=[Relationship(rel_type="references", target_id=uuid4())])
        with pytest.raises(NotFound):
            store.add_requirement(req)
        assert len(store) == 0

    def test_archive_and_filters(self, store, add):
        a = add("A", feature="Auth")
        add("B", "System", feature="Auth")
        add("C", feature="Billing")
        store.archive(a.id)

        assert [r.title for r in store.list_requirements(feature="Auth")] == ["B"]
        assert [r.title for r in store.list_requirements(feature="Auth", include_archived=True)] == ["A", "B"]
        assert [r.title for r in store.list_requirements(req_type="Functional")] == ["C"]
        assert [r.title for r in store.list_requirements(status="Draft")] == ["B", "C"]

    def test_duplicate_keys_in_loaded_data(self):
        data = ProjectData(requirements=[
            Requirement(title="A", spec_id="FR-001"),
            Requirement(title="B", spec_id="FR-001"),
        ])
        with pytest.raises(DuplicateAlternateKey):
            RecordStore(data)


class TestTypeDefinitions:
    """Test guarded edits and removal of type definitions."""

    @pytest.fixture
    def incident(self, store):
        return store.add_type_definition(TypeDefinition(name="Incident", prefix="INC", statuses=["Open", "Closed"]))

    @pytest.fixture
    def risk(self, store):
        return store.add_type_definition(TypeDefinition(
            name="Risk", prefix="RISK", statuses=list(STANDARD_STATUSES),
            fields=[CustomFieldDefinition(name="impact")],
        ))

    def test_unused_type_removed(self, store, incident):
        store.remove_type_definition("Incident")
        with pytest.raises(NotFound):
            store.get_type_definition("Incident")

    def test_held_status_blocks_removal(self, store, add, incident):
        req = add("Outage", "Incident")
        assert req.spec_id == "INC-001"

        with pytest.raises(StatusInUse) as exc_info:
            store.remove_type_definition("Incident")
        assert exc_info.value.value == "Open"
        assert exc_info.value.record_ids == [req.id]

    def test_field_value_blocks_removal(self, store, add, risk):
        add("Vendor lock-in", "Risk", custom_fields={"impact": "High"})
        with pytest.raises(FieldInUse) as exc_info:
            store.remove_type_definition("Risk")
        assert exc_info.value.value == "impact"

    def test_record_blocks_removal(self, store, add, risk):
        add("Vendor lock-in", "Risk")
        with pytest.raises(TypeInUse):
            store.remove_type_definition("Risk")

    def test_edit_cannot_drop_held_status(self, store, add, incident):
        add("Outage", "Incident")
        with pytest.raises(StatusInUse):
            store.edit_type_definition("Incident", statuses=["Closed"])

        store.edit_type_definition("Incident", statuses=["Open", "Resolved"])
        assert store.get_type_definition("Incident").statuses == ["Open", "Resolved"]

    def test_edit_cannot_drop_held_standard_status(self, store, add):
        req = add("Login")

        with pytest.raises(StatusInUse) as exc_info:
            store.edit_type_definition("Functional", statuses=["Approved", "Completed", "Rejected"])

        assert exc_info.value.value == "Draft"
        assert exc_info.value.record_ids == [req.id]
        assert store.get_type_definition("Functional").statuses == STANDARD_STATUSES

    def test_dropping_unheld_standard_status_keeps_record_status(self, store, add):
        req = add("Login")
        store.update_requirement(req.id, status="Approved")

        store.edit_type_definition("Functional", statuses=["Draft", "Approved", "Completed"])
        assert req.custom_status == "Approved"

        store.update_requirement(req.id, title="Sign in")
        assert req.effective_status == "Approved"

    def test_types_cannot_be_renamed(self, store, incident):
        with pytest.raises(InvalidDefinition):
            store.edit_type_definition("Incident", name="Problem")

    def test_duplicate_type(self, store):
        with pytest.raises(DefinitionExists):
            store.add_type_definition(TypeDefinition(name="Bug", prefix="DEFECT", statuses=["Open"]))

    def test_unused_builtin_type_removed(self, store):
        store.remove_type_definition("Spike")
        assert all(t.name != "Spike" for t in store.data.type_definitions)


class TestRelationshipDefinitions:
    """Test adding, editing and removing relationship kinds."""

    def test_add_with_created_inverse(self, store, add):
        store.add_relationship_definition(
            RelationshipDefinition(name="implements", inverse="implemented_by", cardinality="many_to_one"),
            create_inverse=True,
        )
        mirror = store.get_relationship_definition("implemented-by")
        assert mirror.inverse == "implements"
        assert mirror.cardinality.value == "one_to_many"

        a, b = add("A"), add("B")
        store.add_relationship(a.id, "implements", b.id)
        assert b.has_relationship("implemented-by", a.id)

    def test_missing_inverse_rejected(self, store):
        with pytest.raises(InvalidDefinition):
            store.add_relationship_definition(RelationshipDefinition(name="blocks", inverse="blocked-by"))

    def test_symmetric_with_inverse_rejected(self, store):
        with pytest.raises(InvalidDefinition):
            store.add_relationship_definition(
                RelationshipDefinition(name="peer", symmetric=True, inverse="references")
            )

    def test_unknown_type_in_constraint(self, store):
        with pytest.raises(InvalidDefinition):
            store.add_relationship_definition(RelationshipDefinition(name="covers", source_types=["Widget"]))

    def test_builtin_cannot_take_new_inverse(self, store):
        with pytest.raises(DefinitionProtected):
            store.add_relationship_definition(RelationshipDefinition(name="referenced-by", inverse="references"))

    def test_duplicate_name(self, store):
        with pytest.raises(DefinitionExists):
            store.add_relationship_definition(RelationshipDefinition(name="Parent"))

    def test_builtin_structure_is_protected(self, store):
        with pytest.raises(DefinitionProtected):
            store.edit_relationship_definition("parent", cardinality="many_to_many")
        with pytest.raises(DefinitionProtected):
            store.remove_relationship_definition("parent")

        store.edit_relationship_definition("parent", display_name="Contains", color="#000000")
        assert store.get_relationship_definition("parent").display_name == "Contains"

    def test_kinds_cannot_be_renamed(self, store):
        with pytest.raises(InvalidDefinition):
            store.edit_relationship_definition("references", name="mentions")
        with pytest.raises(InvalidDefinition):
            store.edit_relationship_definition("parent", built_in=False)

    def test_changing_inverse_rewires_pair(self, store, add):
        store.add_relationship_definition(
            RelationshipDefinition(name="blocks", inverse="blocked-by"), create_inverse=True
        )
        store.add_relationship_definition(RelationshipDefinition(name="informs"))

        store.edit_relationship_definition("blocks", inverse="informs")

        assert store.get_relationship_definition("informs").inverse == "blocks"
        assert store.get_relationship_definition("blocked-by").inverse is None

        a, b = add("A"), add("B")
        store.add_relationship(a.id, "blocks", b.id)
        assert b.has_relationship("informs", a.id)
        store.remove_relationship(b.id, "informs", a.id)
        assert not a.has_relationship("blocks", b.id)

    def test_inverse_already_paired_rejected(self, store):
        store.add_relationship_definition(
            RelationshipDefinition(name="blocks", inverse="blocked-by"), create_inverse=True
        )
        store.add_relationship_definition(RelationshipDefinition(name="informs"))

        with pytest.raises(InvalidDefinition):
            store.edit_relationship_definition("informs", inverse="blocked-by")
        with pytest.raises(DefinitionProtected):
            store.edit_relationship_definition("informs", inverse="references")
        assert store.get_relationship_definition("informs").inverse is None

    def test_cardinality_edit_flips_inverse(self, store, add):
        store.add_relationship_definition(
            RelationshipDefinition(name="owns", inverse="owned-by"), create_inverse=True
        )

        store.edit_relationship_definition("owns", cardinality="one_to_many")

        assert store.get_relationship_definition("owned-by").cardinality == Cardinality.MANY_TO_ONE
        first, second, owned = add("First"), add("Second"), add("Owned")
        store.add_relationship(first.id, "owns", owned.id)
        with pytest.raises(CardinalityExceeded):
            store.add_relationship(owned.id, "owned-by", second.id)

    def test_remove_custom_keeps_edges(self, store, add):
        store.add_relationship_definition(
            RelationshipDefinition(name="blocks", inverse="blocked-by"), create_inverse=True
        )
        a, b = add("A"), add("B")
        store.add_relationship(a.id, "blocks", b.id)

        store.remove_relationship_definition("blocks")

        assert store.get_relationship_definition("blocked-by").inverse is None
        assert a.has_relationship("blocks", b.id)
        assert b.has_relationship("blocked-by", a.id)


class TestExtras:
    """Test comments, users, features and statistics."""

    def test_comment_threads(self, store, add):
        req = add("Login")
        root = store.add_comment(req.id, "alice", "Which provider?")
        reply = store.add_comment(req.id, "bob", "SAML", parent_id=root.id)

        assert req.replies_to(root.id) == [reply]
        with pytest.raises(NotFound):
            store.add_comment(req.id, "bob", "Lost", parent_id=uuid4())

    def test_reactions_toggle(self, store, add):
        req = add("Login")
        comment = store.add_comment(req.id, "alice", "Done?")

        store.add_reaction(req.id, comment.id, "resolved", "bob")
        assert [r.reaction for r in comment.reactions] == ["resolved"]
        store.add_reaction(req.id, comment.id, "resolved", "bob")
        assert comment.reactions == []

        with pytest.raises(NotFound):
            store.add_reaction(req.id, comment.id, "party", "bob")

    def test_users(self, store, add):
        alice = store.add_user("Alice", "alice", "alice@example.com")
        assert store.get_user("alice") is alice
        assert store.get_user("$USER-001") is alice
        with pytest.raises(DefinitionExists):
            store.add_user("Alice Two", "alice")

        req = add("Change", "ChangeRequest", custom_fields={"requested_by": "alice"})
        assert req.custom_fields["impact"] == "Medium"
        with pytest.raises(FieldValidationError):
            add("Change", "ChangeRequest", custom_fields={"requested_by": "ghost"})

    def test_features_are_numbered(self, store):
        auth = store.add_feature("Authentication", "auth")
        billing = store.add_feature("Billing", "BILL")

        assert (auth.number, auth.prefix) == (1, "AUTH")
        assert billing.number == 2
        with pytest.raises(DefinitionExists):
            store.add_feature("Billing", "PAY")
        with pytest.raises(InvalidPrefix):
            store.add_feature("Reports", "9REP")

    def test_urls(self, store, add):
        req = add("Login")
        link = store.add_url(req.id, "https://example.com/rfc", title="RFC", added_by="alice")
        assert req.urls == [link]

    def test_stats(self, populated):
        stats = populated.stats()
        assert stats["total"] == 3
        assert stats["by_type"] == {"Functional": 2, "System": 1}
        assert stats["relationships"] == 4
        assert stats["flagged_relationships"] == 0
