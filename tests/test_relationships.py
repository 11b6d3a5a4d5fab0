"""Tests for relationship validation, pairing and audit."""
from uuid import uuid4

import pytest

from reqgraph.errors import (
    CardinalityExceeded,
    CycleDetected,
    NotFound,
    RelationshipExists,
    SelfReference,
    TypeNotAllowed,
)
from reqgraph.models import Relationship, RelationshipDefinition


@pytest.fixture
def pair(add):
    return add("A"), add("B")


class TestPairing:
    """Test that inverse and symmetric edges are kept in pairs."""

    def test_parent_creates_child(self, store, pair):
        a, b = pair
        store.add_relationship(a.spec_id, "parent", b.spec_id)

        assert a.has_relationship("parent", b.id)
        assert b.has_relationship("child", a.id)

    def test_removing_either_side_removes_both(self, store, pair):
        a, b = pair
        store.add_relationship(a.id, "parent", b.id)
        store.remove_relationship(b.id, "child", a.id)

        assert a.relationships == []
        assert b.relationships == []

    def test_symmetric_kind_mirrors_itself(self, store, pair):
        a, b = pair
        store.add_relationship(a.id, "duplicate", b.id)
        assert b.has_relationship("duplicate", a.id)

        store.remove_relationship(b.id, "duplicate", a.id)
        assert not a.has_relationship("duplicate", b.id)

    def test_kind_without_inverse_is_one_sided(self, store, pair):
        a, b = pair
        store.add_relationship(a.id, "references", b.id)
        assert a.has_relationship("references", b.id)
        assert b.relationships == []

    def test_kind_names_are_normalized(self, store, pair):
        a, b = pair
        result = store.add_relationship(a.id, "Verified_By", b.id)
        assert result.kind == "verified-by"
        assert b.has_relationship("verifies", a.id)

    def test_duplicate_edge_rejected(self, store, pair):
        a, b = pair
        store.add_relationship(a.id, "references", b.id)
        with pytest.raises(RelationshipExists):
            store.add_relationship(a.id, "references", b.id)

    def test_unknown_kind(self, store, pair):
        a, b = pair
        with pytest.raises(NotFound) as exc_info:
            store.add_relationship(a.id, "blocks", b.id)
        assert exc_info.value.kind == "Relationship definition"

    def test_removing_missing_edge(self, store, pair):
        a, b = pair
        with pytest.raises(NotFound):
            store.remove_relationship(a.id, "parent", b.id)


class TestCycles:
    """Test cycle avoidance on hierarchical kinds."""

    def test_direct_parent_cycle_rejected(self, store, pair):
        a, b = pair
        store.add_relationship(a.id, "parent", b.id)

        with pytest.raises(CycleDetected) as exc_info:
            store.add_relationship(b.id, "parent", a.id)
        assert exc_info.value.path == ["FR-001", "FR-002"]
        assert not b.has_relationship("parent", a.id)

    def test_longer_chain_rejected(self, store, add):
        a, b, c = add("A"), add("B"), add("C")
        store.add_relationship(a.id, "parent", b.id)
        store.add_relationship(b.id, "parent", c.id)

        with pytest.raises(CycleDetected) as exc_info:
            store.add_relationship(c.id, "parent", a.id)
        assert exc_info.value.path == ["FR-001", "FR-002", "FR-003"]

    def test_cycle_through_inverse_kind(self, store, pair):
        a, b = pair
        store.add_relationship(a.id, "parent", b.id)
        with pytest.raises(CycleDetected):
            store.add_relationship(a.id, "child", b.id)

    def test_non_hierarchical_kind_allows_loops(self, store, pair):
        a, b = pair
        store.add_relationship(a.id, "references", b.id)
        assert store.add_relationship(b.id, "references", a.id).ok


class TestConstraints:
    """Test type, cardinality and self-reference rules."""

    def test_type_constraint_on_builtin_kind(self, store, add):
        store.edit_relationship_definition("verifies", source_types=["Functional"], target_types=["System"])
        user_req = add("Persona", "User")
        functional = add("Login")
        system = add("Auth service", "System")

        with pytest.raises(TypeNotAllowed) as exc_info:
            store.add_relationship(user_req.id, "verifies", system.id)
        assert exc_info.value.side == "source"
        assert exc_info.value.record_type == "User"
        assert exc_info.value.allowed == ["Functional"]

        with pytest.raises(TypeNotAllowed) as exc_info:
            store.add_relationship(functional.id, "verifies", user_req.id)
        assert exc_info.value.side == "target"

        store.add_relationship(functional.id, "verifies", system.id)
        assert system.has_relationship("verified-by", functional.id)

    def test_child_has_one_parent(self, store, add):
        a, b, c = add("A"), add("B"), add("C")
        store.add_relationship(c.id, "child", a.id)

        with pytest.raises(CardinalityExceeded) as exc_info:
            store.add_relationship(c.id, "child", b.id)
        assert exc_info.value.side == "source"
        assert exc_info.value.cardinality == "many_to_one"

    def test_parent_cannot_share_a_child(self, store, add):
        a, b, c = add("A"), add("B"), add("C")
        store.add_relationship(a.id, "parent", c.id)

        with pytest.raises(CardinalityExceeded) as exc_info:
            store.add_relationship(b.id, "parent", c.id)
        assert exc_info.value.side == "target"

    def test_self_reference_rejected(self, store, add):
        a = add("A")
        with pytest.raises(SelfReference):
            store.add_relationship(a.id, "references", a.id)

    def test_self_reference_allowed_by_definition(self, store, add):
        store.add_relationship_definition(RelationshipDefinition(name="relates-to", symmetric=True, allow_self=True))
        a = add("A")
        store.add_relationship(a.id, "relates-to", a.id)
        assert a.relationships_of("relates-to") == [Relationship(rel_type="relates-to", target_id=a.id)]

    def test_validate_does_not_mutate(self, store, pair):
        a, b = pair
        result = store.relationships.validate(a.id, "parent", b.id)
        assert result.ok
        assert a.relationships == []


class TestAdvisory:
    """Test advisory mode and the audit pass."""

    def test_advisory_keeps_flagged_edge(self, store, pair):
        a, b = pair
        store.add_relationship(a.id, "parent", b.id)

        result = store.add_relationship(b.id, "parent", a.id, advisory=True)

        assert result.code == "cycle_detected"
        assert b.relationships_of("parent")[0].flag == "cycle_detected"
        assert a.relationships_of("child")[0].flag == "cycle_detected"

    def test_advisory_never_duplicates(self, store, pair):
        a, b = pair
        store.add_relationship(a.id, "references", b.id)
        with pytest.raises(RelationshipExists):
            store.add_relationship(a.id, "references", b.id, advisory=True)

    def test_audit_flags_and_clears(self, store, pair):
        a, b = pair
        store.add_relationship(a.id, "references", b.id)
        a.relationships[0].flag = "stale"
        a.relationships.append(Relationship(rel_type="references", target_id=a.id))
        b.relationships.append(Relationship(rel_type="references", target_id=uuid4()))

        violations = store.relationships.audit()

        assert sorted(v.code for v in violations) == ["not_found", "self_reference"]
        assert a.relationships[0].flag is None
        assert a.relationships[1].flag == "self_reference"
        assert store.relationships.clear_flags() == 2
        assert all(e.flag is None for r in store.requirements for e in r.relationships)

    def test_audit_accepts_valid_existing_edges(self, populated):
        assert populated.relationships.audit() == []

    def test_related_skips_dangling_edges(self, store, pair):
        a, b = pair
        store.add_relationship(a.id, "references", b.id)
        a.relationships.append(Relationship(rel_type="references", target_id=uuid4()))

        related = store.relationships.related(a.id)
        assert related == [("references", b)]
