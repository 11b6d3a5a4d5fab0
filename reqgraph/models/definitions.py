"""
Definition data models.

Relationship, type, feature and reaction definitions are project-level
configuration entities stored alongside the requirements. The ``default_*``
functions return the built-in sets a new project starts with.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator
import re

from reqgraph.models.requirement import RequirementStatus, utcnow

PREFIX_PATTERN = r"^[A-Z][A-Z0-9_]*$"

# Fields a built-in relationship definition may not change.
STRUCTURAL_FIELDS = ("inverse", "symmetric", "cardinality", "hierarchical")


class Cardinality(str, Enum):
    """How many edges of a kind may leave a source or reach a target."""
    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_ONE = "many_to_one"
    MANY_TO_MANY = "many_to_many"

    @property
    def limits_source(self) -> bool:
        """A source may hold at most one edge of the kind."""
        return self in (Cardinality.ONE_TO_ONE, Cardinality.MANY_TO_ONE)

    @property
    def limits_target(self) -> bool:
        """A target may be reached by at most one edge of the kind."""
        return self in (Cardinality.ONE_TO_ONE, Cardinality.ONE_TO_MANY)

    def flipped(self) -> "Cardinality":
        """Cardinality of the inverse kind."""
        if self == Cardinality.ONE_TO_MANY:
            return Cardinality.MANY_TO_ONE
        if self == Cardinality.MANY_TO_ONE:
            return Cardinality.ONE_TO_MANY
        return self

    @classmethod
    def parse(cls, value: str) -> "Cardinality":
        normalized = value.strip().lower().replace("-", "_").replace(":", "_to_")
        aliases = {"1_to_1": "one_to_one", "1_to_n": "one_to_many", "n_to_1": "many_to_one", "n_to_n": "many_to_many"}
        return cls(aliases.get(normalized, normalized))


class RelationshipDefinition(BaseModel):
    """A named kind of relationship between requirements."""
    name: str = Field(..., min_length=1, description="Kind name, lowercase, e.g. parent")
    display_name: str = Field("", description="Human-readable name")
    description: str = Field("", description="What the relationship means")
    inverse: Optional[str] = Field(None, description="Name of the inverse kind")
    symmetric: bool = Field(False, description="A->B implies B->A of the same kind")
    cardinality: Cardinality = Field(Cardinality.MANY_TO_MANY, description="Edge count limits")
    source_types: List[str] = Field(default_factory=list, description="Allowed source types (empty = any)")
    target_types: List[str] = Field(default_factory=list, description="Allowed target types (empty = any)")
    built_in: bool = Field(False, description="Built-in kinds cannot be removed")
    hierarchical: bool = Field(False, description="Subject to cycle avoidance")
    allow_self: bool = Field(False, description="Whether a requirement may point at itself")
    color: Optional[str] = Field(None, description="Display color")
    icon: Optional[str] = Field(None, description="Display icon")

    @field_validator("name", "inverse")
    @classmethod
    def normalize_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip().lower().replace("_", "-")

    def allows_source(self, req_type: str) -> bool:
        return not self.source_types or req_type in self.source_types

    def allows_target(self, req_type: str) -> bool:
        return not self.target_types or req_type in self.target_types

    def mirrored(self) -> "RelationshipDefinition":
        """Build the inverse definition of this one."""
        return RelationshipDefinition(
            name=self.inverse,
            display_name=self.inverse.replace("-", " ").title(),
            inverse=self.name,
            cardinality=self.cardinality.flipped(),
            source_types=list(self.target_types),
            target_types=list(self.source_types),
            hierarchical=self.hierarchical,
            allow_self=self.allow_self,
            color=self.color,
        )


class CustomFieldType(str, Enum):
    """Kinds of type-specific fields."""
    TEXT = "text"
    MULTILINE = "multiline"
    SELECT = "select"
    BOOLEAN = "boolean"
    DATE = "date"
    NUMBER = "number"
    REQUIREMENT = "requirement"
    USER = "user"


class CustomFieldDefinition(BaseModel):
    """An extra field carried by requirements of one type."""
    name: str = Field(..., min_length=1, description="Key in Requirement.custom_fields")
    label: str = Field("", description="Display label")
    field_type: CustomFieldType = Field(CustomFieldType.TEXT, description="Value kind")
    required: bool = Field(False, description="Whether a value is required")
    options: List[str] = Field(default_factory=list, description="Choices for select fields")
    default_value: Optional[str] = Field(None, description="Value used when none is given")
    description: str = Field("", description="Help text")
    order: int = Field(0, description="Display order")


class TypeDefinition(BaseModel):
    """A configurable requirement type."""
    name: str = Field(..., min_length=1, description="Type name, e.g. Functional")
    display_name: str = Field("", description="Human-readable name")
    description: str = Field("", description="What this type is for")
    prefix: str = Field(..., description="Identifier prefix, e.g. FR")
    statuses: List[str] = Field(..., min_length=1, description="Allowed statuses")
    fields: List[CustomFieldDefinition] = Field(default_factory=list, description="Extra fields")
    built_in: bool = Field(False, description="Whether this is a built-in type")
    color: Optional[str] = Field(None, description="Display color")

    @field_validator("prefix")
    @classmethod
    def validate_prefix_format(cls, v: str) -> str:
        v = v.strip().upper()
        if not re.match(PREFIX_PATTERN, v):
            raise ValueError(f"Invalid prefix format: {v}. Expected: uppercase letters, digits, underscore")
        return v

    def get_field(self, name: str) -> Optional[CustomFieldDefinition]:
        for field in self.fields:
            if field.name == name:
                return field
        return None

    @property
    def uses_standard_statuses(self) -> bool:
        return self.statuses == [s.value for s in RequirementStatus]


class FeatureDefinition(BaseModel):
    """A numbered feature grouping requirements."""
    number: int = Field(..., ge=1, description="Feature number")
    name: str = Field(..., min_length=1, description="Feature name")
    prefix: str = Field(..., description="Identifier prefix for two-level IDs")
    description: str = Field("", description="Feature description")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")

    @field_validator("prefix")
    @classmethod
    def validate_prefix_format(cls, v: str) -> str:
        v = v.strip().upper()
        if not re.match(PREFIX_PATTERN, v):
            raise ValueError(f"Invalid prefix format: {v}. Expected: uppercase letters, digits, underscore")
        return v


class ReactionDefinition(BaseModel):
    """A reaction that can be attached to comments."""
    name: str = Field(..., min_length=1, description="Reaction name")
    emoji: str = Field(..., description="Emoji shown for the reaction")
    label: str = Field("", description="Tooltip label")
    built_in: bool = Field(False, description="Whether this is a built-in reaction")


STANDARD_STATUSES = ["Draft", "Approved", "Completed", "Rejected"]


def default_relationship_definitions() -> List[RelationshipDefinition]:
    """Built-in relationship kinds."""
    return [
        RelationshipDefinition(
            name="parent", display_name="Parent", description="This requirement is the parent of the target",
            inverse="child", cardinality=Cardinality.ONE_TO_MANY, hierarchical=True, built_in=True,
            color="#4a90d9",
        ),
        RelationshipDefinition(
            name="child", display_name="Child", description="This requirement is a child of the target",
            inverse="parent", cardinality=Cardinality.MANY_TO_ONE, hierarchical=True, built_in=True,
            color="#4a90d9",
        ),
        RelationshipDefinition(
            name="verifies", display_name="Verifies", description="This requirement verifies the target",
            inverse="verified-by", built_in=True, color="#2e7d32",
        ),
        RelationshipDefinition(
            name="verified-by", display_name="Verified By", description="The target verifies this requirement",
            inverse="verifies", built_in=True, color="#2e7d32",
        ),
        RelationshipDefinition(
            name="duplicate", display_name="Duplicate", description="Both requirements describe the same thing",
            symmetric=True, built_in=True, color="#9e9e9e",
        ),
        RelationshipDefinition(
            name="references", display_name="References", description="General reference to the target",
            built_in=True, color="#757575",
        ),
    ]


def default_type_definitions() -> List[TypeDefinition]:
    """Built-in requirement types."""
    return [
        TypeDefinition(name="Functional", display_name="Functional", prefix="FR",
                       statuses=list(STANDARD_STATUSES), built_in=True),
        TypeDefinition(name="NonFunctional", display_name="Non-Functional", prefix="NFR",
                       statuses=list(STANDARD_STATUSES), built_in=True),
        TypeDefinition(name="System", display_name="System", prefix="SR",
                       statuses=list(STANDARD_STATUSES), built_in=True),
        TypeDefinition(name="User", display_name="User", prefix="UR",
                       statuses=list(STANDARD_STATUSES), built_in=True),
        TypeDefinition(
            name="ChangeRequest", display_name="Change Request", prefix="CR", built_in=True,
            statuses=["Submitted", "Under Review", "Approved", "Rejected", "Implemented"],
            fields=[
                CustomFieldDefinition(name="impact", label="Impact", field_type=CustomFieldType.SELECT,
                                      options=["Low", "Medium", "High"], default_value="Medium", order=1),
                CustomFieldDefinition(name="justification", label="Justification",
                                      field_type=CustomFieldType.MULTILINE, order=2),
                CustomFieldDefinition(name="requested_by", label="Requested By",
                                      field_type=CustomFieldType.USER, order=3),
            ],
        ),
        TypeDefinition(
            name="Bug", display_name="Bug", prefix="BUG", built_in=True,
            statuses=["New", "Confirmed", "In Progress", "Fixed", "Verified", "Closed", "Won't Fix"],
            fields=[
                CustomFieldDefinition(name="severity", label="Severity", field_type=CustomFieldType.SELECT,
                                      options=["Critical", "Major", "Minor", "Trivial"], required=True,
                                      default_value="Major", order=1),
                CustomFieldDefinition(name="steps_to_reproduce", label="Steps to Reproduce",
                                      field_type=CustomFieldType.MULTILINE, order=2),
                CustomFieldDefinition(name="found_in", label="Found In Version", order=3),
            ],
        ),
        TypeDefinition(name="Epic", display_name="Epic", prefix="EPIC",
                       statuses=list(STANDARD_STATUSES), built_in=True),
        TypeDefinition(
            name="Story", display_name="Story", prefix="STORY", built_in=True,
            statuses=list(STANDARD_STATUSES),
            fields=[
                CustomFieldDefinition(name="story_points", label="Story Points",
                                      field_type=CustomFieldType.NUMBER, order=1),
            ],
        ),
        TypeDefinition(name="Task", display_name="Task", prefix="TASK",
                       statuses=["To Do", "In Progress", "Done"], built_in=True),
        TypeDefinition(
            name="Spike", display_name="Spike", prefix="SPIKE", built_in=True,
            statuses=list(STANDARD_STATUSES),
            fields=[
                CustomFieldDefinition(name="timebox", label="Timebox (days)",
                                      field_type=CustomFieldType.NUMBER, order=1),
            ],
        ),
    ]


def default_reaction_definitions() -> List[ReactionDefinition]:
    """Built-in comment reactions."""
    return [
        ReactionDefinition(name="resolved", emoji="✅", label="Resolved", built_in=True),
        ReactionDefinition(name="rejected", emoji="❌", label="Rejected", built_in=True),
        ReactionDefinition(name="thumbs_up", emoji="\U0001f44d", label="Agree", built_in=True),
        ReactionDefinition(name="thumbs_down", emoji="\U0001f44e", label="Disagree", built_in=True),
        ReactionDefinition(name="question", emoji="❓", label="Question", built_in=True),
        ReactionDefinition(name="important", emoji="❗", label="Important", built_in=True),
    ]
