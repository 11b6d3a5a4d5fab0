"""
Project data models.

``ProjectData`` is the persisted aggregate shared by every backend: the
requirements, the users, the identifier configuration with its counters, and
all definition lists.
"""

from enum import Enum
from typing import List, Dict
from pydantic import BaseModel, Field

from reqgraph.models.requirement import Requirement, User
from reqgraph.models.definitions import (
    FeatureDefinition,
    ReactionDefinition,
    RelationshipDefinition,
    TypeDefinition,
    default_reaction_definitions,
    default_relationship_definitions,
    default_type_definitions,
)

# Version of the YAML document layout written by this release.
CURRENT_DOCUMENT_VERSION = 2

# Prefix of meta identifiers assigned to users ($USER-001).
META_PREFIX_USER = "$USER"


class IdFormat(str, Enum):
    """Layout of alternate keys."""
    SINGLE_LEVEL = "single_level"
    TWO_LEVEL = "two_level"

    @classmethod
    def parse(cls, value: str) -> "IdFormat":
        aliases = {"single": "single_level", "1": "single_level", "two": "two_level", "2": "two_level"}
        normalized = value.strip().lower().replace("-", "_")
        return cls(aliases.get(normalized, normalized))


class NumberingStrategy(str, Enum):
    """Which counter an allocation draws from."""
    GLOBAL = "global"
    PER_PREFIX = "per_prefix"
    PER_FEATURE_TYPE = "per_feature_type"

    @classmethod
    def parse(cls, value: str) -> "NumberingStrategy":
        aliases = {"prefix": "per_prefix", "feature_type": "per_feature_type"}
        normalized = value.strip().lower().replace("-", "_")
        return cls(aliases.get(normalized, normalized))


class IdConfiguration(BaseModel):
    """Project-level alternate key configuration."""
    format: IdFormat = Field(IdFormat.SINGLE_LEVEL, description="PREFIX-NNN or FEATURE-TYPE-NNN")
    numbering: NumberingStrategy = Field(NumberingStrategy.GLOBAL, description="Counter selection")
    digits: int = Field(3, ge=1, le=6, description="Zero-padded width of the number")


class ProjectData(BaseModel):
    """
    The complete persisted state of one requirements project.

    Counters (``next_spec_number``, ``prefix_counters``, ``meta_counters``)
    only move forward and are mutated by the identifier allocator alone.
    """
    schema_version: int = Field(CURRENT_DOCUMENT_VERSION, description="Document layout version")
    name: str = Field("", description="Project name")
    title: str = Field("", description="Project title")
    description: str = Field("", description="Project description")
    requirements: List[Requirement] = Field(default_factory=list, description="All requirements")
    users: List[User] = Field(default_factory=list, description="All users")
    id_config: IdConfiguration = Field(default_factory=IdConfiguration, description="Alternate key policy")
    features: List[FeatureDefinition] = Field(default_factory=list, description="Feature definitions")
    next_feature_number: int = Field(1, ge=1, description="Next feature number")
    next_spec_number: int = Field(1, ge=1, description="Global alternate key counter")
    prefix_counters: Dict[str, int] = Field(default_factory=dict, description="Per-prefix counters")
    relationship_definitions: List[RelationshipDefinition] = Field(
        default_factory=default_relationship_definitions, description="Relationship kinds"
    )
    reaction_definitions: List[ReactionDefinition] = Field(
        default_factory=default_reaction_definitions, description="Comment reactions"
    )
    meta_counters: Dict[str, int] = Field(default_factory=dict, description="Counters for meta identifiers")
    type_definitions: List[TypeDefinition] = Field(
        default_factory=default_type_definitions, description="Requirement types"
    )
    allowed_prefixes: List[str] = Field(default_factory=list, description="Prefixes allowed as overrides")
    restrict_prefixes: bool = Field(False, description="Only allow prefixes from allowed_prefixes")
