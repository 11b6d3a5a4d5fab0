"""Data models for reqgraph."""

from reqgraph.models.requirement import (
    Requirement,
    RequirementStatus,
    RequirementPriority,
    Relationship,
    Comment,
    CommentReaction,
    HistoryEntry,
    FieldChange,
    UrlLink,
    User,
)
from reqgraph.models.definitions import (
    Cardinality,
    RelationshipDefinition,
    CustomFieldType,
    CustomFieldDefinition,
    TypeDefinition,
    FeatureDefinition,
    ReactionDefinition,
    STANDARD_STATUSES,
    default_relationship_definitions,
    default_type_definitions,
    default_reaction_definitions,
)
from reqgraph.models.project import (
    IdFormat,
    NumberingStrategy,
    IdConfiguration,
    ProjectData,
    CURRENT_DOCUMENT_VERSION,
    META_PREFIX_USER,
)

__all__ = [
    # Requirement models
    "Requirement",
    "RequirementStatus",
    "RequirementPriority",
    "Relationship",
    "Comment",
    "CommentReaction",
    "HistoryEntry",
    "FieldChange",
    "UrlLink",
    "User",
    # Definition models
    "Cardinality",
    "RelationshipDefinition",
    "CustomFieldType",
    "CustomFieldDefinition",
    "TypeDefinition",
    "FeatureDefinition",
    "ReactionDefinition",
    "STANDARD_STATUSES",
    "default_relationship_definitions",
    "default_type_definitions",
    "default_reaction_definitions",
    # Project models
    "IdFormat",
    "NumberingStrategy",
    "IdConfiguration",
    "ProjectData",
    "CURRENT_DOCUMENT_VERSION",
    "META_PREFIX_USER",
]
