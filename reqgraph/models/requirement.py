"""
Requirement data models.

A requirement is the record stored by reqgraph. It is identified by an
immutable UUID and, once added to a store, by a human-facing ``spec_id``
(e.g. ``FR-001``) assigned by the identifier allocator.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Set
from uuid import UUID, uuid4
from pydantic import BaseModel, Field, field_serializer


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class RequirementStatus(str, Enum):
    """Built-in requirement status."""
    DRAFT = "Draft"
    APPROVED = "Approved"
    COMPLETED = "Completed"
    REJECTED = "Rejected"


class RequirementPriority(str, Enum):
    """Requirement priority, highest first."""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def rank(self) -> int:
        return list(RequirementPriority).index(self)


class Relationship(BaseModel):
    """A typed edge owned by the source requirement."""
    rel_type: str = Field(..., description="Relationship definition name, e.g. parent")
    target_id: UUID = Field(..., description="Target requirement ID")
    flag: Optional[str] = Field(None, description="Error code if the edge was kept by advisory validation")


class CommentReaction(BaseModel):
    """A named reaction on a comment."""
    reaction: str = Field(..., description="Reaction definition name")
    author: str = Field(..., description="Who reacted")
    added_at: datetime = Field(default_factory=utcnow, description="When the reaction was added")


class Comment(BaseModel):
    """A threaded comment on a requirement."""
    id: UUID = Field(default_factory=uuid4, description="Comment ID")
    author: str = Field(..., description="Comment author")
    content: str = Field(..., description="Comment text")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")
    modified_at: Optional[datetime] = Field(None, description="Last edit timestamp")
    parent_id: Optional[UUID] = Field(None, description="Parent comment for replies")
    reactions: List[CommentReaction] = Field(default_factory=list, description="Reactions")


class FieldChange(BaseModel):
    """A single field change inside a history entry."""
    field_name: str = Field(..., description="Name of the changed field")
    old_value: str = Field("", description="Value before the change")
    new_value: str = Field("", description="Value after the change")


class HistoryEntry(BaseModel):
    """One update of a requirement, possibly touching several fields."""
    id: UUID = Field(default_factory=uuid4, description="History entry ID")
    author: str = Field(..., description="Actor that made the change")
    timestamp: datetime = Field(default_factory=utcnow, description="When the change was made")
    changes: List[FieldChange] = Field(default_factory=list, description="Field changes")


class UrlLink(BaseModel):
    """An external URL reference."""
    id: UUID = Field(default_factory=uuid4, description="Link ID")
    url: str = Field(..., min_length=1, description="URL")
    title: str = Field("", description="Display title")
    description: str = Field("", description="Optional description")
    added_at: datetime = Field(default_factory=utcnow, description="When the link was added")
    added_by: Optional[str] = Field(None, description="Who added the link")


class User(BaseModel):
    """A person who can own requirements."""
    id: UUID = Field(default_factory=uuid4, description="User ID")
    spec_id: Optional[str] = Field(None, description="Meta identifier, format: $USER-NNN")
    name: str = Field(..., min_length=1, description="Display name")
    email: str = Field("", description="Email address")
    handle: str = Field(..., min_length=1, description="Unique handle")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")
    archived: bool = Field(False, description="Whether the user is archived")


class Requirement(BaseModel):
    """A single requirement."""
    id: UUID = Field(default_factory=uuid4, description="Internal identifier, never reused")
    spec_id: Optional[str] = Field(None, description="Human-facing alternate key, e.g. FR-001")
    prefix_override: Optional[str] = Field(None, description="Per-requirement ID prefix override")
    title: str = Field(..., description="Short title")
    description: str = Field("", description="Detailed description")
    status: RequirementStatus = Field(RequirementStatus.DRAFT, description="Built-in status")
    custom_status: Optional[str] = Field(None, description="Status from the type's status list")
    priority: RequirementPriority = Field(RequirementPriority.MEDIUM, description="Priority")
    owner: str = Field("", description="Responsible person")
    feature: str = Field("Uncategorized", description="Grouping feature")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")
    created_by: Optional[str] = Field(None, description="Who created the requirement")
    modified_at: datetime = Field(default_factory=utcnow, description="Last modification timestamp")
    req_type: str = Field("Functional", description="Type definition name")
    dependencies: List[UUID] = Field(default_factory=list, description="IDs this requirement depends on")
    tags: Set[str] = Field(default_factory=set, description="Labels")
    relationships: List[Relationship] = Field(default_factory=list, description="Outgoing relationships")
    comments: List[Comment] = Field(default_factory=list, description="Threaded comments")
    history: List[HistoryEntry] = Field(default_factory=list, description="Change history, oldest first")
    archived: bool = Field(False, description="Whether the requirement is archived")
    custom_fields: Dict[str, str] = Field(default_factory=dict, description="Type-specific field values")
    urls: List[UrlLink] = Field(default_factory=list, description="External references")

    @field_serializer("tags")
    def _serialize_tags(self, tags: Set[str]) -> List[str]:
        return sorted(tags)

    @property
    def effective_status(self) -> str:
        """The status shown to users: the custom status if set, else the built-in one."""
        return self.custom_status if self.custom_status is not None else self.status.value

    @property
    def display_id(self) -> str:
        return self.spec_id or str(self.id)

    def relationships_of(self, rel_type: str) -> List[Relationship]:
        """Get outgoing relationships of one kind."""
        return [r for r in self.relationships if r.rel_type == rel_type]

    def has_relationship(self, rel_type: str, target_id: UUID) -> bool:
        return any(r.rel_type == rel_type and r.target_id == target_id for r in self.relationships)

    def get_comment(self, comment_id: UUID) -> Optional[Comment]:
        for comment in self.comments:
            if comment.id == comment_id:
                return comment
        return None

    def replies_to(self, comment_id: UUID) -> List[Comment]:
        return [c for c in self.comments if c.parent_id == comment_id]
