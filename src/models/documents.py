"""Mutable documents stored as LRS blobs.

- UserProfile lives in the agent-profile namespace (one per agent).
- Every other entity is a StateDocument stored in the activity-state
  namespace under its owner's agent key.

Documents accept unknown keys so shallow-merge patches with ad hoc fields
survive a round trip.
"""

from datetime import datetime
from enum import StrEnum
from typing import ClassVar

from pydantic import Field

from src.models.common import (
    DocumentStatus,
    EntityType,
    PortalBase,
    UserRole,
    new_entity_id,
    utc_now,
)


# ---------------------------------------------------------------------------
# Base document
# ---------------------------------------------------------------------------


class StateDocument(PortalBase):
    """Common envelope for every owned entity."""

    model_config = {"extra": "allow"}

    entity_type: ClassVar[EntityType]
    state_id: ClassVar[str]
    # Wire names that may never change after create.
    immutable_fields: ClassVar[frozenset[str]] = frozenset({"id", "createdBy", "createdAt"})

    id: str = Field(default_factory=new_entity_id)
    version: int = Field(default=0, ge=0)
    status: DocumentStatus = DocumentStatus.ACTIVE
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None
    deleted_by: str | None = None

    @property
    def is_deleted(self) -> bool:
        return self.status == DocumentStatus.DELETED


# ---------------------------------------------------------------------------
# Research project (RIDE-I)
# ---------------------------------------------------------------------------


class RideIPhase(StrEnum):
    """Research phases, in order."""

    RESOURCE = "resource"
    INFORMATION = "information"
    DECISIONS = "decisions"
    EXPERIENCE = "experience"
    IMPLEMENTATION = "implementation"


class PhaseStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class PhaseState(PortalBase):
    status: PhaseStatus = PhaseStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    completion_notes: str | None = None
    outputs: list[str] = Field(default_factory=list)


def initial_phases() -> dict[str, PhaseState]:
    phases = {phase.value: PhaseState() for phase in RideIPhase}
    phases[RideIPhase.RESOURCE.value] = PhaseState(
        status=PhaseStatus.IN_PROGRESS, started_at=utc_now(),
    )
    return phases


class CollaboratorRole(StrEnum):
    VIEWER = "viewer"
    COLLABORATOR = "collaborator"
    EDITOR = "editor"
    MANAGER = "manager"


class Collaborator(PortalBase):
    """A member of a project's collaborator list."""

    email: str
    name: str | None = None
    role: CollaboratorRole = CollaboratorRole.VIEWER
    permissions: list[str] = Field(default_factory=list)
    added_by: str | None = None
    joined_at: datetime | None = None
    status: str = "invited"


class ResearchProject(StateDocument):
    entity_type: ClassVar[EntityType] = EntityType.PROJECT
    state_id: ClassVar[str] = "project-data"

    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(default="", max_length=10_000)
    research_questions: list[str] = Field(default_factory=list)
    methodology: str = ""
    expected_outcomes: list[str] = Field(default_factory=list)
    timeline: dict = Field(default_factory=dict)
    collaborators: list[Collaborator] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    funding_source: str | None = None
    ethics_approval: str | None = None
    visibility: str = "private"
    current_phase: RideIPhase = RideIPhase.RESOURCE
    phases: dict[str, PhaseState] = Field(default_factory=initial_phases)

    def collaborator(self, email: str) -> Collaborator | None:
        email = email.lower()
        for collab in self.collaborators:
            if collab.email.lower() == email:
                return collab
        return None


# ---------------------------------------------------------------------------
# Invitation
# ---------------------------------------------------------------------------


class InvitationState(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class Invitation(StateDocument):
    """Invitation to join a project, owned by the invitee's agent key."""

    entity_type: ClassVar[EntityType] = EntityType.INVITATION
    state_id: ClassVar[str] = "invitation-data"

    invitation_batch_id: str | None = None
    project_id: str
    project_title: str = ""
    project_owner: str
    inviter_email: str
    inviter_name: str | None = None
    invitee_email: str
    role: CollaboratorRole = CollaboratorRole.COLLABORATOR
    permissions: list[str] = Field(default_factory=list)
    message: str = ""
    state: InvitationState = InvitationState.PENDING
    expires_at: datetime | None = None
    responded_at: datetime | None = None
    response_message: str | None = None


# ---------------------------------------------------------------------------
# Comment
# ---------------------------------------------------------------------------


class Comment(StateDocument):
    entity_type: ClassVar[EntityType] = EntityType.COMMENT
    state_id: ClassVar[str] = "comment-data"
    immutable_fields: ClassVar[frozenset[str]] = frozenset(
        {"id", "createdBy", "createdAt", "author", "targetType", "targetId"}
    )

    target_type: str = Field(..., min_length=1)
    target_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=20_000)
    author: str
    author_name: str | None = None
    parent_comment_id: str | None = None
    mentions: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Share record
# ---------------------------------------------------------------------------


class ShareRecord(StateDocument):
    entity_type: ClassVar[EntityType] = EntityType.SHARE
    state_id: ClassVar[str] = "share-data"
    immutable_fields: ClassVar[frozenset[str]] = frozenset(
        {"id", "createdBy", "createdAt", "sharedBy", "resourceType", "resourceId"}
    )

    resource_type: str = Field(..., min_length=1)
    resource_id: str = Field(..., min_length=1)
    shared_by: str
    recipients: list[str] = Field(..., min_length=1)
    message: str = ""
    permissions: list[str] = Field(default_factory=lambda: ["view"])
    shared_at: datetime | None = None


class ShareSummary(PortalBase):
    """Share as seen by a reader: the blob when resolvable, else the statement."""

    statement_id: str | None = None
    share_id: str | None = None
    resource_type: str | None = None
    resource_id: str
    shared_by: str
    recipients: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)
    shared_at: datetime | None = None
    direction: str = "received"
    record: ShareRecord | None = None


# ---------------------------------------------------------------------------
# User profile (agent-profile namespace)
# ---------------------------------------------------------------------------


class UserPreferences(PortalBase):
    theme: str = "light"
    language: str = "en"
    notifications: bool = True
    email_notifications: bool = True


class UserPermissions(PortalBase):
    can_create_projects: bool = True
    can_upload_files: bool = True
    can_collaborate: bool = True
    can_use_ai: bool = Field(default=True, alias="canUseAI")


class UserProfile(PortalBase):
    """Canonical, mutable user profile. Overwritten wholesale on every write."""

    model_config = {"extra": "allow"}

    immutable_fields: ClassVar[frozenset[str]] = frozenset(
        {"id", "email", "provider", "createdAt"}
    )

    id: str
    email: str
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    avatar: str | None = None
    provider: str = "google"
    role: UserRole = UserRole.STUDENT
    permissions: UserPermissions = Field(default_factory=UserPermissions)
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    login_count: int = Field(default=0, ge=0)
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LoginIdentity(PortalBase):
    """Verified identity handed over by the authentication layer."""

    id: str
    email: str
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    avatar: str | None = None
    provider: str = "google"


class Page(PortalBase):
    """A materialised, sorted listing sliced by offset/limit."""

    items: list
    total_count: int
    offset: int = 0
    limit: int | None = None
    partial: bool = False

    @property
    def has_more(self) -> bool:
        if self.limit is None:
            return False
        return self.total_count > self.offset + self.limit
