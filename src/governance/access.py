"""Role and project access rules.

The data layer itself enforces no authorization; handlers above it ask
AccessPolicy before calling a mapper. Rules:

- Role permissions: admin holds every permission; educator, researcher and
  student hold the fixed sets in ``ROLE_PERMISSIONS``.
- Project view: creator, any collaborator, admin.
- Project edit: creator, ``editor`` collaborator, admin.
- Invite: creator, ``manager``/``editor`` collaborator, admin.
- Manage collaborators: creator, ``manager`` collaborator, admin.
- Delete: creator, admin.

Deterministic — no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

import structlog

from src.errors import AccessDeniedError
from src.models.common import UserRole
from src.models.documents import CollaboratorRole, ResearchProject

logger = structlog.get_logger(__name__)


class Permission(StrEnum):
    ALL = "all"
    CREATE_PROJECT = "create_project"
    VIEW_ANALYTICS = "view_analytics"
    VIEW_OWN_ANALYTICS = "view_own_analytics"
    VIEW_ALL_PROJECTS = "view_all_projects"
    CREATE_ASSESSMENT = "create_assessment"
    SUBMIT_ASSESSMENT = "submit_assessment"
    MANAGE_STUDENTS = "manage_students"
    CREATE_CONTENT = "create_content"
    VIEW_CONTENT = "view_content"
    COLLABORATE = "collaborate"
    USE_AI = "use_ai"
    EXPORT_DATA = "export_data"


ROLE_PERMISSIONS: dict[UserRole, frozenset[Permission]] = {
    UserRole.ADMIN: frozenset({Permission.ALL}),
    UserRole.EDUCATOR: frozenset({
        Permission.VIEW_ANALYTICS,
        Permission.CREATE_ASSESSMENT,
        Permission.MANAGE_STUDENTS,
        Permission.CREATE_CONTENT,
        Permission.VIEW_ALL_PROJECTS,
        Permission.EXPORT_DATA,
    }),
    UserRole.RESEARCHER: frozenset({
        Permission.CREATE_PROJECT,
        Permission.VIEW_ANALYTICS,
        Permission.COLLABORATE,
        Permission.USE_AI,
        Permission.EXPORT_DATA,
    }),
    UserRole.STUDENT: frozenset({
        Permission.VIEW_OWN_ANALYTICS,
        Permission.SUBMIT_ASSESSMENT,
        Permission.COLLABORATE,
        Permission.USE_AI,
        Permission.VIEW_CONTENT,
    }),
}


class ProjectAction(StrEnum):
    VIEW = "view"
    EDIT = "edit"
    INVITE = "invite"
    MANAGE_COLLABORATORS = "manage_collaborators"
    DELETE = "delete"


# Collaborator roles granted each action, beyond the creator and admins.
_PROJECT_RULES: dict[ProjectAction, frozenset[CollaboratorRole]] = {
    ProjectAction.VIEW: frozenset(CollaboratorRole),
    ProjectAction.EDIT: frozenset({CollaboratorRole.EDITOR}),
    ProjectAction.INVITE: frozenset({CollaboratorRole.MANAGER, CollaboratorRole.EDITOR}),
    ProjectAction.MANAGE_COLLABORATORS: frozenset({CollaboratorRole.MANAGER}),
    ProjectAction.DELETE: frozenset(),
}


@dataclass
class AccessDecision:
    """Outcome of a single access check."""

    allowed: bool
    reason: str = ""


class AccessPolicy:
    """Evaluate role permissions and per-project actions."""

    def has_permission(self, role: UserRole | str, permission: Permission | str) -> bool:
        try:
            granted = ROLE_PERMISSIONS[UserRole(role)]
        except ValueError:
            return False
        return Permission.ALL in granted or permission in granted

    def decide(
        self,
        email: str,
        role: UserRole | str,
        project: ResearchProject,
        action: ProjectAction | str,
    ) -> AccessDecision:
        action = ProjectAction(action)
        email = email.lower()
        if role == UserRole.ADMIN:
            return AccessDecision(allowed=True, reason="admin")
        if project.created_by and project.created_by.lower() == email:
            return AccessDecision(allowed=True, reason="creator")
        collab = project.collaborator(email)
        if collab is not None and collab.role in _PROJECT_RULES[action]:
            return AccessDecision(allowed=True, reason=f"collaborator:{collab.role.value}")
        return AccessDecision(
            allowed=False,
            reason=f"{email} may not {action.value} project {project.id}",
        )

    def can_view(self, email: str, role: UserRole | str, project: ResearchProject) -> bool:
        return self.decide(email, role, project, ProjectAction.VIEW).allowed

    def can_edit(self, email: str, role: UserRole | str, project: ResearchProject) -> bool:
        return self.decide(email, role, project, ProjectAction.EDIT).allowed

    def can_invite(self, email: str, role: UserRole | str, project: ResearchProject) -> bool:
        return self.decide(email, role, project, ProjectAction.INVITE).allowed

    def can_manage_collaborators(
        self, email: str, role: UserRole | str, project: ResearchProject,
    ) -> bool:
        return self.decide(email, role, project, ProjectAction.MANAGE_COLLABORATORS).allowed

    def can_delete(self, email: str, role: UserRole | str, project: ResearchProject) -> bool:
        return self.decide(email, role, project, ProjectAction.DELETE).allowed

    def require(
        self,
        email: str,
        role: UserRole | str,
        project: ResearchProject,
        action: ProjectAction | str,
    ) -> None:
        """Raise AccessDeniedError unless ``email`` may perform ``action``."""
        decision = self.decide(email, role, project, action)
        if not decision.allowed:
            logger.warning(
                "access_denied",
                user=email,
                role=str(role),
                project_id=project.id,
                action=str(action),
            )
            raise AccessDeniedError(decision.reason, project_id=project.id, action=str(action))

    def require_permission(self, role: UserRole | str, permission: Permission | str) -> None:
        if not self.has_permission(role, permission):
            raise AccessDeniedError(
                f"Role {role!s} lacks the {permission!s} permission",
                role=str(role),
                permission=str(permission),
            )
