"""Research project repository — RIDE-I phases and collaborator lists."""

from collections.abc import Sequence

import structlog

from src.errors import ValidationError
from src.models.common import utc_now
from src.models.documents import (
    Collaborator,
    CollaboratorRole,
    PhaseStatus,
    ResearchProject,
    RideIPhase,
    initial_phases,
)
from src.models.statement import Extensions
from src.models.vocabulary import ActivityType, VerbName
from src.repositories.base import DocumentMapper

logger = structlog.get_logger(__name__)


def team_of(project: ResearchProject, owner: str) -> list[str]:
    """Owner plus every listed collaborator, lower-cased and sorted."""
    members = {owner.lower()}
    members.update(c.email.lower() for c in project.collaborators)
    return sorted(members)


class ProjectRepository(DocumentMapper[ResearchProject]):
    """Projects live under their creator's agent key."""

    model = ResearchProject
    activity_type = ActivityType.RESEARCH_PROJECT

    def display_name(self, doc: ResearchProject) -> str:
        return doc.title

    def announcement_extensions(
        self, verb: VerbName, doc: ResearchProject,
    ) -> Extensions | None:
        if verb == VerbName.CREATED:
            return Extensions(ride_i_phase=doc.current_phase.value)
        return None

    async def create_project(self, owner: str, project: ResearchProject) -> ResearchProject:
        """Create a project owned by ``owner``, starting in the resource phase."""
        title = project.title.strip()
        if not title:
            raise ValidationError("Project title is required")
        fresh = project.model_copy(update={
            "title": title,
            "created_by": owner.lower(),
            "current_phase": RideIPhase.RESOURCE,
            "phases": initial_phases(),
        })
        return await self.create(owner, fresh)

    async def advance_phase(
        self,
        owner: str,
        project_id: str,
        phase: RideIPhase | str,
        *,
        actor: str | None = None,
        completion_notes: str | None = None,
        outputs: Sequence[str] | None = None,
        expected_version: int | None = None,
    ) -> ResearchProject:
        """Complete the current phase and start ``phase``.

        Announced as ``advanced`` carrying the new and the previous phase.
        """
        try:
            target = RideIPhase(phase)
        except ValueError:
            allowed = ", ".join(p.value for p in RideIPhase)
            raise ValidationError(
                f"Invalid phase {phase!r}; must be one of: {allowed}",
            ) from None

        def build_patch(current: ResearchProject) -> dict:
            if current.current_phase == target:
                raise ValidationError(
                    f"Project is already in the {target.value} phase",
                    project_id=project_id,
                )
            now = utc_now()
            phases = {key: state.model_copy() for key, state in current.phases.items()}
            done = phases[current.current_phase.value]
            done.status = PhaseStatus.COMPLETED
            done.completed_at = now
            done.completion_notes = completion_notes
            if outputs:
                done.outputs = list(outputs)
            started = phases[target.value]
            started.status = PhaseStatus.IN_PROGRESS
            started.started_at = now
            return {"phases": phases, "current_phase": target}

        def announce(before: ResearchProject, after: ResearchProject) -> dict:
            return {
                "extensions": Extensions(
                    ride_i_phase=after.current_phase.value,
                    previous_phase=before.current_phase.value,
                ),
            }

        project = await self._modify(
            owner,
            project_id,
            build_patch,
            actor=actor,
            expected_version=expected_version,
            verb=VerbName.ADVANCED,
            announce=announce,
        )
        logger.info("project_phase_advanced", project_id=project_id, phase=target.value)
        return project

    async def add_collaborator(
        self,
        owner: str,
        project_id: str,
        email: str,
        *,
        role: CollaboratorRole | str = CollaboratorRole.VIEWER,
        permissions: Sequence[str] = (),
        name: str | None = None,
        actor: str | None = None,
        status: str = "invited",
        action: str = "invited_collaborator",
        expected_version: int | None = None,
    ) -> ResearchProject:
        """Append a collaborator; duplicates (case-insensitive) are rejected.

        Announced as ``collaborated`` with the resulting team in ``context.team``.
        """
        if not email or "@" not in email:
            raise ValidationError("A valid collaborator email is required", email=email)
        try:
            collaborator_role = CollaboratorRole(role)
        except ValueError:
            raise ValidationError(f"Unknown collaborator role {role!r}") from None
        email = email.strip().lower()

        def build_patch(current: ResearchProject) -> dict:
            if current.collaborator(email) is not None:
                raise ValidationError(
                    "This user is already a collaborator on this project",
                    project_id=project_id, email=email,
                )
            added = Collaborator(
                email=email,
                name=name,
                role=collaborator_role,
                permissions=list(permissions),
                added_by=(actor or owner).lower(),
                joined_at=utc_now(),
                status=status,
            )
            return {"collaborators": [*current.collaborators, added]}

        def announce(before: ResearchProject, after: ResearchProject) -> dict:
            return {
                "team": team_of(after, owner),
                "extensions": Extensions(
                    collaboration_action=action, role=collaborator_role.value,
                ),
            }

        project = await self._modify(
            owner,
            project_id,
            build_patch,
            actor=actor,
            expected_version=expected_version,
            verb=VerbName.COLLABORATED,
            announce=announce,
        )
        logger.info(
            "project_collaborator_added",
            project_id=project_id, collaborator=email, role=collaborator_role.value,
        )
        return project
