"""Invitation repository.

An invitation blob is owned by the invitee, so the invitee can address it
directly; the inviter finds it again through the ``invited`` statement, whose
``contextActivities.other`` points at the invitation and whose ``invitee``
extension names the owner key.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta

import structlog

from src.errors import AccessDeniedError, NotFoundError, ValidationError
from src.lrs.client import EventLogClient
from src.lrs.statements import StatementFactory
from src.models.common import EntityType, new_entity_id, utc_now
from src.models.documents import CollaboratorRole, Invitation, InvitationState
from src.models.statement import Extensions
from src.models.vocabulary import ActivityType, VerbName
from src.repositories.base import DocumentMapper, validate_document
from src.repositories.projects import ProjectRepository

logger = structlog.get_logger(__name__)


class InvitationRepository(DocumentMapper[Invitation]):
    model = Invitation
    activity_type = ActivityType.INVITATION

    def __init__(
        self,
        client: EventLogClient,
        statements: StatementFactory,
        projects: ProjectRepository,
        *,
        ttl_days: int = 7,
    ) -> None:
        super().__init__(client, statements)
        self._projects = projects
        self._ttl = timedelta(days=ttl_days)

    def display_name(self, doc: Invitation) -> str:
        return "Collaboration Invitation"

    async def invite(
        self,
        inviter: str,
        project_owner: str,
        project_id: str,
        invitee_emails: Sequence[str],
        *,
        role: CollaboratorRole | str = CollaboratorRole.COLLABORATOR,
        permissions: Sequence[str] = (),
        message: str = "",
        inviter_name: str | None = None,
    ) -> list[Invitation]:
        """Create one invitation per invitee, all sharing a batch id.

        Each invitation is announced twice: ``created`` on the invitation IRI
        and ``invited`` on the project IRI.
        """
        invitees = _normalise_emails(invitee_emails)
        if not invitees:
            raise ValidationError("At least one invitee email is required")
        bad = [email for email in invitees if "@" not in email]
        if bad:
            raise ValidationError("Invalid invitee email(s)", emails=bad)
        try:
            invite_role = CollaboratorRole(role)
        except ValueError:
            raise ValidationError(f"Unknown collaborator role {role!r}") from None

        project = await self._projects.read(project_owner, project_id)
        batch_id = new_entity_id()
        expires_at = utc_now() + self._ttl
        sent: list[Invitation] = []
        for invitee in invitees:
            invitation = await self.create(
                invitee,
                validate_document(Invitation, dict(
                    invitation_batch_id=batch_id,
                    project_id=project_id,
                    project_title=project.title,
                    project_owner=project_owner.lower(),
                    inviter_email=inviter.lower(),
                    inviter_name=inviter_name,
                    invitee_email=invitee,
                    role=invite_role,
                    permissions=list(permissions),
                    message=message,
                    expires_at=expires_at,
                )),
                actor=inviter,
            )
            statement = self._statements.build(
                inviter,
                VerbName.INVITED,
                self._projects.activity(project),
                actor_name=inviter_name,
                team=[inviter.lower(), invitee],
                other=[self.activity(invitation)],
                extensions=Extensions(
                    invitee=invitee,
                    role=invite_role.value,
                    owner=project_owner.lower(),
                ),
            )
            await self._client.append(statement)
            logger.info(
                "invitation_sent",
                project_id=project_id, inviter=inviter, invitee=invitee, role=invite_role.value,
            )
            sent.append(invitation)
        return sent

    async def respond(
        self,
        invitee: str,
        invitation_id: str,
        *,
        accept: bool,
        message: str = "",
        name: str | None = None,
    ) -> Invitation:
        """Accept or decline a pending, unexpired invitation.

        On acceptance the invitee joins the project's collaborator list.
        """
        invitee = invitee.lower()
        current = await self.read(invitee, invitation_id)
        if current.invitee_email.lower() != invitee:
            raise AccessDeniedError("This invitation is not for you", invitation_id=invitation_id)
        if current.state != InvitationState.PENDING:
            raise ValidationError(
                "This invitation has already been responded to",
                invitation_id=invitation_id, state=current.state.value,
            )
        if current.expires_at is not None and utc_now() > current.expires_at:
            raise ValidationError("This invitation has expired", invitation_id=invitation_id)

        outcome = InvitationState.ACCEPTED if accept else InvitationState.DECLINED
        project_activity = self._statements.activity(
            EntityType.PROJECT,
            current.project_id,
            activity_type=ActivityType.RESEARCH_PROJECT,
            name=current.project_title or None,
        )
        invitation = await self._modify(
            invitee,
            invitation_id,
            lambda doc: {
                "state": outcome,
                "responded_at": utc_now(),
                "response_message": message,
            },
            actor=invitee,
            expected_version=current.version,
            verb=VerbName.ACCEPTED if accept else VerbName.DECLINED,
            announce=lambda before, after: {"parent": [project_activity]},
        )
        logger.info(
            "invitation_responded",
            invitation_id=invitation_id, invitee=invitee, state=outcome.value,
        )

        if accept:
            try:
                await self._projects.add_collaborator(
                    current.project_owner,
                    current.project_id,
                    invitee,
                    role=current.role,
                    permissions=current.permissions,
                    name=name,
                    actor=invitee,
                    status="active",
                    action="joined_via_invitation",
                )
            except (NotFoundError, ValidationError) as exc:
                # Project gone or invitee already listed; the response stands.
                logger.warning(
                    "invitation_project_update_skipped",
                    invitation_id=invitation_id,
                    project_id=current.project_id,
                    error=str(exc),
                )
        return invitation


def _normalise_emails(emails: Sequence[str]) -> list[str]:
    seen: dict[str, None] = {}
    for email in emails:
        cleaned = email.strip().lower()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)
