"""RelationshipResolver — relational views rebuilt from the statement stream.

The LRS has no joins or secondary indices, so every answer here is a bounded
scan plus a client-side join on embedded context fields (``owner``,
``invitee``, ``recipients``, ``team``, ``contextActivities.other``).

Listings tolerate partial failure: a statement that references a blob the
caller cannot read, or one that no longer parses, is logged and skipped.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from uuid import NAMESPACE_DNS, uuid5

import structlog

from src.errors import NotFoundError, PortalError, ValidationError
from src.lrs.client import EventLogClient
from src.lrs.statements import StatementFactory
from src.models.analytics import ActivitySummary, Team
from src.models.common import DocumentStatus, EntityType, email_from_mbox
from src.models.documents import (
    Collaborator,
    CollaboratorRole,
    Comment,
    Invitation,
    InvitationState,
    Page,
    ResearchProject,
    ShareSummary,
    StateDocument,
)
from src.models.statement import Statement, StatementQuery
from src.models.vocabulary import VerbName, verb_iri
from src.repositories.base import DocumentMapper
from src.repositories.comments import CommentRepository
from src.repositories.invitations import InvitationRepository
from src.repositories.projects import ProjectRepository
from src.repositories.shares import ShareRepository

logger = structlog.get_logger(__name__)

_DIRECTIONS = ("received", "sent", "all")
_RECENT_TEAM_ACTIVITIES = 5


def _sort_time(value: datetime | None) -> float:
    return value.timestamp() if value is not None else float("-inf")


def statement_owner(statement: Statement) -> str:
    """Owner key revealed by a statement: the ``owner`` extension, else the actor."""
    return (statement.extensions.owner or statement.actor_email).lower()


class RelationshipResolver:
    """Answers "which entities relate to X" by scanning statements."""

    def __init__(
        self,
        client: EventLogClient,
        statements: StatementFactory,
        *,
        projects: ProjectRepository,
        invitations: InvitationRepository,
        comments: CommentRepository,
        shares: ShareRepository,
        scan_limit: int = 1000,
    ) -> None:
        self._client = client
        self._statements = statements
        self._projects = projects
        self._invitations = invitations
        self._comments = comments
        self._shares = shares
        self._mappers: dict[EntityType, DocumentMapper] = {
            EntityType.PROJECT: projects,
            EntityType.INVITATION: invitations,
            EntityType.COMMENT: comments,
            EntityType.SHARE: shares,
        }
        self.scan_limit = scan_limit

    # ------------------------------------------------------------------
    # Owned entities
    # ------------------------------------------------------------------

    async def list_owned(
        self,
        agent: str,
        entity_type: EntityType | str,
        *,
        status: DocumentStatus | str | None = None,
        offset: int = 0,
        limit: int | None = 50,
        predicate: Callable[[StateDocument], bool] | None = None,
    ) -> Page:
        """Entities ``agent`` created, newest related activity first.

        Candidates come from ``agent``'s own ``created`` statements grouped
        under the entity type's collection, so other traffic cannot push them
        out of the scan; recency is then looked up per entity. Deleted
        entities are never returned. ``predicate`` is the client-side half of
        composite queries (e.g. "my projects in the decisions phase"). A scan
        that reaches ``scan_limit`` sets ``partial``.
        """
        mapper = self._mapper(entity_type)
        if offset < 0 or (limit is not None and limit < 1):
            raise ValidationError("offset must be >= 0 and limit >= 1", offset=offset, limit=limit)
        wanted = DocumentStatus(status) if status is not None else None
        agent = agent.lower()
        prefix = self._statements.iri(mapper.model.entity_type, "")

        latest: dict[str, datetime | None] = {}
        created: dict[str, Statement] = {}
        scanned = 0
        query = StatementQuery(
            agent=agent,
            verb=verb_iri(VerbName.CREATED),
            activity=self._statements.collection(mapper.model.entity_type).id,
            related_activities=True,
            limit=self.scan_limit,
        )
        async for statement in self._client.query(query):
            scanned += 1
            if not statement.object_id.startswith(prefix):
                continue
            entity_id = statement.object_id[len(prefix):].strip("/")
            if entity_id and entity_id not in created:
                created[entity_id] = statement
                latest[entity_id] = statement.timestamp
        partial = self._capped("list_owned", scanned, agent=agent)

        items: list[StateDocument] = []
        for entity_id, statement in created.items():
            doc = await self._dereference(mapper, statement_owner(statement), entity_id)
            if doc is None or doc.is_deleted:
                continue
            if wanted is not None and doc.status != wanted:
                continue
            if predicate is not None and not predicate(doc):
                continue
            latest[entity_id] = await self._last_activity(mapper, entity_id, latest[entity_id])
            items.append(doc)

        items.sort(key=lambda d: (_sort_time(latest.get(d.id)), d.id), reverse=True)
        return _page(items, offset, limit, partial=partial)

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    async def resolve_teams(
        self,
        agent: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[Team]:
        """Teams ``agent`` collaborated in, identified by member-set equality."""
        query = StatementQuery(
            agent=agent,
            verb=verb_iri(VerbName.COLLABORATED),
            since=since,
            until=until,
            limit=self.scan_limit,
            related_agents=True,
        )
        teams: dict[str, Team] = {}
        async for statement in self._client.query(query):
            mboxes = statement.team_mboxes
            if not mboxes:
                continue
            key = ",".join(sorted(set(mboxes)))
            team = teams.get(key)
            if team is None:
                team = Team(
                    id=str(uuid5(NAMESPACE_DNS, key)),
                    key=key,
                    members=[email_from_mbox(m) for m in sorted(set(mboxes))],
                )
                teams[key] = team
            project_id = self._statements.entity_id(statement.object_id, EntityType.PROJECT)
            if project_id and project_id not in team.project_ids:
                team.project_ids.append(project_id)
            if _sort_time(statement.timestamp) > _sort_time(team.last_activity):
                team.last_activity = statement.timestamp
            team.recent_activities.append(ActivitySummary.from_statement(statement))

        for team in teams.values():
            team.recent_activities.sort(key=lambda a: _sort_time(a.timestamp), reverse=True)
            del team.recent_activities[_RECENT_TEAM_ACTIVITIES:]
        return sorted(teams.values(), key=lambda t: _sort_time(t.last_activity), reverse=True)

    # ------------------------------------------------------------------
    # Shares
    # ------------------------------------------------------------------

    async def resolve_shared_with(
        self,
        agent: str,
        *,
        resource_type: str | None = None,
        direction: str = "received",
    ) -> list[ShareSummary]:
        """Shares addressed to (or sent by) ``agent``, newest first.

        Received shares are found through the statement's ``team`` list, which
        holds the sharer and every recipient. The share blob is attached when
        resolvable; otherwise the summary is built from the statement alone.
        """
        if direction not in _DIRECTIONS:
            raise ValidationError(f"direction must be one of {', '.join(_DIRECTIONS)}")
        agent = agent.lower()
        query = StatementQuery(
            verb=verb_iri(VerbName.SHARED),
            agent=agent,
            limit=self.scan_limit,
            related_agents=direction != "sent",
        )
        shares: list[ShareSummary] = []
        scanned = 0
        async for statement in self._client.query(query):
            scanned += 1
            ext = statement.extensions
            recipients = [r.lower() for r in ext.recipients or []]
            is_sender = statement.actor_email.lower() == agent
            is_recipient = agent in recipients
            if direction == "received" and not is_recipient:
                continue
            if direction == "sent" and not is_sender:
                continue
            if direction == "all" and not (is_sender or is_recipient):
                continue

            kind, resource_id = self._resource_of(statement)
            if resource_type is not None and kind != resource_type:
                continue

            record = None
            share_id = self._back_reference(statement, EntityType.SHARE)
            if share_id is not None:
                record = await self._dereference(self._shares, statement_owner(statement), share_id)
                if record is not None and record.is_deleted:
                    continue

            shares.append(ShareSummary(
                statement_id=statement.id,
                share_id=share_id,
                resource_type=kind,
                resource_id=resource_id,
                shared_by=statement.actor_email,
                recipients=recipients,
                permissions=ext.permissions or ["view"],
                shared_at=statement.timestamp,
                direction="sent" if is_sender else "received",
                record=record,
            ))

        self._capped("resolve_shared_with", scanned, agent=agent, direction=direction)
        shares.sort(key=lambda s: _sort_time(s.shared_at), reverse=True)
        return shares

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    async def resolve_comment_thread(
        self,
        target_type: str,
        target_id: str,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page:
        """Live comments on a target in thread order (oldest first)."""
        query = StatementQuery(
            verb=verb_iri(VerbName.COMMENTED),
            activity=self._statements.iri(target_type, target_id),
            limit=self.scan_limit,
        )
        comments: dict[str, Comment] = {}
        async for statement in self._client.query(query):
            comment_id = self._back_reference(statement, EntityType.COMMENT)
            if comment_id is None or comment_id in comments:
                continue
            comment = await self._dereference(self._comments, statement_owner(statement), comment_id)
            if comment is None or comment.is_deleted:
                continue
            comments[comment_id] = comment

        thread = sorted(comments.values(), key=lambda c: (_sort_time(c.created_at), c.id))
        return _page(thread, offset, limit)

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------

    async def resolve_invitations(
        self,
        agent: str,
        *,
        direction: str = "received",
        state: InvitationState | str | None = None,
    ) -> list[Invitation]:
        """Invitations received by or sent from ``agent``, newest first.

        The invitee is matched through the ``team`` list (inviter and invitee).
        """
        if direction not in _DIRECTIONS:
            raise ValidationError(f"direction must be one of {', '.join(_DIRECTIONS)}")
        wanted = InvitationState(state) if state is not None else None
        agent = agent.lower()
        query = StatementQuery(
            verb=verb_iri(VerbName.INVITED),
            agent=agent,
            limit=self.scan_limit,
            related_agents=direction != "sent",
        )
        found: dict[str, Invitation] = {}
        scanned = 0
        async for statement in self._client.query(query):
            scanned += 1
            invitee = (statement.extensions.invitee or "").lower()
            if not invitee:
                continue
            is_sender = statement.actor_email.lower() == agent
            if direction == "received" and invitee != agent:
                continue
            if direction == "sent" and not is_sender:
                continue
            if direction == "all" and not (is_sender or invitee == agent):
                continue
            invitation_id = self._back_reference(statement, EntityType.INVITATION)
            if invitation_id is None or invitation_id in found:
                continue
            invitation = await self._dereference(self._invitations, invitee, invitation_id)
            if invitation is None or invitation.is_deleted:
                continue
            if wanted is not None and invitation.state != wanted:
                continue
            found[invitation_id] = invitation

        self._capped("resolve_invitations", scanned, agent=agent, direction=direction)
        return sorted(found.values(), key=lambda i: _sort_time(i.created_at), reverse=True)

    # ------------------------------------------------------------------
    # Project collaborators
    # ------------------------------------------------------------------

    async def find_project_owner(self, project_id: str) -> str:
        """Owner key of a project, revealed by its ``created`` statement."""
        query = StatementQuery(
            verb=verb_iri(VerbName.CREATED),
            activity=self._statements.iri(EntityType.PROJECT, project_id),
            limit=1,
        )
        for statement in await self._client.collect(query):
            return statement_owner(statement)
        raise NotFoundError(f"project {project_id} not found", project_id=project_id)

    async def resolve_project_collaborators(self, project_id: str) -> list[Collaborator]:
        """Owner, listed collaborators, and agents seen in the project's team lists.

        Agents only seen in ``collaborated`` statements get ``status="observed"``.
        """
        owner = await self.find_project_owner(project_id)
        project: ResearchProject = await self._projects.read(owner, project_id)

        members: dict[str, Collaborator] = {
            owner: Collaborator(email=owner, role=CollaboratorRole.MANAGER, status="owner"),
        }
        for collaborator in project.collaborators:
            members.setdefault(collaborator.email.lower(), collaborator)

        query = StatementQuery(
            verb=verb_iri(VerbName.COLLABORATED),
            activity=self._statements.iri(EntityType.PROJECT, project_id),
            limit=self.scan_limit,
        )
        async for statement in self._client.query(query):
            for mbox in statement.team_mboxes:
                email = email_from_mbox(mbox).lower()
                if email not in members:
                    members[email] = Collaborator(email=email, status="observed")

        return list(members.values())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _mapper(self, entity_type: EntityType | str) -> DocumentMapper:
        try:
            return self._mappers[EntityType(entity_type)]
        except (KeyError, ValueError):
            raise ValidationError(f"Unsupported entity type {entity_type!r}") from None

    def _capped(self, scan: str, scanned: int, **fields) -> bool:
        if scanned < self.scan_limit:
            return False
        logger.warning("resolver_scan_capped", scan=scan, scan_limit=self.scan_limit, **fields)
        return True

    async def _last_activity(
        self, mapper: DocumentMapper, entity_id: str, fallback: datetime | None,
    ) -> datetime | None:
        """Timestamp of the newest statement on the entity, by any agent."""
        query = StatementQuery(
            activity=self._statements.iri(mapper.model.entity_type, entity_id),
            limit=1,
        )
        for statement in await self._client.collect(query):
            if _sort_time(statement.timestamp) > _sort_time(fallback):
                return statement.timestamp
        return fallback

    def _back_reference(self, statement: Statement, entity_type: EntityType) -> str | None:
        for activity_id in statement.context_activity_ids("other"):
            entity_id = self._statements.entity_id(activity_id, entity_type)
            if entity_id:
                return entity_id
        return None

    def _resource_of(self, statement: Statement) -> tuple[str | None, str]:
        """``(type, id)`` of a ``{base}/{type}/{id}`` object IRI."""
        base = self._statements.base_activity_id + "/"
        relative = statement.object_id.removeprefix(base)
        kind, _, resource_id = relative.partition("/")
        if not resource_id:
            return None, statement.object_id.rsplit("/", 1)[-1]
        return kind, resource_id

    async def _dereference(self, mapper: DocumentMapper, owner: str, entity_id: str):
        try:
            return await mapper.read(owner, entity_id)
        except PortalError as exc:
            logger.warning(
                "dereference_failed",
                entity_type=mapper.model.entity_type.value,
                entity_id=entity_id,
                owner=owner,
                error=type(exc).__name__,
                detail=exc.message,
            )
            return None


def _page(items: list, offset: int, limit: int | None, *, partial: bool = False) -> Page:
    end = None if limit is None else offset + limit
    return Page(
        items=items[offset:end],
        total_count=len(items),
        offset=offset,
        limit=limit,
        partial=partial,
    )
