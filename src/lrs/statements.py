"""Statement construction helpers — consistent actor/verb/object/context shapes."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from src.config.settings import Settings
from src.models.statement import (
    Activity,
    Agent,
    Context,
    ContextActivities,
    Extensions,
    Result,
    Statement,
    Verb,
)
from src.models.vocabulary import VerbName, activity_iri, parse_activity_iri


class StatementFactory:
    """Builds statements addressed under one deployment's activity base IRI."""

    def __init__(self, base_activity_id: str, platform: str = "HuLab Portal") -> None:
        self.base_activity_id = base_activity_id.rstrip("/")
        self.platform = platform

    @classmethod
    def from_settings(cls, settings: Settings) -> StatementFactory:
        return cls(settings.BASE_ACTIVITY_ID, settings.PLATFORM_NAME)

    def iri(self, entity_type: str, entity_id: str) -> str:
        return activity_iri(self.base_activity_id, entity_type, entity_id)

    def entity_id(self, iri: str, entity_type: str) -> str | None:
        return parse_activity_iri(iri, entity_type)

    def collection(self, entity_type: str) -> Activity:
        """Grouping activity shared by every entity of one type: ``{base}/{type}``."""
        return Activity.build(f"{self.base_activity_id}/{entity_type}")

    def activity(
        self,
        entity_type: str,
        entity_id: str,
        *,
        activity_type: str | None = None,
        name: str | None = None,
        description: str | None = None,
    ) -> Activity:
        return Activity.build(
            self.iri(entity_type, entity_id),
            activity_type=activity_type,
            name=name,
            description=description,
        )

    def build(
        self,
        actor: str,
        verb: VerbName | Verb,
        obj: Activity,
        *,
        actor_name: str | None = None,
        result: Result | None = None,
        extensions: Extensions | None = None,
        team: Sequence[str] | None = None,
        parent: Sequence[Activity] | None = None,
        grouping: Sequence[Activity] | None = None,
        other: Sequence[Activity] | None = None,
        timestamp: datetime | None = None,
        statement_id: str | None = None,
    ) -> Statement:
        context_activities = None
        if parent or grouping or other:
            context_activities = ContextActivities(
                parent=list(parent) if parent else None,
                grouping=list(grouping) if grouping else None,
                other=list(other) if other else None,
            )
        context = Context(
            platform=self.platform,
            language="en-US",
            context_activities=context_activities,
            team=[Agent.from_email(member) for member in team] if team else None,
            extensions=extensions,
        )
        return Statement(
            id=statement_id,
            actor=Agent.from_email(actor, actor_name),
            verb=verb if isinstance(verb, Verb) else Verb.named(verb),
            object=obj,
            result=result,
            context=context,
            timestamp=timestamp,
        )
