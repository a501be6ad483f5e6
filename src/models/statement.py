"""xAPI statement models — the immutable ledger records of the LRS.

Wire shape: ``{id, actor, verb, object, result?, context?, timestamp}``.
Context and result extensions are modelled as a typed map with a closed set of
well-known keys plus an extra bag for any other IRI.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import Field, field_validator

from src.models.common import PortalBase, email_from_mbox, ensure_utc, mbox_from_email
from src.models.vocabulary import (
    ExtensionKey,
    VerbName,
    verb_display,
    verb_iri,
    verb_name_from_iri,
)

LanguageMap = dict[str, str]

_DEFAULT_LANG = "en-US"


def _first_label(value: LanguageMap | None) -> str | None:
    if not value:
        return None
    return value.get(_DEFAULT_LANG) or next(iter(value.values()), None)


class Agent(PortalBase):
    """An identity referenced by statements and blobs (email-derived mbox)."""

    object_type: Literal["Agent"] = "Agent"
    mbox: str
    name: str | None = None

    @field_validator("mbox")
    @classmethod
    def _normalise_mbox(cls, v: str) -> str:
        if "@" not in v:
            msg = f"Agent mbox must contain an email address: {v!r}"
            raise ValueError(msg)
        return mbox_from_email(v)

    @classmethod
    def from_email(cls, email: str, name: str | None = None) -> "Agent":
        return cls(mbox=mbox_from_email(email), name=name or email.split("@")[0])

    @property
    def email(self) -> str:
        return email_from_mbox(self.mbox)


class Verb(PortalBase):
    """Verb IRI with a display language map."""

    id: str = Field(..., min_length=1)
    display: LanguageMap = Field(default_factory=dict)

    @classmethod
    def named(cls, name: VerbName | str, display: str | None = None) -> "Verb":
        return cls(id=verb_iri(name), display={_DEFAULT_LANG: display or verb_display(name)})

    @property
    def label(self) -> str:
        return _first_label(self.display) or verb_name_from_iri(self.id)

    @property
    def short_name(self) -> str:
        return verb_name_from_iri(self.id)


class ActivityDefinition(PortalBase):
    type: str | None = None
    name: LanguageMap | None = None
    description: LanguageMap | None = None


class Activity(PortalBase):
    """Statement object / context activity addressed by IRI."""

    object_type: Literal["Activity"] = "Activity"
    id: str = Field(..., min_length=1)
    definition: ActivityDefinition | None = None

    @classmethod
    def build(
        cls,
        iri: str,
        *,
        activity_type: str | None = None,
        name: str | None = None,
        description: str | None = None,
    ) -> "Activity":
        return cls(
            id=iri,
            definition=ActivityDefinition(
                type=activity_type,
                name={_DEFAULT_LANG: name} if name else None,
                description={_DEFAULT_LANG: description} if description else None,
            ),
        )

    @property
    def display_name(self) -> str:
        if self.definition is not None:
            label = _first_label(self.definition.name)
            if label:
                return label
        return self.id

    @property
    def activity_type(self) -> str | None:
        return self.definition.type if self.definition else None


class Extensions(PortalBase):
    """Typed extension map.

    Known keys are addressed by attribute; any other IRI lands in ``extra``.
    """

    model_config = {"extra": "allow"}

    recipients: list[str] | None = Field(default=None, alias=ExtensionKey.RECIPIENTS.value)
    permissions: list[str] | None = Field(default=None, alias=ExtensionKey.PERMISSIONS.value)
    mentions: list[str] | None = Field(default=None, alias=ExtensionKey.MENTIONS.value)
    parent_comment: str | None = Field(default=None, alias=ExtensionKey.PARENT_COMMENT.value)
    invitee: str | None = Field(default=None, alias=ExtensionKey.INVITEE.value)
    role: str | None = Field(default=None, alias=ExtensionKey.ROLE.value)
    collaboration_action: str | None = Field(
        default=None, alias=ExtensionKey.COLLABORATION_ACTION.value,
    )
    ride_i_phase: str | None = Field(default=None, alias=ExtensionKey.RIDE_I_PHASE.value)
    previous_phase: str | None = Field(default=None, alias=ExtensionKey.PREVIOUS_PHASE.value)
    owner: str | None = Field(default=None, alias=ExtensionKey.OWNER.value)
    ai_tokens: int | None = Field(default=None, alias=ExtensionKey.AI_TOKENS.value)

    @property
    def extra(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class Score(PortalBase):
    scaled: float | None = Field(default=None, ge=-1.0, le=1.0)
    raw: float | None = None
    min: float | None = None
    max: float | None = None


class Result(PortalBase):
    success: bool | None = None
    completion: bool | None = None
    response: str | None = None
    duration: str | None = None
    score: Score | None = None
    extensions: Extensions | None = None


class ContextActivities(PortalBase):
    parent: list[Activity] | None = None
    grouping: list[Activity] | None = None
    category: list[Activity] | None = None
    other: list[Activity] | None = None


class Context(PortalBase):
    registration: str | None = None
    platform: str | None = None
    language: str | None = None
    context_activities: ContextActivities | None = None
    team: list[Agent] | None = None
    instructor: Agent | None = None
    extensions: Extensions | None = None


class Statement(PortalBase):
    """An immutable record of an actor performing a verb on an object.

    ``id`` and ``timestamp`` are assigned by EventLogClient.append when absent.
    """

    id: str | None = None
    actor: Agent
    verb: Verb
    object_: Activity = Field(..., alias="object")
    result: Result | None = None
    context: Context | None = None
    timestamp: datetime | None = None
    stored: datetime | None = None

    @field_validator("timestamp", "stored")
    @classmethod
    def _utc(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None

    # --- Convenience accessors used by the resolvers and aggregator ---

    @property
    def actor_email(self) -> str:
        return self.actor.email

    @property
    def object_id(self) -> str:
        return self.object_.id

    @property
    def verb_name(self) -> str:
        return self.verb.short_name

    @property
    def extensions(self) -> Extensions:
        if self.context is not None and self.context.extensions is not None:
            return self.context.extensions
        return Extensions()

    @property
    def team_mboxes(self) -> list[str]:
        if self.context is None or not self.context.team:
            return []
        return [member.mbox for member in self.context.team]

    def context_activity_ids(self, kind: str) -> list[str]:
        """Ids under ``context.contextActivities.<kind>`` (parent/grouping/category/other)."""
        if self.context is None or self.context.context_activities is None:
            return []
        activities = getattr(self.context.context_activities, kind) or []
        return [a.id for a in activities]


class StatementQuery(PortalBase):
    """Filter accepted by EventLogClient.query.

    ``since``/``until`` describe the half-open window ``[since, until)``.
    """

    agent: str | None = Field(default=None, description="Agent email.")
    verb: str | None = Field(default=None, description="Verb IRI.")
    activity: str | None = Field(default=None, description="Object activity IRI.")
    since: datetime | None = None
    until: datetime | None = None
    limit: int = Field(default=100, ge=1)
    ascending: bool = False
    related_activities: bool = False
    related_agents: bool = False
