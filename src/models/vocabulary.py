"""Fixed verb / activity-type vocabulary shared with the LRS.

IRIs are opaque strings on the wire: other LRS consumers match on them, so
they never change even if the deployment's activity base IRI does.
"""

from enum import StrEnum

ADL_VERBS = "http://adlnet.gov/expapi/verbs/"
ADL_ACTIVITIES = "http://adlnet.gov/expapi/activities/"
PORTAL_NS = "http://hulab.edu.hk/"
PORTAL_VERBS = PORTAL_NS + "verbs/"
PORTAL_ACTIVITIES = PORTAL_NS + "activities/"


class VerbName(StrEnum):
    """Short names for every verb the portal emits or reads."""

    INITIALIZED = "initialized"
    REGISTERED = "registered"
    LOGGED_IN = "logged-in"
    LOGGED_OUT = "logged-out"
    ATTEMPTED = "attempted"
    COMPLETED = "completed"
    PASSED = "passed"
    FAILED = "failed"
    EXPERIENCED = "experienced"
    INTERACTED = "interacted"
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    ADVANCED = "advanced"
    COLLABORATED = "collaborated"
    INVITED = "invited"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    SHARED = "shared"
    COMMENTED = "commented"
    ANNOTATED = "annotated"
    UPLOADED = "uploaded"
    DOWNLOADED = "downloaded"
    RESEARCHED = "researched"
    ANALYZED = "analyzed"
    ASSESSED = "assessed"
    REVIEWED = "reviewed"
    QUERIED = "queried"


_ADL_VERB_NAMES = frozenset({
    VerbName.INITIALIZED,
    VerbName.REGISTERED,
    VerbName.LOGGED_IN,
    VerbName.LOGGED_OUT,
    VerbName.ATTEMPTED,
    VerbName.COMPLETED,
    VerbName.PASSED,
    VerbName.FAILED,
    VerbName.EXPERIENCED,
    VerbName.INTERACTED,
})

_VERB_DISPLAY_OVERRIDES: dict[VerbName, str] = {
    VerbName.QUERIED: "queried AI",
    VerbName.ADVANCED: "advanced to phase",
    VerbName.ACCEPTED: "accepted invitation",
    VerbName.DECLINED: "declined invitation",
}


def verb_iri(name: VerbName | str) -> str:
    """Return the IRI for a verb short name."""
    if name in _ADL_VERB_NAMES:
        return ADL_VERBS + str(name)
    return PORTAL_VERBS + str(name)


def verb_display(name: VerbName | str) -> str:
    """Return the en-US display label for a verb short name."""
    try:
        return _VERB_DISPLAY_OVERRIDES[VerbName(name)]
    except (KeyError, ValueError):
        return str(name)


def verb_name_from_iri(iri: str) -> str:
    """Last path segment of a verb IRI (``.../verbs/completed`` -> ``completed``)."""
    return iri.rstrip("/").rsplit("/", 1)[-1]


# ---------------------------------------------------------------------------
# Activity types
# ---------------------------------------------------------------------------


class ActivityType(StrEnum):
    """Activity-type IRIs written to ``object.definition.type``."""

    APPLICATION = ADL_ACTIVITIES + "application"
    ASSESSMENT = ADL_ACTIVITIES + "assessment"
    FILE = ADL_ACTIVITIES + "file"
    LESSON = ADL_ACTIVITIES + "lesson"
    PROFILE = PORTAL_ACTIVITIES + "profile"
    RESEARCH_PROJECT = PORTAL_ACTIVITIES + "research-project"
    INVITATION = PORTAL_ACTIVITIES + "collaboration-invitation"
    COMMENT = PORTAL_ACTIVITIES + "comment"
    SHARE = PORTAL_ACTIVITIES + "share"
    AI_INTERACTION = PORTAL_ACTIVITIES + "ai-interaction"


def resource_activity_type(resource_type: str) -> str:
    """Activity type for an arbitrary shared/commented resource kind."""
    if resource_type == "project":
        return ActivityType.RESEARCH_PROJECT
    return PORTAL_ACTIVITIES + resource_type


# ---------------------------------------------------------------------------
# Extension keys
# ---------------------------------------------------------------------------


class ExtensionKey(StrEnum):
    """Well-known extension IRIs (context and result extensions)."""

    RECIPIENTS = PORTAL_NS + "recipients"
    PERMISSIONS = PORTAL_NS + "permissions"
    MENTIONS = PORTAL_NS + "mentions"
    PARENT_COMMENT = PORTAL_NS + "parent-comment"
    INVITEE = PORTAL_NS + "invitee"
    ROLE = PORTAL_NS + "role"
    COLLABORATION_ACTION = PORTAL_NS + "collaboration-action"
    RIDE_I_PHASE = PORTAL_NS + "ride-i-phase"
    PREVIOUS_PHASE = PORTAL_NS + "previous-phase"
    OWNER = PORTAL_NS + "owner"
    AI_TOKENS = PORTAL_NS + "ai-tokens"


# ---------------------------------------------------------------------------
# Blob namespaces and state ids
# ---------------------------------------------------------------------------


class BlobNamespace(StrEnum):
    """The two keyed-blob side channels of the LRS."""

    AGENT_PROFILE = "agent-profile"
    ACTIVITY_STATE = "activity-state"


USER_PROFILE_ID = "user-profile"


def activity_iri(base: str, entity_type: str, entity_id: str) -> str:
    """Address of an entity: ``{base}/{type}/{id}``."""
    return f"{base.rstrip('/')}/{entity_type}/{entity_id}"


def parse_activity_iri(iri: str, entity_type: str) -> str | None:
    """Extract the entity id from an IRI of the given type, else None."""
    marker = f"/{entity_type}/"
    if marker not in iri:
        return None
    entity_id = iri.rsplit(marker, 1)[1].strip("/")
    return entity_id or None
