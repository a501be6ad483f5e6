"""Shared types, enums, and base models used across the portal domain models."""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from uuid_extensions import uuid7


def utc_now() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def new_entity_id() -> str:
    """Generate a new time-sortable UUID v7 rendered as a string.

    Entity ids are embedded in activity IRIs, so they travel as strings.
    """
    return str(uuid7())


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def email_from_mbox(mbox: str) -> str:
    """Strip the ``mailto:`` scheme from an agent mbox."""
    return mbox.removeprefix("mailto:")


def mbox_from_email(email: str) -> str:
    """Build a ``mailto:`` IRI from an email, normalising case."""
    if email.startswith("mailto:"):
        email = email_from_mbox(email)
    return f"mailto:{email.strip().lower()}"


# --- Reusable annotated types ---

UTCTimestamp = Annotated[
    datetime, Field(description="UTC timezone-aware timestamp.")
]
EntityId = Annotated[str, Field(min_length=1, description="UUID v7 entity id.")]


# --- Shared enums ---


class DocumentStatus(StrEnum):
    """Lifecycle status carried by every state document.

    ``DELETED`` is the soft-delete marker; the blob is never removed.
    """

    ACTIVE = "active"
    ARCHIVED = "archived"
    COMPLETED = "completed"
    DELETED = "deleted"


class EntityType(StrEnum):
    """Entity kinds addressed as ``{base}/{type}/{id}`` activity IRIs."""

    PROJECT = "project"
    INVITATION = "invitation"
    COMMENT = "comment"
    SHARE = "share"
    PROFILE = "profile"


class UserRole(StrEnum):
    """Portal roles as decided by the authorization layer."""

    ADMIN = "admin"
    EDUCATOR = "educator"
    RESEARCHER = "researcher"
    STUDENT = "student"


# --- Base model ---


class PortalBase(BaseModel):
    """Base model with common configuration for all portal Pydantic models.

    Python attributes are snake_case; the wire format (LRS blobs and
    statements) is camelCase.
    """

    model_config = {
        "populate_by_name": True,
        "alias_generator": to_camel,
        "ser_json_timedelta": "iso8601",
        "protected_namespaces": (),
    }

    def to_wire(self) -> dict:
        """Serialise with wire aliases, dropping unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
