"""User profile repository — one agent-profile blob per user.

The profile is overwritten wholesale on every write; partial updates are a
read-merge-write here, never at the store.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog
from pydantic_core import to_jsonable_python

from src.errors import NotFoundError, ValidationError
from src.lrs.client import EventLogClient
from src.lrs.statements import StatementFactory
from src.models.common import EntityType, UserRole, utc_now
from src.models.documents import LoginIdentity, UserProfile
from src.models.statement import Activity
from src.models.vocabulary import USER_PROFILE_ID, ActivityType, BlobNamespace, VerbName
from src.repositories.base import merge_patch, validate_document

logger = structlog.get_logger(__name__)

# Identity fields refreshed from the authentication layer on every login.
_IDENTITY_FIELDS = ("name", "first_name", "last_name", "avatar")


class UserProfileRepository:
    """Reads and writes ``user-profile`` in the agent-profile namespace."""

    def __init__(self, client: EventLogClient, statements: StatementFactory) -> None:
        self._client = client
        self._statements = statements

    def portal_activity(self) -> Activity:
        return Activity.build(
            f"{self._statements.base_activity_id}/portal",
            activity_type=ActivityType.APPLICATION,
            name=self._statements.platform,
        )

    def profile_activity(self, profile: UserProfile) -> Activity:
        return self._statements.activity(
            EntityType.PROFILE,
            profile.id,
            activity_type=ActivityType.PROFILE,
            name=profile.name or profile.email,
        )

    async def get(self, email: str) -> UserProfile:
        try:
            blob = await self._client.get_blob(email, BlobNamespace.AGENT_PROFILE, USER_PROFILE_ID)
        except NotFoundError:
            raise NotFoundError(f"No profile for {email}", email=email) from None
        return validate_document(UserProfile, blob.json())

    async def record_login(
        self,
        identity: LoginIdentity,
        *,
        role: UserRole | None = None,
    ) -> UserProfile:
        """Create the profile on first login, otherwise bump the login counter.

        A first login also announces ``registered``; every login announces
        ``logged-in`` against the portal.
        """
        email = identity.email.strip().lower()
        if "@" not in email:
            raise ValidationError("Login identity needs a verified email", email=identity.email)
        now = utc_now()
        try:
            current = await self.get(email)
        except NotFoundError:
            current = None

        if current is None:
            profile = validate_document(UserProfile, {
                **identity.model_dump(exclude_none=True),
                "email": email,
                "role": role or UserRole.STUDENT,
                "login_count": 1,
                "last_login": now,
                "created_at": now,
                "updated_at": now,
            })
            await self._write(profile)
            await self._client.append(self._statements.build(
                email, VerbName.REGISTERED, self.portal_activity(), actor_name=profile.name,
            ))
            logger.info("profile_created", email=email)
        else:
            refreshed = {
                key: getattr(identity, key)
                for key in _IDENTITY_FIELDS
                if getattr(identity, key) is not None
            }
            if role is not None:
                refreshed["role"] = role
            merged = merge_patch(current, refreshed)
            merged.update({
                "loginCount": current.login_count + 1,
                "lastLogin": to_jsonable_python(now),
                "updatedAt": to_jsonable_python(now),
            })
            profile = validate_document(UserProfile, merged)
            await self._write(profile)
            logger.info("profile_login", email=email, login_count=profile.login_count)

        await self._client.append(self._statements.build(
            email, VerbName.LOGGED_IN, self.portal_activity(), actor_name=profile.name,
        ))
        return profile

    async def update(
        self,
        email: str,
        patch: Mapping[str, Any],
        *,
        actor: str | None = None,
    ) -> UserProfile:
        """Shallow-merge ``patch``; id, email, provider and createdAt are fixed."""
        current = await self.get(email)
        merged = merge_patch(current, patch)
        merged["updatedAt"] = to_jsonable_python(utc_now())
        profile = validate_document(UserProfile, merged)
        await self._write(profile)
        await self._client.append(self._statements.build(
            actor or email, VerbName.UPDATED, self.profile_activity(profile),
        ))
        logger.info("profile_updated", email=email, fields=sorted(patch.keys()))
        return profile

    async def _write(self, profile: UserProfile) -> None:
        await self._client.put_blob(
            profile.email,
            BlobNamespace.AGENT_PROFILE,
            USER_PROFILE_ID,
            profile.model_dump_json(by_alias=True).encode(),
        )
