"""Share repository — share records are owned by the sharer."""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from src.errors import ValidationError
from src.models.common import utc_now
from src.models.documents import ShareRecord
from src.models.statement import Extensions
from src.models.vocabulary import ActivityType, VerbName, resource_activity_type
from src.repositories.base import DocumentMapper, validate_document

logger = structlog.get_logger(__name__)


class ShareRepository(DocumentMapper[ShareRecord]):
    model = ShareRecord
    activity_type = ActivityType.SHARE

    def display_name(self, doc: ShareRecord) -> str:
        return f"Share of {doc.resource_type} {doc.resource_id}"

    async def share(
        self,
        shared_by: str,
        resource_type: str,
        resource_id: str,
        recipients: Sequence[str],
        *,
        message: str = "",
        permissions: Sequence[str] = ("view",),
    ) -> ShareRecord:
        """Record a share, then announce ``shared`` on the resource IRI.

        Recipients are lower-cased and de-duplicated, order preserved.
        """
        if not resource_type or not resource_id:
            raise ValidationError("Resource type and id are required")
        cleaned: list[str] = []
        for recipient in recipients:
            email = recipient.strip().lower()
            if email and email not in cleaned:
                cleaned.append(email)
        if not cleaned:
            raise ValidationError("At least one recipient is required")

        record = await self.create(
            shared_by,
            validate_document(ShareRecord, dict(
                resource_type=resource_type,
                resource_id=resource_id,
                shared_by=shared_by.lower(),
                recipients=cleaned,
                message=message,
                permissions=list(permissions) or ["view"],
                shared_at=utc_now(),
            )),
        )
        statement = self._statements.build(
            shared_by,
            VerbName.SHARED,
            self._statements.activity(
                resource_type,
                resource_id,
                activity_type=resource_activity_type(resource_type),
                name=f"Shared {resource_type}",
            ),
            team=[shared_by.lower(), *record.recipients],
            other=[self.activity(record)],
            extensions=Extensions(
                recipients=record.recipients,
                permissions=record.permissions,
                owner=shared_by.lower(),
            ),
        )
        await self._client.append(statement)
        logger.info(
            "resource_shared",
            share_id=record.id, resource_type=resource_type, resource_id=resource_id,
            recipients=len(record.recipients),
        )
        return record
