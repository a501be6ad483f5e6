"""DocumentMapper — CRUD emulation over LRS activity-state blobs.

Each entity is one blob under (owner agent, entity IRI, state id) plus
announcement statements that make it discoverable through ``query``.
Blob writes always precede their announcement: a failed append leaves an
orphaned but intact blob, never an announcement pointing at nothing.

No authorization happens here; callers decide who may touch what.
"""

from collections.abc import Callable, Mapping
from typing import Any, ClassVar, Generic, TypeVar

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import to_jsonable_python

from src.errors import ConflictError, NotFoundError, ValidationError
from src.lrs.client import EventLogClient
from src.lrs.statements import StatementFactory
from src.models.common import DocumentStatus, utc_now
from src.models.documents import StateDocument
from src.models.statement import Activity, Extensions
from src.models.vocabulary import BlobNamespace, VerbName

logger = structlog.get_logger(__name__)

D = TypeVar("D", bound=StateDocument)

# Keys the mapper owns; patches cannot set them.
_SYSTEM_FIELDS = frozenset({"version", "updatedAt", "deletedAt", "deletedBy"})


def wire_key(model: type[BaseModel], key: str) -> str:
    """Map a python attribute name to its wire alias (aliases pass through)."""
    field = model.model_fields.get(key)
    if field is not None and field.alias:
        return field.alias
    return key


def merge_patch(current: BaseModel, patch: Mapping[str, Any]) -> dict[str, Any]:
    """Shallow-merge ``patch`` over ``current`` in wire form.

    Immutable fields may be restated with their current value but never
    changed; system fields in the patch are ignored.
    """
    model = type(current)
    immutable: frozenset[str] = getattr(model, "immutable_fields", frozenset())
    base = current.model_dump(mode="json", by_alias=True)
    normalised = {
        wire_key(model, key): to_jsonable_python(value, by_alias=True)
        for key, value in patch.items()
    }
    changed = sorted(
        key for key in immutable & normalised.keys()
        if normalised[key] != base.get(key)
    )
    if changed:
        raise ValidationError(
            f"Immutable fields cannot be changed: {', '.join(changed)}",
            fields=changed,
        )
    merged = dict(base)
    merged.update({k: v for k, v in normalised.items() if k not in _SYSTEM_FIELDS})
    return merged


def validate_document(model: type[BaseModel], data: Mapping[str, Any]) -> Any:
    """Validate wire data into ``model``, re-raised as a portal ValidationError."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid {model.__name__}: {exc.error_count()} error(s)",
            errors=exc.errors(include_url=False, include_context=False),
        ) from exc


class DocumentMapper(Generic[D]):
    """Generic create/read/update/soft-delete for one document type.

    Subclasses bind ``model`` and ``activity_type`` and add the domain
    operations of their entity on top of :meth:`_modify`.
    """

    model: ClassVar[type[StateDocument]]
    activity_type: ClassVar[str]

    def __init__(self, client: EventLogClient, statements: StatementFactory) -> None:
        self._client = client
        self._statements = statements

    # ----- Addressing -----

    def activity_id(self, entity_id: str) -> str:
        return self._statements.iri(self.model.entity_type, entity_id)

    def activity(self, doc: D) -> Activity:
        return self._statements.activity(
            self.model.entity_type,
            doc.id,
            activity_type=self.activity_type,
            name=self.display_name(doc),
        )

    def display_name(self, doc: D) -> str:
        return f"{self.model.entity_type.value} {doc.id}"

    def announcement_extensions(self, verb: VerbName, doc: D) -> Extensions | None:
        """Extra context extensions for ``created``/``updated``/``deleted``."""
        return None

    # ----- CRUD -----

    async def create(self, owner: str, entity: D, *, actor: str | None = None) -> D:
        """Assign version/status/timestamps, write the blob, then announce it."""
        now = utc_now()
        data = entity.model_dump(mode="json", by_alias=True)
        data.update({
            "version": 1,
            "status": DocumentStatus.ACTIVE.value,
            "createdBy": entity.created_by or actor or owner,
            "createdAt": to_jsonable_python(now),
            "updatedAt": to_jsonable_python(now),
            "deletedAt": None,
            "deletedBy": None,
        })
        doc: D = validate_document(self.model, data)
        await self._write(owner, doc)
        await self._announce(
            VerbName.CREATED, owner, doc,
            actor=actor,
            extensions=self.announcement_extensions(VerbName.CREATED, doc),
        )
        logger.info(
            "document_created",
            entity_type=self.model.entity_type.value, entity_id=doc.id, owner=owner,
        )
        return doc

    async def read(self, owner: str, entity_id: str) -> D:
        doc, _ = await self._read_with_etag(owner, entity_id)
        return doc

    async def update(
        self,
        owner: str,
        entity_id: str,
        patch: Mapping[str, Any],
        *,
        actor: str | None = None,
        expected_version: int | None = None,
    ) -> D:
        """Read-merge-write.

        Without ``expected_version`` this races: concurrent writers both
        succeed and the later write wins. With it, a stale version or a write
        that slipped in after our read raises ConflictError.
        """
        return await self._modify(
            owner,
            entity_id,
            lambda current: patch,
            actor=actor,
            expected_version=expected_version,
            verb=VerbName.UPDATED,
        )

    async def soft_delete(
        self,
        owner: str,
        entity_id: str,
        *,
        actor: str | None = None,
        expected_version: int | None = None,
    ) -> D:
        """Mark deleted; the blob stays so historical statements still resolve.

        Idempotent: deleting twice keeps ``status=deleted`` and bumps the version.
        """
        current, etag = await self._read_with_etag(owner, entity_id)
        self._check_version(current, expected_version)
        now = utc_now()
        doc = current.model_copy(update={
            "status": DocumentStatus.DELETED,
            "deleted_at": current.deleted_at or now,
            "deleted_by": current.deleted_by or actor or owner,
            "updated_at": now,
            "version": current.version + 1,
        })
        await self._write(owner, doc, if_match=etag if expected_version is not None else None)
        await self._announce(
            VerbName.DELETED, owner, doc,
            actor=actor,
            extensions=self.announcement_extensions(VerbName.DELETED, doc),
        )
        logger.info(
            "document_deleted",
            entity_type=self.model.entity_type.value, entity_id=doc.id, owner=owner,
        )
        return doc

    # ----- Internals -----

    async def _modify(
        self,
        owner: str,
        entity_id: str,
        build_patch: Callable[[D], Mapping[str, Any]],
        *,
        actor: str | None,
        expected_version: int | None,
        verb: VerbName,
        announce: Callable[[D, D], Mapping[str, Any]] | None = None,
    ) -> D:
        """Shared read-merge-write path.

        ``build_patch`` sees the stored document; ``announce`` sees the stored
        and the written document and returns extra ``StatementFactory.build``
        arguments (extensions, team, parent, other) for the announcement.
        """
        current, etag = await self._read_with_etag(owner, entity_id)
        self._check_version(current, expected_version)
        patch = build_patch(current)
        merged = merge_patch(current, patch)
        merged["version"] = current.version + 1
        merged["updatedAt"] = to_jsonable_python(utc_now())
        doc: D = validate_document(self.model, merged)
        await self._write(owner, doc, if_match=etag if expected_version is not None else None)
        extra = dict(announce(current, doc)) if announce is not None else {}
        extra.setdefault("extensions", self.announcement_extensions(verb, doc))
        await self._announce(verb, owner, doc, actor=actor, **extra)
        logger.info(
            "document_updated",
            entity_type=self.model.entity_type.value, entity_id=doc.id,
            version=doc.version, verb=verb.value, fields=sorted(patch.keys()),
        )
        return doc

    async def _read_with_etag(self, owner: str, entity_id: str) -> tuple[D, str | None]:
        try:
            blob = await self._client.get_blob(
                owner,
                BlobNamespace.ACTIVITY_STATE,
                self.model.state_id,
                activity_id=self.activity_id(entity_id),
            )
        except NotFoundError:
            raise NotFoundError(
                f"{self.model.entity_type.value} {entity_id} not found",
                owner=owner, entity_id=entity_id,
            ) from None
        try:
            doc = self.model.model_validate_json(blob.content)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Stored {self.model.entity_type.value} {entity_id} is malformed",
                entity_id=entity_id,
            ) from exc
        return doc, blob.etag  # type: ignore[return-value]

    async def _write(self, owner: str, doc: D, *, if_match: str | None = None) -> None:
        await self._client.put_blob(
            owner,
            BlobNamespace.ACTIVITY_STATE,
            self.model.state_id,
            doc.model_dump_json(by_alias=True).encode(),
            activity_id=self.activity_id(doc.id),
            if_match=if_match,
        )

    async def _announce(
        self,
        verb: VerbName,
        owner: str,
        doc: D,
        *,
        actor: str | None = None,
        extensions: Extensions | None = None,
        **build: Any,
    ) -> str:
        """Append ``verb`` on the entity IRI, stamping the owner key.

        The entity type's collection activity goes under ``grouping`` so
        per-type listings can filter on it.
        """
        ext = (extensions or Extensions()).model_copy(update={"owner": owner.lower()})
        build.setdefault("grouping", [self._statements.collection(self.model.entity_type)])
        statement = self._statements.build(
            actor or owner, verb, self.activity(doc), extensions=ext, **build,
        )
        return await self._client.append(statement)

    @staticmethod
    def _check_version(current: StateDocument, expected_version: int | None) -> None:
        if expected_version is not None and current.version != expected_version:
            raise ConflictError(
                f"Version mismatch: expected {expected_version}, stored {current.version}",
                entity_id=current.id,
                expected=expected_version,
                stored=current.version,
            )
