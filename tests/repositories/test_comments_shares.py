"""Tests for CommentRepository and ShareRepository."""

import pytest

from src.errors import ValidationError
from src.lrs.client import EventLogClient
from src.models.statement import StatementQuery
from src.models.vocabulary import ActivityType, VerbName, verb_iri
from src.repositories.comments import CommentRepository
from src.repositories.shares import ShareRepository


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ALICE = "alice@hulab.edu.hk"
BOB = "bob@hulab.edu.hk"
CAROL = "carol@hulab.edu.hk"


# ===================================================================
# Comments
# ===================================================================


class TestComments:
    @pytest.mark.anyio
    async def test_add_comment(self, comments: CommentRepository) -> None:
        comment = await comments.add_comment(
            ALICE, "project", "p1", "  Looks good  ", mentions=["Bob@HuLab.edu.hk"],
        )
        assert comment.content == "Looks good"
        assert comment.author == ALICE
        assert comment.mentions == [BOB]
        assert comment.version == 1
        stored = await comments.read(ALICE, comment.id)
        assert stored == comment

    @pytest.mark.anyio
    async def test_commented_statement_on_target(
        self, comments: CommentRepository, client: EventLogClient, statements,
    ) -> None:
        comment = await comments.add_comment(ALICE, "project", "p1", "Hi", parent_comment_id="c0")
        [commented] = await client.collect(
            StatementQuery(verb=verb_iri(VerbName.COMMENTED), limit=10),
        )
        assert commented.object_id == statements.iri("project", "p1")
        assert commented.object_.activity_type == ActivityType.RESEARCH_PROJECT
        assert commented.result.response == "Hi"
        assert commented.extensions.parent_comment == "c0"
        assert commented.context_activity_ids("other") == [comments.activity_id(comment.id)]

    @pytest.mark.anyio
    async def test_empty_content_rejected(self, comments: CommentRepository) -> None:
        with pytest.raises(ValidationError):
            await comments.add_comment(ALICE, "project", "p1", "   ")

    @pytest.mark.anyio
    async def test_missing_target_rejected(self, comments: CommentRepository) -> None:
        with pytest.raises(ValidationError):
            await comments.add_comment(ALICE, "", "p1", "Hi")

    @pytest.mark.anyio
    async def test_author_and_target_are_immutable(self, comments: CommentRepository) -> None:
        comment = await comments.add_comment(ALICE, "project", "p1", "Hi")
        with pytest.raises(ValidationError):
            await comments.update(ALICE, comment.id, {"author": BOB})
        with pytest.raises(ValidationError):
            await comments.update(ALICE, comment.id, {"targetId": "p2"})
        edited = await comments.update(ALICE, comment.id, {"content": "Hello"})
        assert edited.content == "Hello"


# ===================================================================
# Shares
# ===================================================================


class TestShares:
    @pytest.mark.anyio
    async def test_share_normalises_recipients(self, shares: ShareRepository) -> None:
        record = await shares.share(
            ALICE, "document", "d1", [BOB, "CAROL@hulab.edu.hk", " bob@hulab.edu.hk "],
        )
        assert record.recipients == [BOB, CAROL]
        assert record.permissions == ["view"]
        assert record.shared_by == ALICE
        assert record.shared_at is not None

    @pytest.mark.anyio
    async def test_shared_statement(
        self, shares: ShareRepository, client: EventLogClient, statements,
    ) -> None:
        record = await shares.share(ALICE, "document", "d1", [BOB], permissions=["view", "comment"])
        [shared] = await client.collect(StatementQuery(verb=verb_iri(VerbName.SHARED), limit=10))
        assert shared.object_id == statements.iri("document", "d1")
        assert shared.object_.display_name == "Shared document"
        assert shared.extensions.recipients == [BOB]
        assert shared.extensions.permissions == ["view", "comment"]
        assert shared.extensions.owner == ALICE
        assert shared.team_mboxes == ["mailto:alice@hulab.edu.hk", "mailto:bob@hulab.edu.hk"]
        assert shared.context_activity_ids("other") == [shares.activity_id(record.id)]

    @pytest.mark.anyio
    async def test_no_recipients_rejected(self, shares: ShareRepository) -> None:
        with pytest.raises(ValidationError):
            await shares.share(ALICE, "document", "d1", ["  "])

    @pytest.mark.anyio
    async def test_share_record_can_be_soft_deleted(self, shares: ShareRepository) -> None:
        record = await shares.share(ALICE, "document", "d1", [BOB])
        deleted = await shares.soft_delete(ALICE, record.id)
        assert deleted.is_deleted
