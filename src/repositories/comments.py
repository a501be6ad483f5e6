"""Comment repository — comments are owned by their author."""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from src.errors import ValidationError
from src.models.documents import Comment
from src.models.statement import Extensions, Result
from src.models.vocabulary import ActivityType, VerbName, resource_activity_type
from src.repositories.base import DocumentMapper, validate_document

logger = structlog.get_logger(__name__)


class CommentRepository(DocumentMapper[Comment]):
    model = Comment
    activity_type = ActivityType.COMMENT

    def display_name(self, doc: Comment) -> str:
        return "Comment"

    async def add_comment(
        self,
        author: str,
        target_type: str,
        target_id: str,
        content: str,
        *,
        author_name: str | None = None,
        parent_comment_id: str | None = None,
        mentions: Sequence[str] = (),
    ) -> Comment:
        """Store the comment, then announce ``commented`` on the target.

        The statement's ``contextActivities.other`` references the comment so
        thread readers can dereference it under the author's key.
        """
        if not target_type or not target_id:
            raise ValidationError("Comment target type and id are required")
        text = (content or "").strip()
        if not text:
            raise ValidationError("Comment content is required")

        comment = await self.create(
            author,
            validate_document(Comment, dict(
                target_type=target_type,
                target_id=target_id,
                content=text,
                author=author.lower(),
                author_name=author_name,
                parent_comment_id=parent_comment_id,
                mentions=[m.lower() for m in mentions],
            )),
        )
        statement = self._statements.build(
            author,
            VerbName.COMMENTED,
            self._statements.activity(
                target_type,
                target_id,
                activity_type=resource_activity_type(target_type),
                name=f"{target_type} {target_id}",
            ),
            actor_name=author_name,
            result=Result(response=text),
            other=[self.activity(comment)],
            extensions=Extensions(
                mentions=comment.mentions,
                parent_comment=parent_comment_id,
                owner=author.lower(),
            ),
        )
        await self._client.append(statement)
        logger.info(
            "comment_added",
            comment_id=comment.id, target_type=target_type, target_id=target_id,
            mentions=len(comment.mentions),
        )
        return comment
