"""
Chat message repository - the record store.

Messages are append-only. The only mutators are ``append`` and the
delete methods, and every delete is a single set-based statement so a
concurrent reader sees either the old window or the new one.
"""

import json
import logging
from collections.abc import Collection, Iterator
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from buildlens.db.codec import encode_document, encode_metadata
from buildlens.db.repositories.base import BaseRepository
from buildlens.exceptions import ContentEncodingError, InvalidQueryError, UnsafeDeletionError
from buildlens.models.db import ChatMessage, MessageKind, utcnow

logger = logging.getLogger(__name__)

BUILD_LOG_DATA = "build_log_data"


def _require_conversation_id(conversation_id: Optional[str]) -> str:
    if conversation_id is None or not str(conversation_id).strip():
        raise InvalidQueryError("conversation_id must be a non-empty string")
    return conversation_id


class ChatMessageRepository(BaseRepository[ChatMessage]):
    """Repository for ChatMessage records."""

    def __init__(self, session: Session):
        super().__init__(ChatMessage, session)

    # ===== Writes =====

    def append(
        self,
        conversation_id: str,
        build_number: int,
        kind: MessageKind | str,
        content: Any,
        metadata: Optional[dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> int:
        """
        Append a message to the store.

        Args:
            conversation_id: Job name the message belongs to
            build_number: Jenkins build number
            kind: USER or ASSISTANT
            content: Content document, or JSON text
            metadata: Optional free-form metadata
            timestamp: Logical creation time (defaults to now)

        Returns:
            The auto-assigned message id

        Raises:
            InvalidQueryError: If the conversation id or kind is invalid
            ContentEncodingError: If content or metadata cannot be serialized
        """
        _require_conversation_id(conversation_id)
        try:
            kind = MessageKind(kind)
        except ValueError as e:
            raise InvalidQueryError(f"Unknown message kind: {kind!r}") from e

        if isinstance(content, str):
            try:
                json.loads(content)
            except ValueError as e:
                raise ContentEncodingError("content", f"not valid JSON text: {e}") from e
            content_json = content
        else:
            content_json = encode_document(content)

        message = self.create(
            conversation_id=conversation_id,
            build_number=build_number,
            message_type=kind,
            content_json=content_json,
            metadata_json=encode_metadata(metadata),
            timestamp=timestamp or utcnow(),
        )
        logger.debug(
            f"Appended {kind.value} message {message.id} for "
            f"{conversation_id}#{build_number}"
        )
        return message.id

    # ===== Reads =====

    def messages_for(self, conversation_id: str, since_n: int) -> List[ChatMessage]:
        """
        Get the ``since_n`` most recent messages of a conversation.

        Returns:
            Messages in chronological order (timestamp, then id)
        """
        _require_conversation_id(conversation_id)
        if since_n <= 0:
            return []

        recent = (
            select(ChatMessage.id)
            .where(ChatMessage.conversation_id == conversation_id)
            .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())
            .limit(since_n)
        )
        return list(
            self.session.scalars(
                select(ChatMessage)
                .where(ChatMessage.id.in_(recent))
                .order_by(ChatMessage.timestamp.asc(), ChatMessage.id.asc())
            )
        )

    def count_for_conversation(self, conversation_id: str) -> int:
        """Count all messages of a conversation."""
        return (
            self.session.scalar(
                select(func.count(ChatMessage.id)).where(
                    ChatMessage.conversation_id == conversation_id
                )
            )
            or 0
        )

    def distinct_conversation_ids(self) -> set[str]:
        """Get every conversation id that has at least one message."""
        return set(self.session.scalars(select(ChatMessage.conversation_id).distinct()))

    def distinct_job_names(self) -> List[str]:
        """Get every job name that has at least one message, sorted."""
        return list(
            self.session.scalars(
                select(ChatMessage.conversation_id)
                .distinct()
                .order_by(ChatMessage.conversation_id)
            )
        )

    def build_messages(
        self,
        conversation_id: str,
        build_number: int,
        kind: Optional[MessageKind] = None,
    ) -> List[ChatMessage]:
        """Get the messages of one build in chronological order."""
        stmt = select(ChatMessage).where(
            ChatMessage.conversation_id == conversation_id,
            ChatMessage.build_number == build_number,
        )
        if kind is not None:
            stmt = stmt.where(ChatMessage.message_type == kind)
        stmt = stmt.order_by(ChatMessage.timestamp.asc(), ChatMessage.id.asc())
        return list(self.session.scalars(stmt))

    def latest_assistant_message(
        self, conversation_id: str, build_number: Optional[int] = None
    ) -> Optional[ChatMessage]:
        """
        Get the most recent analysis for a build, or for a whole job when
        ``build_number`` is None.
        """
        stmt = select(ChatMessage).where(
            ChatMessage.conversation_id == conversation_id,
            ChatMessage.message_type == MessageKind.ASSISTANT,
        )
        if build_number is not None:
            stmt = stmt.where(ChatMessage.build_number == build_number)
        stmt = stmt.order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc()).limit(1)
        return self.session.scalars(stmt).first()

    def latest_assistant_per_build(self) -> List[ChatMessage]:
        """Get the most recent analysis of every build of every job."""
        ranked = select(
            ChatMessage.id,
            func.row_number()
            .over(
                partition_by=(ChatMessage.conversation_id, ChatMessage.build_number),
                order_by=(ChatMessage.timestamp.desc(), ChatMessage.id.desc()),
            )
            .label("rn"),
        ).where(ChatMessage.message_type == MessageKind.ASSISTANT).subquery()

        return list(
            self.session.scalars(
                select(ChatMessage)
                .join(ranked, ranked.c.id == ChatMessage.id)
                .where(ranked.c.rn == 1)
                .order_by(ChatMessage.conversation_id, ChatMessage.build_number)
            )
        )

    def last_activity_per_job(self) -> dict[str, datetime]:
        """Map each conversation to the timestamp of its newest message."""
        rows = self.session.execute(
            select(ChatMessage.conversation_id, func.max(ChatMessage.timestamp)).group_by(
                ChatMessage.conversation_id
            )
        )
        return {conversation_id: last for conversation_id, last in rows}

    def status_bearing_messages(self, batch_size: int = 500) -> Iterator[ChatMessage]:
        """
        Stream messages that may record a CI result.

        Pre-filters on the raw JSON text, newest first within each build.
        """
        stmt = (
            select(ChatMessage)
            .where(
                or_(
                    ChatMessage.content_json.contains('"buildMetadata"', autoescape=True),
                    ChatMessage.content_json.contains('"build_info"', autoescape=True),
                )
            )
            .order_by(
                ChatMessage.conversation_id,
                ChatMessage.build_number,
                ChatMessage.timestamp.desc(),
                ChatMessage.id.desc(),
            )
        )
        yield from self.session.scalars(stmt.execution_options(yield_per=batch_size))

    def count_user_messages(self, conversation_id: str, build_number: int) -> int:
        """Count collected (USER) messages of a build."""
        return (
            self.session.scalar(
                select(func.count(ChatMessage.id)).where(
                    ChatMessage.conversation_id == conversation_id,
                    ChatMessage.build_number == build_number,
                    ChatMessage.message_type == MessageKind.USER,
                )
            )
            or 0
        )

    def count_build_log_chunks(self, conversation_id: str, build_number: int) -> int:
        """Count stored ``build_log_data`` chunks of a build."""
        return sum(
            1
            for message in self.build_messages(
                conversation_id, build_number, kind=MessageKind.USER
            )
            if message.content.get("type") == BUILD_LOG_DATA
        )

    # ===== Deletes =====

    def delete_where_not_in_top_n(self, conversation_id: str, n: int) -> int:
        """
        Delete every message of a conversation except the ``n`` most recent.

        Runs as one DELETE with the keep-set as a subquery, so the window
        is trimmed atomically.

        Returns:
            Number of deleted messages
        """
        _require_conversation_id(conversation_id)
        if n < 1:
            raise InvalidQueryError(f"keep must be a positive integer, got {n}")

        keep = (
            select(ChatMessage.id)
            .where(ChatMessage.conversation_id == conversation_id)
            .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())
            .limit(n)
        )
        result = self.session.execute(
            delete(ChatMessage)
            .where(
                ChatMessage.conversation_id == conversation_id,
                ChatMessage.id.not_in(keep),
            )
            .execution_options(synchronize_session=False)
        )
        return max(result.rowcount or 0, 0)

    def delete_by_conversation(self, conversation_id: str) -> int:
        """Delete all messages of one conversation."""
        _require_conversation_id(conversation_id)
        result = self.session.execute(
            delete(ChatMessage)
            .where(ChatMessage.conversation_id == conversation_id)
            .execution_options(synchronize_session=False)
        )
        return max(result.rowcount or 0, 0)

    def delete_by_conversations(self, conversation_ids: Collection[str]) -> int:
        """
        Delete all messages of an explicit set of conversations.

        An empty collection is a no-op.

        Raises:
            UnsafeDeletionError: If ``conversation_ids`` is not a finite
                collection of ids (None or a bare string)
        """
        if conversation_ids is None or isinstance(conversation_ids, (str, bytes)):
            raise UnsafeDeletionError(
                "delete_by_conversations needs an explicit collection of conversation ids"
            )
        ids = {cid for cid in conversation_ids}
        if not ids:
            return 0
        for cid in ids:
            _require_conversation_id(cid)

        result = self.session.execute(
            delete(ChatMessage)
            .where(ChatMessage.conversation_id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        return max(result.rowcount or 0, 0)
