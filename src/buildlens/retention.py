"""
Retention manager.

Bounds the record store: a sliding window of the newest messages per
conversation, plus purges for conversations whose job is gone upstream.
"""

import logging
from collections.abc import Collection
from dataclasses import dataclass

from sqlalchemy.orm import Session

from buildlens.config import settings
from buildlens.db.repositories.chat_message import ChatMessageRepository
from buildlens.exceptions import InvalidQueryError

logger = logging.getLogger(__name__)


@dataclass
class RetentionReport:
    conversations: int = 0
    deleted: int = 0


class RetentionManager:
    """Deletes messages that fall outside the retention policy."""

    def __init__(self, session: Session):
        self.session = session
        self.repository = ChatMessageRepository(session)

    def trim(self, conversation_id: str, keep: int) -> int:
        """
        Keep only the ``keep`` most recent messages of a conversation.

        Returns:
            Number of deleted messages

        Raises:
            InvalidQueryError: If keep is not a positive integer
        """
        if keep is None or keep < 1:
            raise InvalidQueryError(f"keep must be a positive integer, got {keep}")
        return self.repository.delete_where_not_in_top_n(conversation_id, keep)

    def trim_all(self, keep: int | None = None) -> RetentionReport:
        """Trim every conversation to the configured window."""
        keep = settings.retention_max_messages_per_conversation if keep is None else keep
        if keep < 1:
            raise InvalidQueryError(f"keep must be a positive integer, got {keep}")

        report = RetentionReport()
        for conversation_id in sorted(self.repository.distinct_conversation_ids()):
            report.conversations += 1
            report.deleted += self.repository.delete_where_not_in_top_n(conversation_id, keep)

        logger.info(
            f"Retention pass trimmed {report.conversations} conversations "
            f"to {keep} messages, deleted {report.deleted}"
        )
        return report

    def purge_conversation(self, conversation_id: str) -> int:
        """Delete every message of one conversation."""
        deleted = self.repository.delete_by_conversation(conversation_id)
        logger.info(f"Purged {deleted} messages of {conversation_id}")
        return deleted

    def purge_conversations(self, conversation_ids: Collection[str]) -> int:
        """
        Delete every message of an explicit set of conversations.

        An empty set deletes nothing. None or a bare string raises
        UnsafeDeletionError rather than being read as a wildcard.
        """
        deleted = self.repository.delete_by_conversations(conversation_ids)
        if deleted:
            logger.info(
                f"Purged {deleted} messages of {len(conversation_ids)} conversations"
            )
        return deleted
