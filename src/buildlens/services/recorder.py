"""
Producer write path.

The log collector and the AI analysis step hand their output to
MessageRecorder, which normalizes it into chat_messages rows. Unlike the
read side this path fails loudly: a rejected write raises.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, List, Optional

from sqlalchemy.orm import Session

from buildlens.db.codec import clean_json_string
from buildlens.db.repositories.chat_message import ChatMessageRepository
from buildlens.exceptions import InvalidQueryError
from buildlens.models.db import ChatMessage, MessageKind

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 10_000_000


@dataclass
class IncomingMessage:
    """A message as produced upstream, before normalization."""

    kind: MessageKind
    content: Any  # dict, or raw text (possibly JSON wrapped in a code fence)
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None


def resolve_build_number(metadata: Optional[dict[str, Any]], conversation_id: str) -> int:
    """
    Read ``build_number`` from message metadata.

    Accepts an int or a numeric string; anything else yields 0.
    """
    value = (metadata or {}).get("build_number")
    if isinstance(value, bool):
        value = None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            logger.warning(
                f"Invalid build_number format: {value!r} for {conversation_id}, using default 0"
            )
            return 0
    logger.warning(f"Missing build_number for {conversation_id}, using default 0")
    return 0


def normalize_content(kind: MessageKind, content: Any, conversation_id: str) -> Any:
    """
    Turn producer output into a content document.

    Text is decoded as JSON, after stripping Markdown fences from AI
    output. Text that is not JSON is kept under a ``text`` key. Oversized
    text is cut to MAX_CONTENT_LENGTH characters and kept as text, since
    a cut JSON body no longer parses.
    """
    if not isinstance(content, str):
        return content

    if len(content) > MAX_CONTENT_LENGTH:
        logger.warning(
            f"Truncating content for {conversation_id} from {len(content)} "
            f"to {MAX_CONTENT_LENGTH} characters"
        )
        return {"text": content[:MAX_CONTENT_LENGTH], "truncated": True}

    text = clean_json_string(content) if kind == MessageKind.ASSISTANT else content
    try:
        return json.loads(text)
    except ValueError:
        logger.debug(f"Storing non-JSON {kind.value} content for {conversation_id} as text")
        return {"text": content}


class MessageRecorder:
    """Writes producer messages into the record store."""

    def __init__(self, session: Session):
        self.session = session
        self.repository = ChatMessageRepository(session)

    def record(
        self,
        conversation_id: str,
        kind: MessageKind | str,
        content: Any,
        metadata: Optional[dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> int:
        """
        Store one message.

        Returns:
            The new message id

        Raises:
            InvalidQueryError: If the conversation id, kind or content is missing
            ContentEncodingError: If the content cannot be serialized
        """
        if not conversation_id or not conversation_id.strip():
            raise InvalidQueryError("Conversation ID must not be empty")
        try:
            kind = MessageKind(kind)
        except ValueError as e:
            raise InvalidQueryError(f"Unknown message kind: {kind!r}") from e
        if content is None:
            raise InvalidQueryError(f"Message content is missing for {conversation_id}")

        build_number = resolve_build_number(metadata, conversation_id)
        document = normalize_content(kind, content, conversation_id)
        return self.repository.append(
            conversation_id,
            build_number,
            kind,
            document,
            metadata=metadata,
            timestamp=timestamp,
        )

    def record_many(
        self, conversation_id: str, messages: Iterable[IncomingMessage]
    ) -> List[int]:
        """Store a batch of messages; messages without content are skipped."""
        ids: List[int] = []
        for message in messages:
            if message.content is None:
                logger.warning(
                    f"Message content is null for {conversation_id}, skipping"
                )
                continue
            ids.append(
                self.record(
                    conversation_id,
                    message.kind,
                    message.content,
                    metadata=message.metadata,
                    timestamp=message.timestamp,
                )
            )
        return ids

    def history(self, conversation_id: str, last_n: int) -> List[ChatMessage]:
        """The ``last_n`` most recent messages, oldest first."""
        return self.repository.messages_for(conversation_id, last_n)

    def clear(self, conversation_id: str) -> int:
        deleted = self.repository.delete_by_conversation(conversation_id)
        logger.debug(f"Cleared {deleted} messages for {conversation_id}")
        return deleted

    def has_two_build_logs(self, conversation_id: str, build_number: int) -> bool:
        """Whether exactly two build log chunks were stored for a build."""
        if build_number < 0:
            raise InvalidQueryError("Build number must be non-negative")
        count = self.repository.count_build_log_chunks(conversation_id, build_number)
        logger.debug(
            f"Found {count} build_log_data logs for {conversation_id}#{build_number}"
        )
        return count == 2
