"""
Repository layer for database operations.
"""

from buildlens.db.repositories.base import BaseRepository
from buildlens.db.repositories.chat_message import ChatMessageRepository
from buildlens.db.repositories.views import ALL_JOBS, ViewRepository

__all__ = [
    "ALL_JOBS",
    "BaseRepository",
    "ChatMessageRepository",
    "ViewRepository",
]
