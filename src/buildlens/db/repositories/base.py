"""
Base repository with common read helpers.
"""

from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy import func
from sqlalchemy.orm import Session

from buildlens.models.db import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository providing the operations shared by all models.

    Records in BuildLens are immutable once written, so there is no
    generic update method.
    """

    def __init__(self, model: Type[ModelType], session: Session):
        self.model = model
        self.session = session

    def create(self, **kwargs: Any) -> ModelType:
        """
        Create and flush a new instance.

        Args:
            **kwargs: Model field values

        Returns:
            Created instance with its primary key populated
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        self.session.flush()
        return instance

    def get(self, id: Any) -> Optional[ModelType]:
        """Get an instance by primary key."""
        return self.session.get(self.model, id)

    def get_all(self, limit: Optional[int] = None, offset: int = 0) -> List[ModelType]:
        """Get all instances with optional pagination."""
        query = self.session.query(self.model).offset(offset)
        if limit:
            query = query.limit(limit)
        return query.all()

    def count(self) -> int:
        """Count all instances."""
        return self.session.query(func.count()).select_from(self.model).scalar() or 0
