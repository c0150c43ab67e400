"""Base repository: lookups by primary key and guarded bulk updates.

Subclasses set ``model_class`` and ``not_found_error``. Writes that must
not race go through ``_conditional_update``: one UPDATE whose WHERE clause
carries every precondition, reporting how many rows it touched.
"""

from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy.orm import Query, Session

from ..database import Base
from ..exceptions import CourseGenException

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Shared repository logic for SQLAlchemy models.

    Class variables to set in subclasses:
        model_class:     The SQLAlchemy model (e.g., GenerationJob)
        not_found_error: Exception class raised by get_by_id
    """

    model_class: Type[ModelT]
    not_found_error: Type[CourseGenException]

    def __init__(self, db: Session):
        self.db = db

    def _by_id(self, entity_id: str) -> Query:
        return self.db.query(self.model_class).filter(self.model_class.id == entity_id)

    def get_by_id(self, entity_id: str) -> ModelT:
        """Get entity by primary key. Raises not_found_error if missing."""
        entity = self._by_id(entity_id).first()
        if entity is None:
            raise self.not_found_error(entity_id)
        return entity

    def get_by_id_optional(self, entity_id: str) -> Optional[ModelT]:
        return self._by_id(entity_id).first()

    def _conditional_update(self, *criteria: Any, values: dict) -> int:
        """UPDATE rows matching ``criteria``; return the affected-row count.

        Identity-map copies are expired afterwards so the next read sees the
        row as the database has it, not as this session last loaded it.
        """
        rowcount = (
            self.db.query(self.model_class)
            .filter(*criteria)
            .update(values, synchronize_session=False)
        )
        self.db.expire_all()
        return rowcount
