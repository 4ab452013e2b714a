import logging
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar, Union

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, func, select

from ....core.exceptions import DatabaseError, NotFoundError

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """
    Base repository with common CRUD operations.

    Repositories are bound to a session and only flush; the caller owns the
    transaction and commits through ``DatabaseManager.get_session``.
    """

    def __init__(self, model: Type[ModelType], session: Session):
        self.model = model
        self.session = session

    @property
    def _pk(self):
        return self.model.__table__.primary_key.columns.values()[0]

    def create(self, obj_in: Union[ModelType, Dict[str, Any]]) -> ModelType:
        """
        Create a new record.

        Raises:
            DatabaseError: If creation fails
        """
        try:
            db_obj = self.model(**obj_in) if isinstance(obj_in, dict) else obj_in

            self.session.add(db_obj)
            self.session.flush()
            return db_obj

        except SQLAlchemyError as e:
            logger.error(f"Failed to create {self.model.__name__}: {e}")
            raise DatabaseError(f"Failed to create {self.model.__name__}: {str(e)}", operation="create")

    def get(self, id: Any) -> Optional[ModelType]:
        """Get a record by primary key, or None."""
        try:
            return self.session.get(self.model, id)

        except SQLAlchemyError as e:
            logger.error(f"Failed to get {self.model.__name__} by ID {id}: {e}")
            raise DatabaseError(f"Failed to get {self.model.__name__}: {str(e)}", operation="get")

    def get_or_404(self, id: Any) -> ModelType:
        """
        Get a record by primary key.

        Raises:
            NotFoundError: If record not found
        """
        obj = self.get(id)
        if obj is None:
            raise NotFoundError(self.model.__name__, id)
        return obj

    def get_multi(
        self,
        *,
        skip: int = 0,
        limit: Optional[int] = 100,
        order_by: Optional[List[Any]] = None,
        **filters
    ) -> List[ModelType]:
        """Get multiple records with pagination and equality filters."""
        try:
            statement = select(self.model)

            for field, value in filters.items():
                if hasattr(self.model, field) and value is not None:
                    statement = statement.where(getattr(self.model, field) == value)

            if order_by:
                statement = statement.order_by(*order_by)

            statement = statement.offset(skip)
            if limit is not None:
                statement = statement.limit(limit)

            return list(self.session.exec(statement).all())

        except SQLAlchemyError as e:
            logger.error(f"Failed to get multiple {self.model.__name__}: {e}")
            raise DatabaseError(f"Failed to get {self.model.__name__} list: {str(e)}", operation="get_multi")

    def update(self, db_obj: ModelType, obj_in: Dict[str, Any]) -> ModelType:
        """Apply field updates to a loaded record."""
        try:
            for field, value in obj_in.items():
                if hasattr(db_obj, field):
                    setattr(db_obj, field, value)

            self.session.add(db_obj)
            self.session.flush()
            return db_obj

        except SQLAlchemyError as e:
            logger.error(f"Failed to update {self.model.__name__}: {e}")
            raise DatabaseError(f"Failed to update {self.model.__name__}: {str(e)}", operation="update")

    def delete(self, id: Any) -> bool:
        """Delete a record by primary key. Returns True if a row was removed."""
        try:
            statement = delete(self.model).where(self._pk == id)
            result = self.session.exec(statement)

            deleted = result.rowcount > 0
            if deleted:
                logger.debug(f"Deleted {self.model.__name__} with ID: {id}")
            return deleted

        except SQLAlchemyError as e:
            logger.error(f"Failed to delete {self.model.__name__} {id}: {e}")
            raise DatabaseError(f"Failed to delete {self.model.__name__}: {str(e)}", operation="delete")

