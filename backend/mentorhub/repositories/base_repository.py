# backend/mentorhub/repositories/base_repository.py
"""
Base Repository Pattern for MentorHub

Provides the foundation for all repository classes with:
- Common CRUD operations
- Type safety with generics
- Row locking helpers for read-modify-write flows
- Query builder helpers

Repositories never commit. Services own the unit of work through
BaseService.transaction(), so a repository call always runs inside
whatever transaction the service opened.
"""

from abc import ABC, abstractmethod
import logging
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException

# Type variable for generic model support
T = TypeVar("T")

logger = logging.getLogger(__name__)


class IRepository(ABC, Generic[T]):
    """
    Abstract repository interface defining core data access methods.
    """

    @abstractmethod
    def get_by_id(self, id: str) -> Optional[T]:
        """
        Retrieve an entity by its primary key.

        Args:
            id: The primary key value

        Returns:
            The entity if found, None otherwise
        """

    @abstractmethod
    def create(self, **kwargs) -> T:
        """
        Create a new entity.

        Args:
            **kwargs: Entity attributes

        Returns:
            The created entity
        """

    @abstractmethod
    def delete(self, id: str) -> bool:
        """
        Delete an entity by its primary key.

        Returns:
            True if deleted, False if not found
        """


class BaseRepository(IRepository[T]):
    """
    Concrete base repository implementation with common data access patterns.

    Attributes:
        db: SQLAlchemy session
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        """
        Initialize repository with database session and model.

        Args:
            db: SQLAlchemy session (managed by service layer)
            model: SQLAlchemy model class
        """
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def get_by_id(self, id: str) -> Optional[T]:
        try:
            return self.db.query(self.model).filter(self.model.id == id).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting {self.model.__name__} by id {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}")

    def get_for_update(self, id: str) -> Optional[T]:
        """
        Retrieve an entity and lock its row until the transaction ends.

        SQLite has no row locks and ignores FOR UPDATE; there the database
        serializes writers instead.
        """
        try:
            return (
                self.db.query(self.model)
                .filter(self.model.id == id)
                .populate_existing()
                .with_for_update()
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to lock {self.model.__name__}: {str(e)}")

    def create(self, **kwargs) -> T:
        """
        Create a new entity.

        Note: Does NOT commit - transaction management is handled by service layer.
        IntegrityError propagates so the service can translate it into a conflict.
        """
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()  # Get ID without committing
            return entity
        except IntegrityError as exc:
            self.logger.warning("Integrity error creating %s: %s", self.model.__name__, exc)
            raise
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}")

    def bulk_create(self, entities: List[Dict[str, Any]]) -> List[T]:
        """
        Create multiple entities in one flush.

        Args:
            entities: List of entity data dictionaries

        Returns:
            List of created entities
        """
        try:
            db_entities = [self.model(**data) for data in entities]
            self.db.add_all(db_entities)
            self.db.flush()
            return db_entities
        except SQLAlchemyError as e:
            self.logger.error(f"Error bulk creating: {str(e)}")
            raise RepositoryException(f"Failed to bulk create: {str(e)}")

    def delete(self, id: str) -> bool:
        """
        Delete an entity by its primary key.

        Returns False if entity not found, raises exception for constraint violations.
        """
        try:
            entity = self.get_by_id(id)
            if not entity:
                return False

            self.db.delete(entity)
            self.db.flush()
            return True
        except IntegrityError as e:
            self.logger.error(
                f"Cannot delete {self.model.__name__} {id} due to constraints: {str(e)}"
            )
            raise RepositoryException(f"Cannot delete due to existing references: {str(e)}")
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to delete {self.model.__name__}: {str(e)}")

    def find_by(self, **kwargs) -> List[T]:
        """
        Find entities by given criteria.

        Args:
            **kwargs: Filter criteria (exact match)

        Returns:
            List of matching entities
        """
        try:
            return self.db.query(self.model).filter_by(**kwargs).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding by criteria: {str(e)}")
            raise RepositoryException(f"Failed to find records: {str(e)}")

    def find_one_by(self, **kwargs) -> Optional[T]:
        """
        Find a single entity by given criteria.

        Args:
            **kwargs: Filter criteria (exact match)

        Returns:
            First matching entity or None
        """
        try:
            return self.db.query(self.model).filter_by(**kwargs).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding one by criteria: {str(e)}")
            raise RepositoryException(f"Failed to find record: {str(e)}")

    # Protected helper methods for use by subclasses

    def _build_query(self) -> Query:
        """Get base query for the model."""
        return self.db.query(self.model)

    def _execute_query(self, query: Query) -> List[T]:
        """Execute query with error handling."""
        try:
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"Query execution error: {str(e)}")
            raise RepositoryException(f"Query failed: {str(e)}")

    def _execute_scalar(self, query: Query) -> Any:
        """Execute scalar query with error handling."""
        try:
            return query.scalar()
        except SQLAlchemyError as e:
            self.logger.error(f"Scalar query error: {str(e)}")
            raise RepositoryException(f"Scalar query failed: {str(e)}")
