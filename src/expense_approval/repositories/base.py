"""Base repository with common CRUD operations.

Provides a generic async repository pattern for SQLAlchemy models.
"""

from typing import Any, Generic, Iterable, Sequence, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from expense_approval.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Generic async repository with common CRUD operations.

    Repositories never commit: the calling service owns the transaction
    and decides when to commit or roll back.

    Example:
        repo = ApprovalInstanceRepository(session)
        instance = await repo.get_by_id(instance_id)
        pending = await repo.get_by_filter(status="PENDING")
    """

    model: type[ModelType]

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with async session.

        @param session - SQLAlchemy async session
        """
        self.session = session

    def _filtered(self, stmt: Select, filters: dict[str, Any]) -> Select:
        """Apply column=value filters, ignoring None values."""
        for key, value in filters.items():
            if hasattr(self.model, key) and value is not None:
                stmt = stmt.where(getattr(self.model, key) == value)
        return stmt

    async def get_by_id(self, id: Any) -> ModelType | None:
        """Get record by primary key.

        @param id - Primary key value
        @returns Model instance or None if not found
        """
        return await self.session.get(self.model, id)

    async def get_by_ids(self, ids: Iterable[Any]) -> dict[Any, ModelType]:
        """Get records by primary key in a single query.

        @param ids - Primary key values
        @returns Mapping of primary key to model instance
        """
        wanted = list(set(ids))
        if not wanted:
            return {}
        stmt = select(self.model).where(self.model.id.in_(wanted))
        result = await self.session.execute(stmt)
        return {obj.id: obj for obj in result.scalars().all()}

    async def get_by_filter(
        self,
        *,
        skip: int = 0,
        limit: int = 100,
        order_by: Any | None = None,
        **filters: Any,
    ) -> Sequence[ModelType]:
        """Get records matching filter criteria.

        @param skip - Number of records to skip
        @param limit - Maximum records to return
        @param order_by - Column to order by
        @param filters - Key-value pairs for filtering (column=value)
        @returns List of matching model instances
        """
        stmt = self._filtered(select(self.model), filters)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        stmt = stmt.offset(skip).limit(limit)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_one_by_filter(self, **filters: Any) -> ModelType | None:
        """Get single record matching filter criteria.

        @param filters - Key-value pairs for filtering
        @returns Model instance or None if not found
        """
        stmt = self._filtered(select(self.model), filters).limit(1)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def create(self, obj_in: dict[str, Any] | ModelType) -> ModelType:
        """Create new record.

        @param obj_in - Dictionary or model instance with data
        @returns Created model instance
        """
        db_obj = self.model(**obj_in) if isinstance(obj_in, dict) else obj_in
        self.session.add(db_obj)
        await self.session.flush()
        return db_obj

    async def update(
        self, id: Any, obj_in: dict[str, Any], *, exclude_unset: bool = True
    ) -> ModelType | None:
        """Update existing record.

        @param id - Primary key of record to update
        @param obj_in - Dictionary with update data
        @param exclude_unset - If True, only update non-None values
        @returns Updated model instance or None if not found
        """
        db_obj = await self.get_by_id(id)
        if db_obj is None:
            return None

        update_data = obj_in
        if exclude_unset:
            update_data = {k: v for k, v in obj_in.items() if v is not None}

        for key, value in update_data.items():
            if hasattr(db_obj, key):
                setattr(db_obj, key, value)

        await self.session.flush()
        return db_obj

    async def count(self, **filters: Any) -> int:
        """Count records matching criteria.

        @param filters - Key-value pairs for filtering
        @returns Number of matching records
        """
        stmt = self._filtered(select(func.count()).select_from(self.model), filters)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def exists(self, **filters: Any) -> bool:
        """Check if record exists matching criteria.

        @param filters - Key-value pairs for filtering
        @returns True if exists, False otherwise
        """
        return await self.count(**filters) > 0
