"""Base repository for common CRUD operations."""

from __future__ import annotations

from typing import Any, Generic, Type, TypeVar
from uuid import UUID

from tortoise.models import Model

from leasebill.core.errors import ConcurrencyConflictError, NotFoundError

ModelType = TypeVar("ModelType", bound=Model)


class BaseRepository(Generic[ModelType]):
    """Generic repository with basic CRUD methods."""

    def __init__(self, model: Type[ModelType]):
        self.model = model

    async def get(self, pk: UUID) -> ModelType | None:
        """Get a model instance by its primary key."""
        return await self.model.get_or_none(id=pk)

    async def get_required(self, pk: UUID) -> ModelType:
        """Get a model instance by its primary key or raise ``NotFoundError``."""
        instance = await self.get(pk=pk)
        if instance is None:
            raise NotFoundError(self.model.__name__, pk)
        return instance

    async def get_or_create(
        self, defaults: dict | None = None, **kwargs
    ) -> tuple[ModelType, bool]:
        """Get or create a model instance."""
        return await self.model.get_or_create(defaults=defaults, **kwargs)

    async def all(self) -> list[ModelType]:
        """Get all model instances."""
        return await self.model.all()

    async def create(self, **kwargs) -> ModelType:
        """Create a new model instance."""
        return await self.model.create(**kwargs)

    async def delete(self, pk: UUID) -> int:
        """Delete a model instance by its primary key."""
        instance = await self.get(pk=pk)
        if instance:
            await instance.delete()
            return 1
        return 0

    async def update_versioned(
        self, instance: ModelType, expected_version: int, **changes: Any
    ) -> ModelType:
        """
        Writes ``changes`` only if the row still carries ``expected_version``.

        The row token is bumped in the same statement. On success the
        in-memory instance is updated to match the row.

        Raises:
            ConcurrencyConflictError: if another writer got there first.
        """
        updated = await self.model.filter(
            id=instance.pk, row_version=expected_version
        ).update(row_version=expected_version + 1, **changes)
        if not updated:
            raise ConcurrencyConflictError(self.model.__name__, instance.pk)
        for field_name, value in changes.items():
            setattr(instance, field_name, value)
        instance.row_version = expected_version + 1
        return instance
