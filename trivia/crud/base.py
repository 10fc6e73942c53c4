from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession


TModel = TypeVar("TModel")
TCreate = TypeVar("TCreate")


def _to_dict(obj: Any, *, exclude_unset: bool = True) -> dict[str, Any]:
    """Best-effort conversion for Pydantic models / plain dict payloads."""

    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    if isinstance(obj, BaseModel):
        return obj.model_dump(exclude_unset=exclude_unset)

    return dict(vars(obj))


class BaseCRUD(Generic[TModel, TCreate]):
    """Generic CRUD helper for SQLAlchemy (async).

    Methods do NOT commit. Callers (services) own transaction boundaries, and
    enqueue follow-up tasks only after their commit succeeded.
    """

    def __init__(self, model: type[TModel]) -> None:
        self.model = model

    async def create(self, session: AsyncSession, *, obj_in: TCreate | dict[str, Any]) -> TModel:
        data = _to_dict(obj_in)
        db_obj = self.model(**data)  # type: ignore[call-arg]
        session.add(db_obj)
        await session.flush()
        return db_obj

    async def get(self, session: AsyncSession, *, id: Any) -> TModel | None:
        return await session.get(self.model, id)
