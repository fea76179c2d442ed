# Overview: Generic lookup/soft-delete helper composed into services per entity type.

from __future__ import annotations

from typing import Generic, TypeVar

from ..extensions import db
from ..models.base import active
from ..validation import NotFoundError
from .concurrency import lock_for_update

T = TypeVar("T")


class Repository(Generic[T]):
    """
    Thin CRUD helper parametrized by model.

    Services hold one of these per entity (`_invoices = Repository(Invoice, "Invoice")`)
    rather than inheriting from a base service.
    """

    def __init__(self, model: type[T], label: str | None = None):
        self.model = model
        self.label = label or model.__name__

    def query(self, include_inactive: bool = False):
        if include_inactive or not hasattr(self.model, "is_active"):
            return db.session.query(self.model)
        return active(self.model)

    def get(self, entity_id: int, *, include_inactive: bool = False) -> T | None:
        return self.query(include_inactive).filter(self.model.id == entity_id).first()

    def require(self, entity_id: int, *, for_update: bool = False, include_inactive: bool = False) -> T:
        """Fetch by id or raise NotFoundError. `for_update` takes a row lock."""
        query = self.query(include_inactive).filter(self.model.id == entity_id)
        if for_update:
            query = lock_for_update(query)
        entity = query.first()
        if entity is None:
            raise NotFoundError(f"{self.label} {entity_id} not found")
        return entity

    def add(self, entity: T) -> T:
        db.session.add(entity)
        db.session.flush()
        return entity

    def soft_delete(self, entity_id: int) -> T:
        entity = self.require(entity_id, for_update=True)
        entity.deactivate()
        db.session.commit()
        return entity
