from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, select
from sqlalchemy.orm import Mapped, mapped_column, object_session


def utcnow():
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class SoftDeleteMixin:
    """Rows are hidden by ``deleted_at`` instead of being removed.

    Forms detect the capability with ``issubclass(model, SoftDeleteMixin)``:
    lookups then include trashed rows, and deleting a trashed row purges it.
    """

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    def trashed(self) -> bool:
        return self.deleted_at is not None

    def soft_delete(self) -> None:
        self.deleted_at = utcnow()

    def restore(self) -> None:
        self.deleted_at = None


class SortableMixin:
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def move_order_up(self) -> bool:
        return self._swap_order(upwards=True)

    def move_order_down(self) -> bool:
        return self._swap_order(upwards=False)

    def _swap_order(self, *, upwards: bool) -> bool:
        db = object_session(self)
        if db is None:
            return False
        model = type(self)
        current = int(self.sort_order or 0)
        if upwards:
            stmt = select(model).where(model.sort_order < current).order_by(model.sort_order.desc())
        else:
            stmt = select(model).where(model.sort_order > current).order_by(model.sort_order.asc())
        neighbour = db.scalars(stmt.limit(1)).first()
        if neighbour is None:
            return False
        self.sort_order, neighbour.sort_order = neighbour.sort_order, current
        db.add_all([self, neighbour])
        db.flush()
        return True
