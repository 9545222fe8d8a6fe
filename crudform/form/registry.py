from __future__ import annotations

from typing import Any, Iterator

from crudform.core.config import settings

from .errors import FormConfigurationError
from .fields import FIELD_TYPES, Field, RangeField
from .nested import HasMany

FIELD_KINDS: dict[str, type[Field]] = {**FIELD_TYPES, "has_many": HasMany}


class FieldRegistry:
    """Ordered field declarations of one form level.

    Nested ``has_many`` forms get a child registry one level deeper; the depth
    is capped when the child is created.
    """

    def __init__(self, *, depth: int = 0, max_depth: int | None = None):
        self.depth = depth
        self.max_depth = settings.FORM_MAX_NESTING_DEPTH if max_depth is None else int(max_depth)
        self._fields: list[Field] = []

    def __iter__(self) -> Iterator[Field]:
        return iter(tuple(self._fields))

    def __len__(self) -> int:
        return len(self._fields)

    def child(self) -> "FieldRegistry":
        if self.depth + 1 > self.max_depth:
            raise FormConfigurationError(f"Nested forms are limited to {self.max_depth} levels")
        return FieldRegistry(depth=self.depth + 1, max_depth=self.max_depth)

    def register(self, field: Field) -> Field:
        if isinstance(field, HasMany):
            field.attach(self)
        self._fields.append(field)
        return field

    def add(self, kind: str, column: Any, label: str | None = None, **options) -> Field:
        field_cls = FIELD_KINDS.get(kind)
        if field_cls is None:
            raise FormConfigurationError(f'Unknown field kind "{kind}"')
        if issubclass(field_cls, RangeField):
            try:
                start, end = column
            except (TypeError, ValueError):
                raise FormConfigurationError(f'Field "{kind}" needs a (start, end) column pair')
            return self.register(field_cls(start, end, label, **options))
        return self.register(field_cls(column, label, **options))

    def all(self) -> tuple[Field, ...]:
        return tuple(self._fields)

    def find_by_column(self, column: str) -> Field | None:
        for field in self._fields:
            if field.is_composite:
                if column in field.columns:
                    return field
            elif field.column == column:
                return field
        return None

    def file_fields(self) -> list[Field]:
        return [field for field in self._fields if field.owns_files()]

    def must_prepare_columns(self) -> list[str]:
        return [field.column for field in self._fields if field.must_prepare and not field.is_composite]
