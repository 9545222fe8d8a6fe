from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Mapping

from .errors import FormConfigurationError
from .fields import Field
from .messages import MessageBag
from .paths import get_path
from .prepare import UpdatePreparer
from .values import MISSING, REMOVE_FLAG_NAME, is_removal_flagged

if TYPE_CHECKING:
    from .registry import FieldRegistry


def nested_rows(value: Any) -> list[tuple[str, dict]]:
    """Rows of a to-many submission as ``(row_key, row)`` pairs, in input order.

    Accepts a list of row mappings or a mapping keyed by row key
    (``{"12": {...}, "new_1": {...}}``).
    """
    if isinstance(value, Mapping):
        return [(str(key), dict(row)) for key, row in value.items() if isinstance(row, Mapping)]
    if isinstance(value, (list, tuple)):
        return [(str(index), dict(row)) for index, row in enumerate(value) if isinstance(row, Mapping)]
    return []


class HasMany(Field):
    kind = "has_many"
    annotation = Any

    def __init__(
        self,
        column: str,
        label: str | None = None,
        *,
        build: Callable[["FieldRegistry"], None] | None = None,
        key_name: str = "id",
        **kwargs,
    ):
        if not isinstance(column, str) or "." in column:
            raise FormConfigurationError("Nested form column must name a relationship")
        super().__init__(column, label, **kwargs)
        self._build = build
        self.key_name = key_name
        self.nested: "FieldRegistry | None" = None

    def has_relation(self) -> bool:
        return True

    def attach(self, registry: "FieldRegistry") -> None:
        if self.nested is not None:
            raise FormConfigurationError(f'Nested form "{self._column}" is already attached')
        self.nested = registry.child()
        if self._build is not None:
            self._build(self.nested)

    def _nested_fields(self) -> tuple[Field, ...]:
        return self.nested.all() if self.nested is not None else ()

    def prepare(self, value: Any) -> Any:
        if value is MISSING:
            return MISSING
        preparer = UpdatePreparer(self._nested_fields())
        prepared: list[dict] = []
        for _, row in nested_rows(value):
            key = row.get(self.key_name)
            if is_removal_flagged(row):
                prepared.append({self.key_name: key, REMOVE_FLAG_NAME: 1})
                continue
            item = preparer.prepare(row)
            if key not in (None, ""):
                item[self.key_name] = key
            item[REMOVE_FLAG_NAME] = 0
            prepared.append(item)
        return prepared

    def validate(self, data: Any, *, creating: bool = False) -> MessageBag:
        bag = MessageBag()
        value = get_path(data, self._column)
        if value is MISSING:
            if creating and self.required:
                bag.add(self._column, self.required_message())
            return bag
        rows = [(row_key, row) for row_key, row in nested_rows(value) if not is_removal_flagged(row)]
        if self.required and not rows:
            bag.add(self._column, self.required_message())
        for row_key, row in rows:
            row_creating = creating or row.get(self.key_name) in (None, "")
            for field in self._nested_fields():
                for key, messages in field.validate(row, creating=row_creating).messages().items():
                    for message in messages:
                        bag.add(f"{self._column}.{row_key}.{key}", message)
        return bag
