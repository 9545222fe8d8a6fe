from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field
from typing import Any, Iterable, Mapping

from .fields import Field
from .paths import dot, is_assoc, set_path
from .values import MISSING

EDITABLE_KEYS = ("pk", "name", "value", "_editable")


@dataclass(frozen=True)
class SubRelationContext:
    """Forces preparation of the fields declaring one sub-relation of a child row."""

    relation_name: str
    fields: tuple[Field, ...]


@dataclass
class PreparedUpdate:
    primary: dict[str, Any] = dataclass_field(default_factory=dict)
    relations: dict[str, Any] = dataclass_field(default_factory=dict)
    raw_relations: dict[str, Any] = dataclass_field(default_factory=dict)


def _without_missing(row: Any) -> Any:
    if isinstance(row, Mapping):
        return {key: value for key, value in row.items() if value is not MISSING}
    return row


def filter_missing_values(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _without_missing(row) for key, row in value.items() if row is not MISSING}
    if isinstance(value, list):
        return [_without_missing(row) for row in value if row is not MISSING]
    return value


def is_has_one_input(inserts: Mapping[str, Any]) -> bool:
    if not inserts:
        return False
    first = next(iter(inserts.values()))
    if not isinstance(first, Mapping) or not first:
        return False
    if isinstance(next(iter(first.values())), (Mapping, list, tuple)):
        return False
    return is_assoc(first)


def gather_by_root(inputs: Mapping[str, Any], roots: Iterable[str]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split input into ``(others, gathered)`` by the first path segment of each key.

    Flat keys such as ``"detail.summary"`` are folded into ``gathered["detail"]``
    next to any nested mapping submitted under the root itself.
    """
    roots = set(roots)
    others: dict[str, Any] = {}
    gathered: dict[str, Any] = {}
    flat: list[tuple[str, Any]] = []
    for key, value in inputs.items():
        root = str(key).split(".")[0]
        if root not in roots:
            others[key] = value
        elif key == root:
            gathered[root] = dict(value) if isinstance(value, Mapping) else value
        else:
            flat.append((str(key), value))

    for key, value in flat:
        root = key.split(".")[0]
        current = gathered.get(root)
        if isinstance(current, (list, tuple)):
            gathered[root] = {str(index): row for index, row in enumerate(current)}
        elif not isinstance(current, dict):
            gathered[root] = {}
        set_path(gathered, key, value)
    return others, gathered


def handle_editable_input(data: Mapping[str, Any]) -> dict[str, Any]:
    """Rewrite an inline single-field edit into ``{name: value}``."""
    if "_editable" not in data:
        return dict(data)
    rewritten = {key: value for key, value in data.items() if key not in EDITABLE_KEYS}
    name = str(data.get("name") or "").strip()
    if name:
        set_path(rewritten, name, data.get("value"))
    return rewritten


class UpdatePreparer:
    def __init__(self, fields: Iterable[Field], relation_names: Iterable[str] = ()):
        self.fields = tuple(fields)
        self.relation_names = tuple(relation_names)
        self._roots = {name.split(".")[0] for name in self.relation_names}

    def is_relation_field(self, field: Field) -> bool:
        if field.has_relation():
            return True
        return any(path.split(".")[0] in self._roots for path in field.columns)

    def find_field(self, column: str) -> Field | None:
        for field in self.fields:
            if column in field.columns:
                return field
        return None

    def prepare(
        self,
        updates: Mapping[str, Any],
        relation_mode: bool = False,
        sub_relation: SubRelationContext | None = None,
        must_prepare: Iterable[str] = (),
    ) -> dict[str, Any]:
        must_prepare = set(must_prepare)
        fields = sub_relation.fields if sub_relation is not None else self.fields
        prepared: dict[str, Any] = {}

        for field in fields:
            if sub_relation is None and self.is_relation_field(field) != relation_mode:
                continue

            value = field.extract(updates)
            if value is MISSING and (field.is_composite or field.column not in must_prepare):
                continue

            value = field.prepare(value)
            if value is not MISSING and relation_mode:
                value = field.prepare_relation(value)
            if value is MISSING:
                continue

            if field.is_composite:
                for name, path in field.column.items():
                    item = value.get(name, MISSING)
                    if item is not MISSING:
                        set_path(prepared, path, filter_missing_values(item))
            else:
                set_path(prepared, field.column, filter_missing_values(value))

        return prepared

    def split(
        self,
        inputs: Mapping[str, Any],
        relation_keys: Iterable[str],
        must_prepare: Iterable[str] = (),
    ) -> PreparedUpdate:
        relation_keys = list(dict.fromkeys(relation_keys))
        must_prepare = set(must_prepare)
        primary_input, raw_relations = gather_by_root(inputs, relation_keys)

        result = PreparedUpdate(primary=self.prepare(primary_input), raw_relations=raw_relations)
        for name in relation_keys:
            if name in raw_relations:
                prepared = self.prepare({name: raw_relations[name]}, relation_mode=True)
            elif name in must_prepare:
                prepared = self.prepare({}, relation_mode=True, must_prepare=(name,))
            else:
                continue
            if name in prepared:
                result.relations[name] = prepared[name]
        return result

    def prepare_insert(self, inserts: Mapping[str, Any]) -> dict[str, Any]:
        if is_has_one_input(inserts):
            inserts = dot(inserts)

        prepared: dict[str, Any] = {}
        for column, value in inserts.items():
            field = self.find_field(column)
            if field is None:
                continue
            value = field.transform(value) if field.is_composite else field.prepare(value)
            if value is not MISSING:
                set_path(prepared, column, value)
        return prepared
