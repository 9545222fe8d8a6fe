from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Iterable, Iterator, Mapping

from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.orm import RelationshipDirection, object_session

from .errors import FormConfigurationError
from .fields import Field
from .nested import HasMany, nested_rows
from .prepare import gather_by_root
from .store import assign_attributes, primary_key_name, primary_key_of
from .values import REMOVE_FLAG_NAME, is_removal_flagged

if TYPE_CHECKING:
    from .store import RecordStore
    from .writer import RelationWriter


def relationship_names(model: type) -> frozenset[str]:
    return frozenset(sa_inspect(model).relationships.keys())


class Relation:
    """One relationship of a mapped model, classified by how payloads are written."""

    variant = "relation"
    many = False

    def __init__(self, model: type, name: str, prop: Any):
        self.model = model
        self.name = name
        self.prop = prop

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.model.__name__}.{self.name})"

    @property
    def related_model(self) -> type:
        return self.prop.mapper.class_

    @property
    def primary_key_name(self) -> str:
        return primary_key_name(self.related_model)

    def apply(
        self,
        parent: Any,
        payload: Any,
        *,
        store: "RecordStore",
        writer: "RelationWriter",
        raw: Any = None,
        path: str | None = None,
    ) -> None:
        raise NotImplementedError


class ManyToManyRelation(Relation):
    variant = "many_to_many"
    many = True

    def apply(self, parent, payload, *, store, writer, raw=None, path=None) -> None:
        if payload is None:
            payload = []
        elif not isinstance(payload, (list, tuple, set)):
            payload = [payload]
        keys = [item for item in payload if item not in (None, "")]
        members = store.find_many(self.related_model, keys)
        wanted = {str(primary_key_of(member)) for member in members}

        collection = getattr(parent, self.name)
        for current in list(collection):
            if str(primary_key_of(current)) not in wanted:
                collection.remove(current)
        present = {str(primary_key_of(current)) for current in collection}
        for member in members:
            if str(primary_key_of(member)) not in present:
                collection.append(member)
        store.save(parent)


class OneToOneRelation(Relation):
    variant = "one_to_one"

    def apply(self, parent, payload, *, store, writer, raw=None, path=None) -> None:
        if not isinstance(payload, Mapping) or not payload:
            return
        related = getattr(parent, self.name) or self.related_model()
        assign_attributes(related, payload)
        setattr(parent, self.name, related)
        store.save(related)


class ManyToOneRelation(Relation):
    variant = "many_to_one"

    def apply(self, parent, payload, *, store, writer, raw=None, path=None) -> None:
        if not isinstance(payload, Mapping) or not payload:
            return
        related = getattr(parent, self.name) or self.related_model()
        assign_attributes(related, payload)
        store.save(related)
        setattr(parent, self.name, related)
        store.save(parent)


class OneToManyRelation(Relation):
    variant = "one_to_many"
    many = True

    def find_in(self, collection: Iterable[Any], key: Any) -> Any:
        if key in (None, ""):
            return None
        for child in collection:
            if str(primary_key_of(child)) == str(key):
                return child
        return None

    def apply(self, parent, payload, *, store, writer, raw=None, path=None) -> None:
        if not isinstance(payload, list) or not payload:
            return
        path = path or self.name
        key_name = self.primary_key_name
        raw_rows = [row for _, row in nested_rows(raw)]
        nested_keys = relationship_names(self.related_model)
        collection = getattr(parent, self.name)
        removed = False

        for index, row in enumerate(payload):
            key = row.get(key_name)
            child = self.find_in(collection, key)

            if is_removal_flagged(row):
                if child is not None:
                    store.delete(child)
                    removed = True
                continue

            values = {
                column: value
                for column, value in row.items()
                if column not in (REMOVE_FLAG_NAME, key_name) and column not in nested_keys
            }
            raw_row = raw_rows[index] if index < len(raw_rows) else {}
            if child is None:
                if not values and not writer.has_sub_relation_input(path, raw_row):
                    continue
                child = self.related_model()
                assign_attributes(child, values)
                collection.append(child)
                store.save(child)
            elif values:
                assign_attributes(child, values)
                store.save(child)

            writer.apply_sub_relations(child, path, raw_row)

        if removed:
            db = object_session(parent)
            if db is not None:
                db.expire(parent, [self.name])


@lru_cache(maxsize=None)
def relation_handle(model: type, name: str) -> Relation | None:
    relationships = sa_inspect(model).relationships
    if name not in relationships:
        return None
    prop = relationships[name]
    if prop.direction is RelationshipDirection.MANYTOMANY:
        return ManyToManyRelation(model, name, prop)
    if prop.direction is RelationshipDirection.MANYTOONE:
        return ManyToOneRelation(model, name, prop)
    if prop.uselist:
        return OneToManyRelation(model, name, prop)
    return OneToOneRelation(model, name, prop)


def relation_inputs(model: type, inputs: Mapping[str, Any]) -> dict[str, Any]:
    roots = {str(key).split(".")[0] for key in inputs}
    return gather_by_root(inputs, [root for root in roots if relation_handle(model, root) is not None])[1]


@dataclass(frozen=True)
class RelationMap:
    model: type
    names: tuple[str, ...] = ()
    fields: Mapping[str, tuple[Field, ...]] = dataclass_field(default_factory=dict)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.names)

    def __contains__(self, name: object) -> bool:
        return name in self.names

    def top_level(self) -> tuple[str, ...]:
        return tuple(name for name in self.names if "." not in name)

    def sub_relation_fields(self, path: str) -> list[str]:
        prefix = f"{path}."
        return [
            name[len(prefix):]
            for name in self.names
            if name.startswith(prefix) and "." not in name[len(prefix):]
        ]

    def fields_for(self, path: str) -> tuple[Field, ...]:
        return tuple(self.fields.get(path, ()))


class RelationResolver:
    """Collects the relation paths a set of fields touches, nested forms included."""

    def __init__(self, model: type, fields: Iterable[Field]):
        self.model = model
        self.fields = tuple(fields)

    def resolve(self) -> RelationMap:
        names: list[str] = []
        refs: dict[str, list[Field]] = {}
        self._walk(self.model, self.fields, "", names, refs)
        return RelationMap(self.model, tuple(names), {path: tuple(items) for path, items in refs.items()})

    def _walk(self, model: type, fields: Iterable[Field], prefix: str, names: list[str], refs: dict) -> None:
        for field in fields:
            for column in field.columns:
                candidate = column.split(".")[0]
                handle = relation_handle(model, candidate)
                if handle is None:
                    continue
                path = prefix + candidate
                if path not in names:
                    names.append(path)
                bucket = refs.setdefault(path, [])
                if field not in bucket:
                    bucket.append(field)
                if "." in column or not isinstance(field, HasMany) or not handle.many:
                    continue
                if field.key_name != handle.primary_key_name:
                    raise FormConfigurationError(
                        f'Nested form "{path}" keys rows by "{field.key_name}" '
                        f'but {handle.related_model.__name__} is keyed by "{handle.primary_key_name}"'
                    )
                if field.nested is not None:
                    self._walk(handle.related_model, field.nested.all(), f"{path}.", names, refs)
