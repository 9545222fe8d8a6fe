from __future__ import annotations

import json
import logging
import uuid
from contextlib import contextmanager
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Iterable, Iterator, Mapping

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.sql.sqltypes import ARRAY, JSON, PickleType

from crudform.models.common import SoftDeleteMixin

from .errors import FormConfigurationError, PersistenceError, RecordNotFound

_LOG = logging.getLogger("crudform.store")


def _serialize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _serialize_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize_value(item) for item in value]
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    return value


def _relation_tree(paths: Iterable[str]) -> dict[str, dict]:
    tree: dict[str, dict] = {}
    for path in paths:
        node = tree
        for segment in str(path).split("."):
            node = node.setdefault(segment, {})
    return tree


def _tree_to_dict(row: Any, tree: Mapping[str, dict]) -> dict[str, Any]:
    mapper = sa_inspect(type(row))
    data = {attr.key: _serialize_value(getattr(row, attr.key)) for attr in mapper.column_attrs}
    for name, children in tree.items():
        if name not in mapper.relationships:
            continue
        value = getattr(row, name)
        if value is None:
            data[name] = None
        elif mapper.relationships[name].uselist:
            data[name] = [_tree_to_dict(item, children) for item in value]
        else:
            data[name] = _tree_to_dict(value, children)
    return data


def row_to_dict(row: Any, relations: Iterable[str] = ()) -> dict[str, Any]:
    return _tree_to_dict(row, _relation_tree(relations))


def _columns_map(model: type) -> dict[str, Any]:
    mapper = sa_inspect(model)
    return {attr.key: attr.columns[0] for attr in mapper.column_attrs}


def primary_key_name(model: type) -> str:
    mapper = sa_inspect(model)
    if len(mapper.primary_key) != 1:
        raise FormConfigurationError(f"{model.__name__} must have a single-column primary key")
    return mapper.get_property_by_column(mapper.primary_key[0]).key


def primary_key_of(record: Any) -> Any:
    return getattr(record, primary_key_name(type(record)))


def _pk_value(model: type, key: Any) -> Any:
    pk_column = sa_inspect(model).primary_key[0]
    try:
        python_type = pk_column.type.python_type
    except NotImplementedError:
        python_type = str
    try:
        if python_type is uuid.UUID and not isinstance(key, uuid.UUID):
            return uuid.UUID(str(key))
        if python_type is int and not isinstance(key, int):
            return int(str(key).strip())
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid record key")
    return key


def _loader_options(model: type, paths: Iterable[str]) -> list:
    options = []
    for path in dict.fromkeys(paths):
        current_model = model
        loader = None
        for segment in str(path).split("."):
            relationships = sa_inspect(current_model).relationships
            if segment not in relationships:
                loader = None
                break
            attr = getattr(current_model, segment)
            loader = selectinload(attr) if loader is None else loader.selectinload(attr)
            current_model = relationships[segment].mapper.class_
        if loader is not None:
            options.append(loader)
    return options


def _structured_column(column: Any) -> bool:
    return isinstance(column.type, (JSON, ARRAY, PickleType))


def assign_attributes(record: Any, values: Mapping[str, Any]) -> None:
    """Assign prepared column values; sequences bound for plain columns are JSON encoded."""
    columns = _columns_map(type(record))
    for name, value in values.items():
        column = columns.get(name)
        if column is None:
            raise FormConfigurationError(f'{type(record).__name__} has no column "{name}"')
        if isinstance(value, (list, dict)) and not _structured_column(column):
            value = json.dumps(_serialize_value(value), ensure_ascii=False)
        setattr(record, name, value)


def decode_sequence(model: type, name: str, value: Any) -> Any:
    """Undo the JSON encoding ``assign_attributes`` applies to sequences in plain columns."""
    column = _columns_map(model).get(name)
    if column is None or _structured_column(column) or not isinstance(value, str):
        return value
    try:
        decoded = json.loads(value)
    except ValueError:
        return value
    return decoded if isinstance(decoded, list) else value


def is_soft_deletable(model: type) -> bool:
    return isinstance(model, type) and issubclass(model, SoftDeleteMixin)


class RecordStore:
    """Reads and writes records of one model through a SQLAlchemy session."""

    def __init__(self, db: Session, model: type):
        self.db = db
        self.model = model

    def _query(self, model: type, with_relations: Iterable[str], with_trashed: bool):
        stmt = select(model)
        options = _loader_options(model, with_relations)
        if options:
            stmt = stmt.options(*options)
        if is_soft_deletable(model) and not with_trashed:
            stmt = stmt.where(model.deleted_at.is_(None))
        return stmt

    def find_or_none(self, key: Any, with_relations: Iterable[str] = (), with_trashed: bool = False):
        pk_attr = getattr(self.model, primary_key_name(self.model))
        stmt = self._query(self.model, with_relations, with_trashed).where(pk_attr == _pk_value(self.model, key))
        return self.db.execute(stmt).scalars().first()

    def find(self, key: Any, with_relations: Iterable[str] = (), with_trashed: bool = False):
        record = self.find_or_none(key, with_relations, with_trashed)
        if record is None:
            raise RecordNotFound()
        return record

    def find_many(self, model: type, keys: Iterable[Any]) -> list:
        values = [_pk_value(model, key) for key in keys]
        if not values:
            return []
        pk_attr = getattr(model, primary_key_name(model))
        rows = self.db.execute(select(model).where(pk_attr.in_(values))).scalars().all()
        found = {str(primary_key_of(row)) for row in rows}
        missing = [str(value) for value in values if str(value) not in found]
        if missing:
            raise RecordNotFound(f"{model.__name__} not found: {', '.join(missing)}")
        return list(rows)

    def new_record(self):
        return self.model()

    def save(self, record: Any) -> Any:
        self.db.add(record)
        self.db.flush()
        return record

    def delete(self, record: Any) -> None:
        if isinstance(record, SoftDeleteMixin):
            record.soft_delete()
            self.db.flush()
            return
        self.force_delete(record)

    def force_delete(self, record: Any) -> None:
        self.db.delete(record)
        self.db.flush()

    @contextmanager
    def atomic(self) -> Iterator[Session]:
        try:
            yield self.db
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            _LOG.warning("transaction rolled back model=%s error=%s", self.model.__name__, exc.orig)
            raise PersistenceError() from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            _LOG.warning("transaction rolled back model=%s error=%s", self.model.__name__, exc)
            raise PersistenceError("Failed to save record") from exc
        except Exception:
            self.db.rollback()
            raise
