from __future__ import annotations

import importlib
import re
from typing import Any

from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.sql.sqltypes import (
    ARRAY,
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    Integer,
    LargeBinary,
    Numeric,
    PickleType,
    String,
    Text,
    Time,
)

from crudform.form.errors import FormConfigurationError

FIELD_NAME_KINDS = (
    ("email", re.compile(r"^(email|mail)$", re.IGNORECASE)),
    ("password", re.compile(r"^(password|pwd)$", re.IGNORECASE)),
    ("url", re.compile(r"^(url|link|src|href)$", re.IGNORECASE)),
    ("phone", re.compile(r"^(mobile|phone)$", re.IGNORECASE)),
    ("color", re.compile(r"^(color|rgb)$", re.IGNORECASE)),
    ("image", re.compile(r"^(image|img|avatar|pic|picture|cover)$", re.IGNORECASE)),
    ("file", re.compile(r"^(file|attachment)$", re.IGNORECASE)),
)

RESERVED_COLUMNS = ("created_at", "updated_at", "deleted_at")


def format_label(name: str) -> str:
    text = str(name).replace("-", " ").replace("_", " ")
    return text[:1].upper() + text[1:]


def field_kind(name: str, column_type: Any) -> str:
    if isinstance(column_type, Boolean):
        return "switch"
    if isinstance(column_type, (JSON, ARRAY, PickleType, Text, LargeBinary)):
        return "textarea"
    if isinstance(column_type, (String, Enum)):
        for kind, pattern in FIELD_NAME_KINDS:
            if pattern.match(name):
                return kind
        return "text"
    if isinstance(column_type, Integer):
        return "number"
    if isinstance(column_type, (Numeric, Float)):
        return "decimal"
    if isinstance(column_type, DateTime):
        return "datetime"
    if isinstance(column_type, Date):
        return "date"
    if isinstance(column_type, Time):
        return "time"
    return "text"


def load_model(target: str) -> type:
    module_name, _, attr = str(target).partition(":")
    if not module_name or not attr:
        raise FormConfigurationError(f"Invalid model [{target}] !")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise FormConfigurationError(f"Invalid model [{target}] !") from exc
    model = getattr(module, attr, None)
    if model is None:
        raise FormConfigurationError(f"Invalid model [{target}] !")
    return model


class ResourceGenerator:
    """Boilerplate form / show / grid declarations from a mapped model."""

    form_format = 'form.add("{kind}", "{name}", "{label}"{default})'
    show_format = 'show.field("{name}", "{label}")'
    grid_format = 'grid.column("{name}", "{label}")'

    def __init__(self, model: Any):
        if not isinstance(model, type):
            model = type(model)
        try:
            self.mapper = sa_inspect(model)
        except NoInspectionAvailable:
            raise FormConfigurationError(f"Invalid model [{getattr(model, '__name__', model)}] !")
        self.model = model

    def columns(self) -> list[tuple[str, Any]]:
        return [(attr.key, attr.columns[0]) for attr in self.mapper.column_attrs]

    def reserved_columns(self) -> set[str]:
        keys = {self.mapper.get_property_by_column(column).key for column in self.mapper.primary_key}
        return keys | set(RESERVED_COLUMNS)

    def _default(self, column: Any) -> str:
        default = column.default
        if default is None or not getattr(default, "is_scalar", False):
            return ""
        value = default.arg
        if value is None or (isinstance(value, str) and not value.strip("'\"")):
            return ""
        return f", default={value!r}"

    def generate_form(self) -> str:
        reserved = self.reserved_columns()
        lines = []
        for name, column in self.columns():
            if name in reserved:
                continue
            lines.append(
                self.form_format.format(
                    kind=field_kind(name, column.type),
                    name=name,
                    label=format_label(name),
                    default=self._default(column),
                )
            )
        return "\n".join(lines) + ("\n" if lines else "")

    def generate_show(self) -> str:
        lines = [self.show_format.format(name=name, label=format_label(name)) for name, _ in self.columns()]
        return "\n".join(lines) + ("\n" if lines else "")

    def generate_grid(self) -> str:
        lines = [self.grid_format.format(name=name, label=format_label(name)) for name, _ in self.columns()]
        return "\n".join(lines) + ("\n" if lines else "")
