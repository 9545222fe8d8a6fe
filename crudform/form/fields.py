from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime, time
from decimal import Decimal
from functools import lru_cache
from typing import Any, Callable, Mapping, Sequence

from pydantic import TypeAdapter, ValidationError

from crudform.core.config import settings
from crudform.services.s3_storage import FileStorage, build_object_key, get_s3_storage

from .errors import FormConfigurationError
from .messages import MessageBag
from .paths import get_path
from .values import MISSING

_LOG = logging.getLogger("crudform.storage")

Rule = Callable[[Any], "str | None"]
Display = Callable[[Any, Any], Any]

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
URL_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)
PHONE_RE = re.compile(r"^[0-9+()\-\s]{5,30}$")
COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")


@lru_cache(maxsize=None)
def _adapter(annotation: Any) -> TypeAdapter:
    return TypeAdapter(annotation)


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid value"
    return str(errors[0].get("msg") or "invalid value")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return not value
    return False


def _is_upload(value: Any) -> bool:
    return not isinstance(value, (str, bytes)) and hasattr(value, "filename") and hasattr(value, "file")


def _humanize(column: str) -> str:
    text = str(column or "").split(".")[-1].replace("_", " ").replace("-", " ").strip()
    return text[:1].upper() + text[1:] if text else "Field"


class Field:
    kind = "text"
    annotation: Any = str

    def __init__(
        self,
        column: str | Mapping[str, str],
        label: str | None = None,
        *,
        required: bool = False,
        rules: Sequence[Rule] = (),
        default: Any = MISSING,
        display: Display | None = None,
        must_prepare: bool = False,
        max_length: int | None = None,
        help: str | None = None,
    ):
        if isinstance(column, Mapping):
            if not column:
                raise FormConfigurationError("Composite field needs at least one column")
            self._column: str | dict[str, str] = {str(name): str(path) for name, path in column.items()}
        else:
            if not str(column or "").strip():
                raise FormConfigurationError("Field column must not be empty")
            self._column = str(column)
        self.label = label or _humanize(self.columns[0])
        self.required = bool(required)
        self.rules = tuple(rules)
        self.default = default
        self.display = display
        self.must_prepare = bool(must_prepare)
        self.max_length = max_length
        self.help = help

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._column!r})"

    @property
    def column(self) -> str | dict[str, str]:
        if isinstance(self._column, dict):
            return dict(self._column)
        return self._column

    @property
    def is_composite(self) -> bool:
        return isinstance(self._column, dict)

    @property
    def columns(self) -> tuple[str, ...]:
        if isinstance(self._column, dict):
            return tuple(self._column.values())
        return (self._column,)

    def has_relation(self) -> bool:
        return False

    def owns_files(self) -> bool:
        return False

    def extract(self, data: Any) -> Any:
        if not isinstance(self._column, dict):
            return get_path(data, self._column)
        value = {}
        for name, path in self._column.items():
            item = get_path(data, path)
            if item is not MISSING:
                value[name] = item
        return value or MISSING

    def prepare(self, value: Any) -> Any:
        if value is MISSING:
            return MISSING
        if self.is_composite:
            if not isinstance(value, Mapping):
                return MISSING
            return {name: self.transform(item) for name, item in value.items() if item is not MISSING}
        return self.transform(value)

    def prepare_relation(self, value: Any) -> Any:
        return value

    def normalize(self, value: Any) -> Any:
        return value

    def transform(self, value: Any) -> Any:
        value = self.normalize(value)
        if _is_blank(value):
            return None
        try:
            return _adapter(self.annotation).validate_python(value)
        except ValidationError:
            return value

    def validate(self, data: Any, *, creating: bool = False) -> MessageBag:
        bag = MessageBag()
        for path in self.columns:
            value = get_path(data, path)
            if value is MISSING:
                if creating and self.required:
                    bag.add(path, self.required_message())
                continue
            value = self.normalize(value)
            if _is_blank(value):
                if self.required:
                    bag.add(path, self.required_message())
                continue
            for message in self.check(value):
                bag.add(path, message)
        return bag

    def required_message(self) -> str:
        return f'Field "{self.label}" is required'

    def check(self, value: Any) -> list[str]:
        try:
            _adapter(self.annotation).validate_python(value)
        except ValidationError as exc:
            return [f'Field "{self.label}": {_first_error(exc)}']
        messages: list[str] = []
        if self.max_length is not None and len(str(value)) > self.max_length:
            messages.append(f'Field "{self.label}" may not be longer than {self.max_length} characters')
        for rule in self.rules:
            message = rule(value)
            if message:
                messages.append(str(message))
        return messages


class Text(Field):
    kind = "text"

    def normalize(self, value: Any) -> Any:
        if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, str):
            return value.strip()
        return value


class Textarea(Text):
    kind = "textarea"


class _PatternText(Text):
    pattern: re.Pattern = re.compile(r".*")
    pattern_message = "has an invalid format"

    def check(self, value: Any) -> list[str]:
        messages = super().check(value)
        if not messages and not self.pattern.match(str(value)):
            messages.append(f'Field "{self.label}" {self.pattern_message}')
        return messages


class Email(_PatternText):
    kind = "email"
    pattern = EMAIL_RE
    pattern_message = "must be a valid email address"


class Url(_PatternText):
    kind = "url"
    pattern = URL_RE
    pattern_message = "must be a valid URL"


class Phone(_PatternText):
    kind = "phone"
    pattern = PHONE_RE
    pattern_message = "must be a valid phone number"


class Color(_PatternText):
    kind = "color"
    pattern = COLOR_RE
    pattern_message = "must be a hex color"


class Password(Text):
    kind = "password"

    def normalize(self, value: Any) -> Any:
        return value


class Number(Field):
    kind = "number"
    annotation = int


class DecimalField(Field):
    kind = "decimal"
    annotation = Decimal

    def normalize(self, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().replace(",", ".")
        return value


class Switch(Field):
    kind = "switch"
    annotation = bool

    def transform(self, value: Any) -> Any:
        if _is_blank(value):
            return False
        return super().transform(value)


class Date(Field):
    kind = "date"
    annotation = date


class DateTime(Field):
    kind = "datetime"
    annotation = datetime


class Time(Field):
    kind = "time"
    annotation = time


class Json(Field):
    kind = "json"
    annotation = Any

    def transform(self, value: Any) -> Any:
        if isinstance(value, str):
            if not value.strip():
                return None
            try:
                return json.loads(value)
            except ValueError:
                return value
        return value

    def check(self, value: Any) -> list[str]:
        if isinstance(value, str):
            try:
                json.loads(value)
            except ValueError:
                return [f'Field "{self.label}" must be valid JSON']
        return super().check(value)


class Select(Field):
    kind = "select"
    annotation = int | str

    def __init__(self, column, label=None, *, options: Mapping[Any, Any] | Sequence[Any] | None = None, **kwargs):
        super().__init__(column, label, **kwargs)
        if isinstance(options, Mapping):
            self.options = dict(options)
        else:
            self.options = {item: item for item in (options or ())}

    def check(self, value: Any) -> list[str]:
        messages = super().check(value)
        if not messages and self.options and str(value) not in {str(key) for key in self.options}:
            messages.append(f'Field "{self.label}" has an unknown option')
        return messages


class BelongsTo(Select):
    kind = "belongs_to"


class MultipleSelect(Select):
    kind = "multiple_select"
    annotation = list[int | str]

    def normalize(self, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, (list, tuple, set)):
            value = [value]
        return [item for item in value if not _is_blank(item)]

    def transform(self, value: Any) -> Any:
        return self.normalize(value)

    def check(self, value: Any) -> list[str]:
        try:
            _adapter(self.annotation).validate_python(value)
        except ValidationError as exc:
            return [f'Field "{self.label}": {_first_error(exc)}']
        if self.options:
            known = {str(key) for key in self.options}
            if any(str(item) not in known for item in value):
                return [f'Field "{self.label}" has an unknown option']
        messages: list[str] = []
        for rule in self.rules:
            message = rule(value)
            if message:
                messages.append(str(message))
        return messages


class Checkbox(MultipleSelect):
    kind = "checkbox"


class BelongsToMany(MultipleSelect):
    """Many-to-many membership picker; the column names the relationship."""

    kind = "belongs_to_many"

    def __init__(self, column, label=None, *, must_prepare: bool = True, **kwargs):
        super().__init__(column, label, must_prepare=must_prepare, **kwargs)

    def has_relation(self) -> bool:
        return True

    def prepare(self, value: Any) -> Any:
        if value is MISSING:
            return [] if self.must_prepare else MISSING
        return self.transform(value)

    def prepare_relation(self, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [int(item) if isinstance(item, str) and item.strip().isdigit() else item for item in value]


class RangeField(Field):
    kind = "date_range"
    annotation = date

    def __init__(self, start: str, end: str, label: str | None = None, **kwargs):
        super().__init__({"start": start, "end": end}, label, **kwargs)

    def validate(self, data: Any, *, creating: bool = False) -> MessageBag:
        bag = super().validate(data, creating=creating)
        if bag.any():
            return bag
        value = self.prepare(self.extract(data))
        if value is MISSING:
            return bag
        start, end = value.get("start"), value.get("end")
        if start is not None and end is not None and end < start:
            bag.add(self._column["end"], f'Field "{self.label}" must end after it starts')
        return bag


class DateRange(RangeField):
    kind = "date_range"
    annotation = date


class TimeRange(RangeField):
    kind = "time_range"
    annotation = time


class DateTimeRange(RangeField):
    kind = "datetime_range"
    annotation = datetime


class File(Field):
    """Attachment stored in object storage; the column keeps the object key."""

    kind = "file"
    accept: frozenset[str] = frozenset()

    def __init__(
        self,
        column,
        label=None,
        *,
        storage: FileStorage | None = None,
        directory: str | None = None,
        accept: Sequence[str] | None = None,
        **kwargs,
    ):
        super().__init__(column, label, **kwargs)
        self._storage = storage
        self.directory = directory or settings.UPLOAD_DIRECTORY
        if accept is not None:
            self.accept = frozenset(accept)

    @property
    def storage(self) -> FileStorage:
        return self._storage if self._storage is not None else get_s3_storage()

    def owns_files(self) -> bool:
        return True

    def transform(self, value: Any) -> Any:
        if _is_upload(value):
            return self.store_upload(value)
        if _is_blank(value):
            return MISSING
        return str(value)

    def store_upload(self, upload: Any) -> str:
        key = build_object_key(self.directory, getattr(upload, "filename", "") or "")
        self.storage.upload_fileobj(upload.file, key, getattr(upload, "content_type", None))
        _LOG.info("file stored column=%s key=%s", self._column, key)
        return key

    def check(self, value: Any) -> list[str]:
        if _is_upload(value):
            content_type = str(getattr(value, "content_type", "") or "").lower()
            if self.accept and content_type not in self.accept:
                return [f'Field "{self.label}" has an unsupported file type']
            return []
        if not isinstance(value, str):
            return [f'Field "{self.label}" must be a file']
        return []

    def destroy(self, original: Mapping[str, Any]) -> None:
        for path in self.columns:
            key = get_path(original, path, None)
            if isinstance(key, str) and key.strip():
                self.storage.delete_object(key)
                _LOG.info("file removed column=%s key=%s", path, key)


class Image(File):
    kind = "image"
    accept = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})

    def __init__(self, column, label=None, *, directory: str | None = None, **kwargs):
        super().__init__(column, label, directory=directory or settings.IMAGE_DIRECTORY, **kwargs)


FIELD_TYPES: dict[str, type[Field]] = {
    "text": Text,
    "textarea": Textarea,
    "email": Email,
    "url": Url,
    "phone": Phone,
    "color": Color,
    "password": Password,
    "number": Number,
    "decimal": DecimalField,
    "switch": Switch,
    "date": Date,
    "datetime": DateTime,
    "time": Time,
    "json": Json,
    "select": Select,
    "belongs_to": BelongsTo,
    "multiple_select": MultipleSelect,
    "checkbox": Checkbox,
    "belongs_to_many": BelongsToMany,
    "date_range": DateRange,
    "time_range": TimeRange,
    "datetime_range": DateTimeRange,
    "file": File,
    "image": Image,
}
