from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field
from typing import Any, Mapping
from urllib.parse import parse_qs, unquote, urlsplit

from starlette.requests import Request

from .paths import get_path, set_path
from .values import MISSING

PREVIOUS_URL_KEY = "_previous_"


def batch_ids_from_url(url: str | None) -> list[str]:
    if not url:
        return []
    values = parse_qs(urlsplit(str(url)).query).get("ids") or []
    ids: list[str] = []
    for value in values:
        ids.extend(item.strip() for item in value.split(",") if item.strip())
    return ids


@dataclass
class SubmitContext:
    """Request facts the engine needs after a save, read once at the HTTP boundary."""

    is_ajax: bool = False
    is_pjax: bool = False
    after_save: str | None = None
    after_save_url: str | None = None
    previous_url: str | None = None
    batch_ids: list[str] = dataclass_field(default_factory=list)
    resource_path: str = "/"

    @property
    def ajax_without_partial(self) -> bool:
        return self.is_ajax and not self.is_pjax

    @classmethod
    def from_request(
        cls,
        request: Request,
        data: Mapping[str, Any] | None = None,
        resource_path: str | None = None,
    ) -> "SubmitContext":
        data = data or {}

        def param(name: str) -> str | None:
            value = data.get(name)
            if value in (None, ""):
                value = request.query_params.get(name)
            return str(value) if value not in (None, "") else None

        after_save_url = param("after-save-url")
        previous_url = param(PREVIOUS_URL_KEY)
        return cls(
            is_ajax=request.headers.get("x-requested-with", "").lower() == "xmlhttprequest",
            is_pjax=bool(request.headers.get("x-pjax")),
            after_save=param("after-save"),
            after_save_url=unquote(after_save_url) if after_save_url else None,
            previous_url=previous_url,
            batch_ids=batch_ids_from_url(previous_url),
            resource_path=resource_path or request.url.path,
        )


@dataclass
class Submission:
    """Per-call state handed to hooks: the record, the submitted input and the mode."""

    mode: str
    inputs: dict[str, Any]
    context: SubmitContext
    record: Any = None
    key: Any = None

    def input(self, key: str, value: Any = MISSING) -> Any:
        if value is MISSING:
            return get_path(self.inputs, key, None)
        set_path(self.inputs, key, value)
        return value
