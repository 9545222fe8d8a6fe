from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping

from starlette.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response

from crudform.core.config import settings

from .context import SubmitContext
from .messages import MessageBag

CONTINUE_EDITING = "continue_editing"
CONTINUE_CREATING = "continue_creating"
VIEW = "view"
EXIT = "exit"


class FlashRedirectResponse(RedirectResponse):
    """Redirect carrying the flash message, errors and old input for the next page.

    In-process callers read the attributes. HTTP clients get the flash message and
    errors as JSON in the ``settings.FLASH_COOKIE_NAME`` cookie.
    """

    def __init__(
        self,
        url: str,
        *,
        flash: Mapping[str, Any] | None = None,
        errors: MessageBag | None = None,
        old_input: Mapping[str, Any] | None = None,
        status_code: int = 303,
    ):
        super().__init__(url, status_code=status_code)
        self.flash = dict(flash or {})
        self.errors = errors if errors is not None else MessageBag()
        self.old_input = dict(old_input or {})
        if self.flash or self.errors:
            self.set_cookie(
                key=settings.FLASH_COOKIE_NAME,
                value=json.dumps({"flash": self.flash, "errors": self.errors.messages()}),
                httponly=True,
                samesite="lax",
            )


@dataclass(frozen=True)
class AfterSaveTarget:
    kind: str
    url: str | None = None
    message: str | None = None


def batch_edit_url(resource_path: str, ids: list[str]) -> str:
    return f"{resource_path.rstrip('/')}/{settings.BATCH_EDIT_SEGMENT}?ids={','.join(ids)}"


def resolve_after_save(ctx: SubmitContext, resource_path: str, key: Any) -> AfterSaveTarget:
    base = resource_path.rstrip("/")
    if ctx.after_save_url:
        return AfterSaveTarget("redirect", ctx.after_save_url)
    if ctx.after_save == CONTINUE_EDITING:
        return AfterSaveTarget("redirect", f"{base}/{key}/edit")
    if ctx.after_save == CONTINUE_CREATING:
        return AfterSaveTarget("redirect", f"{base}/create")
    if ctx.after_save == VIEW:
        return AfterSaveTarget("redirect", f"{base}/{key}")
    if ctx.after_save == EXIT:
        return AfterSaveTarget("message", message=settings.MESSAGE_SAVE_SUCCEEDED)
    if ctx.batch_ids:
        return AfterSaveTarget("redirect", batch_edit_url(resource_path, ctx.batch_ids))
    return AfterSaveTarget("redirect", ctx.previous_url or resource_path)


def redirect_after_saving(ctx: SubmitContext, resource_path: str, key: Any) -> Response:
    target = resolve_after_save(ctx, resource_path, key)
    if target.kind == "message":
        return PlainTextResponse(target.message or "")
    return FlashRedirectResponse(
        target.url or resource_path,
        flash={"status": "success", "message": settings.MESSAGE_SAVE_SUCCEEDED},
    )


def ajax_success_response(message: str, display: Mapping[str, Any] | None = None) -> JSONResponse:
    return JSONResponse({"status": True, "message": message, "display": dict(display or {})})


def validation_error_response(ctx: SubmitContext, errors: MessageBag, old_input: Mapping[str, Any]) -> Response:
    if ctx.ajax_without_partial:
        return JSONResponse(
            {"status": False, "validation": errors.messages(), "message": errors.first()}
        )
    return FlashRedirectResponse(
        ctx.previous_url or ctx.resource_path,
        errors=errors,
        old_input=old_input,
    )


def inline_validation_error_response(errors: MessageBag) -> JSONResponse:
    return JSONResponse({"errors": errors.dot()}, status_code=422)


def failure_response(ctx: SubmitContext, message: str, old_input: Mapping[str, Any]) -> Response:
    if ctx.ajax_without_partial:
        return JSONResponse({"status": False, "message": message})
    return FlashRedirectResponse(
        ctx.previous_url or ctx.resource_path,
        flash={"status": "error", "message": message},
        old_input=old_input,
    )
