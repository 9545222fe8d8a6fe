from __future__ import annotations

from typing import Any, Callable

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from crudform.db.session import get_db
from crudform.form import Form, SubmitContext

FormFactory = Callable[[Session], Form]


def _resource_path(request: Request, strip: int = 0) -> str:
    path = request.url.path.rstrip("/")
    for _ in range(strip):
        path = path.rsplit("/", 1)[0]
    return path or "/"


def build_form_router(form_factory: FormFactory) -> APIRouter:
    """Expose one form's flows; include the router under the resource prefix."""
    router = APIRouter()

    @router.post("")
    def store_record(
        request: Request,
        payload: dict[str, Any],
        db: Session = Depends(get_db),
    ):
        ctx = SubmitContext.from_request(request, payload, _resource_path(request))
        return form_factory(db).store(payload, ctx)

    @router.api_route("/{key}", methods=["PUT", "PATCH"])
    def update_record(
        key: str,
        request: Request,
        payload: dict[str, Any],
        db: Session = Depends(get_db),
    ):
        ctx = SubmitContext.from_request(request, payload, _resource_path(request, strip=1))
        return form_factory(db).update(key, payload, ctx)

    @router.delete("/{ids}")
    def destroy_records(ids: str, request: Request, db: Session = Depends(get_db)):
        ctx = SubmitContext.from_request(request, None, _resource_path(request, strip=1))
        return form_factory(db).destroy(ids, ctx)

    @router.get("/{key}/edit")
    def edit_record(key: str, request: Request, db: Session = Depends(get_db)):
        ctx = SubmitContext.from_request(request, None, _resource_path(request, strip=2))
        return form_factory(db).edit(key, ctx)

    return router
