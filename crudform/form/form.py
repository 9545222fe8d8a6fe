from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy.orm import Session
from starlette.responses import JSONResponse, Response

from crudform.core.config import settings
from crudform.models.common import SortableMixin

from .context import SubmitContext, Submission
from .errors import FormConfigurationError, PersistenceError
from .fields import BelongsToMany, Field, MultipleSelect
from .hooks import HookRegistry
from .messages import MessageBag
from .nested import HasMany
from .paths import forget_path, get_path, has_path
from .prepare import PreparedUpdate, UpdatePreparer, handle_editable_input
from .registry import FieldRegistry
from .relations import RelationMap, RelationResolver, relation_handle, relation_inputs
from .responses import (
    ajax_success_response,
    failure_response,
    inline_validation_error_response,
    redirect_after_saving,
    validation_error_response,
)
from .store import RecordStore, assign_attributes, decode_sequence, is_soft_deletable, primary_key_of, row_to_dict
from .writer import RelationWriter

_LOG = logging.getLogger("crudform.form")

CONFIRM_TARGETS = ("create", "edit")


def _copy_input(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _copy_input(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_copy_input(item) for item in value]
    return value


def _orderable_up(flag: Any) -> bool:
    return str(flag).strip().lower() in {"1", "true"}


class Form:
    """Declared fields of one model plus the store / update / destroy flows over them.

    ``build`` receives the form and declares its fields, typically through
    ``form.add(kind, column, label, **options)``.
    """

    def __init__(self, model: type, db: Session, build: Callable[["Form"], None] | None = None):
        self.model = model
        self.db = db
        self.registry = FieldRegistry()
        self.hooks = HookRegistry()
        self.records = RecordStore(db, model)
        self.ignored: list[str] = []
        self.confirmations: dict[str, str] = {}
        if build is not None:
            build(self)

    # declaration

    def add(self, kind: str, column: Any, label: str | None = None, **options) -> Field:
        field = self.registry.add(kind, column, label, **options)
        if isinstance(field, HasMany):
            RelationResolver(self.model, [field]).resolve()
        return field

    def fields(self) -> tuple[Field, ...]:
        return self.registry.all()

    def ignore(self, fields: str | Iterable[str]) -> "Form":
        if isinstance(fields, str):
            fields = [fields]
        self.ignored.extend(str(item) for item in fields)
        return self

    def confirm(self, message: str, on: str | None = None) -> "Form":
        if on is not None and on not in CONFIRM_TARGETS:
            raise FormConfigurationError(f'Confirm target must be one of {", ".join(CONFIRM_TARGETS)}')
        for target in CONFIRM_TARGETS if on is None else (on,):
            self.confirmations[target] = message
        return self

    def submitted(self, callback):
        return self.hooks.register("submitted", callback)

    def saving(self, callback):
        return self.hooks.register("saving", callback)

    def saved(self, callback):
        return self.hooks.register("saved", callback)

    def editing(self, callback):
        return self.hooks.register("editing", callback)

    def deleting(self, callback):
        return self.hooks.register("deleting", callback)

    def deleted(self, callback):
        return self.hooks.register("deleted", callback)

    # preparation

    @property
    def soft_deletes(self) -> bool:
        return is_soft_deletable(self.model)

    def relations(self) -> RelationMap:
        return RelationResolver(self.model, self.registry.all()).resolve()

    def validation_messages(self, data: Mapping[str, Any], *, creating: bool = False) -> MessageBag:
        bag = MessageBag()
        for field in self.registry:
            bag.merge(field.validate(data, creating=creating))
        return bag

    def remove_ignored(self, data: Mapping[str, Any]) -> dict[str, Any]:
        inputs = _copy_input(data)
        for path in self.ignored:
            forget_path(inputs, path)
        return inputs

    def prepare_update(
        self,
        inputs: Mapping[str, Any],
        relations: RelationMap | None = None,
        scope: Iterable[str] | None = None,
    ) -> PreparedUpdate:
        relations = relations if relations is not None else self.relations()
        scope = set(relations.top_level() if scope is None else scope)
        must_prepare = [column for column in self.registry.must_prepare_columns() if column in scope]
        keys = list(relation_inputs(self.model, inputs)) + must_prepare
        preparer = UpdatePreparer(self.registry.all(), relations.names)
        return preparer.split(inputs, keys, must_prepare)

    def prepare_insert(self, inserts: Mapping[str, Any]) -> dict[str, Any]:
        return UpdatePreparer(self.registry.all(), self.relations().names).prepare_insert(inserts)

    # flows

    def store(self, data: Mapping[str, Any], ctx: SubmitContext | None = None) -> Response:
        ctx = ctx or SubmitContext()
        record = self.records.new_record()
        submission = Submission("create", _copy_input(data), ctx, record=record)

        outcome = self.hooks.call("submitted", submission)
        if outcome.halted:
            return outcome.response

        inputs = self.remove_ignored(submission.inputs)
        errors = self.validation_messages(inputs, creating=True)
        if errors:
            return validation_error_response(ctx, errors, inputs)

        outcome = self.hooks.call("saving", submission)
        if outcome.halted:
            return outcome.response

        relations = self.relations()
        try:
            with self.records.atomic():
                prepared = self.prepare_update(inputs, relations)
                assign_attributes(record, prepared.primary)
                self.records.save(record)
                RelationWriter(self.records, relations).apply(record, prepared)
        except PersistenceError as exc:
            _LOG.warning("store failed model=%s detail=%s", self.model.__name__, exc.detail)
            return failure_response(ctx, settings.MESSAGE_SAVE_FAILED, inputs)

        submission.key = primary_key_of(record)
        _LOG.info("record stored model=%s key=%s", self.model.__name__, submission.key)

        outcome = self.hooks.call("saved", submission)
        if outcome.halted:
            return outcome.response

        if ctx.ajax_without_partial:
            display = self.display_overrides(record, inputs, relations)
            return ajax_success_response(settings.MESSAGE_SAVE_SUCCEEDED, display)
        return redirect_after_saving(ctx, ctx.resource_path, submission.key)

    def update(self, key: Any, data: Mapping[str, Any], ctx: SubmitContext | None = None) -> Response:
        ctx = ctx or SubmitContext()
        editable = "_editable" in data or "_edit_inline" in data
        data = handle_editable_input(data)

        if "_orderable" in data:
            response = self.handle_orderable(key, data)
            if response is not None:
                return response

        relations = self.relations()
        with_relations = list(relations.names)
        if editable:
            submitted = {str(key).split(".")[0] for key in data}
            with_relations = [name for name in with_relations if name.split(".")[0] in submitted]

        record = self.records.find(key, with_relations, with_trashed=self.soft_deletes)
        submission = Submission("update", _copy_input(data), ctx, record=record, key=key)

        outcome = self.hooks.call("submitted", submission)
        if outcome.halted:
            return outcome.response

        inputs = self.remove_ignored(submission.inputs)
        errors = self.validation_messages(inputs)
        if errors:
            if editable:
                return inline_validation_error_response(errors)
            return validation_error_response(ctx, errors, inputs)

        outcome = self.hooks.call("saving", submission)
        if outcome.halted:
            return outcome.response

        loaded = [name for name in relations.top_level() if name in with_relations]
        try:
            with self.records.atomic():
                prepared = self.prepare_update(inputs, relations, scope=loaded)
                assign_attributes(record, prepared.primary)
                self.records.save(record)
                if with_relations:
                    RelationWriter(self.records, relations).apply(record, prepared, allowed=loaded)
        except PersistenceError as exc:
            _LOG.warning("update failed model=%s key=%s detail=%s", self.model.__name__, key, exc.detail)
            return failure_response(ctx, settings.MESSAGE_SAVE_FAILED, inputs)

        _LOG.info("record updated model=%s key=%s", self.model.__name__, key)

        outcome = self.hooks.call("saved", submission)
        if outcome.halted:
            return outcome.response

        if ctx.ajax_without_partial:
            display = self.display_overrides(record, inputs, relations)
            return ajax_success_response(settings.MESSAGE_UPDATE_SUCCEEDED, display)
        return redirect_after_saving(ctx, ctx.resource_path, key)

    def handle_orderable(self, key: Any, data: Mapping[str, Any]) -> Response | None:
        record = self.records.find_or_none(key, with_trashed=self.soft_deletes)
        if not isinstance(record, SortableMixin):
            return None
        with self.records.atomic():
            if _orderable_up(data.get("_orderable")):
                record.move_order_up()
            else:
                record.move_order_down()
        _LOG.info("record reordered model=%s key=%s", self.model.__name__, key)
        return JSONResponse({"status": True, "message": settings.MESSAGE_UPDATE_SUCCEEDED})

    def destroy(self, ids: str, ctx: SubmitContext | None = None) -> Response:
        ctx = ctx or SubmitContext()
        submission = Submission("delete", {}, ctx, key=ids)

        outcome = self.hooks.call("deleting", submission)
        if outcome.halted:
            return outcome.response

        relations = self.relations()
        try:
            for key in [item.strip() for item in str(ids).split(",") if item.strip()]:
                with self.records.atomic():
                    record = self.records.find(key, relations.names, with_trashed=self.soft_deletes)
                    submission.record = record
                    if self.soft_deletes and record.trashed():
                        self.delete_files(record, force=True)
                        self.records.force_delete(record)
                    else:
                        self.delete_files(record)
                        self.records.delete(record)
                _LOG.info("record deleted model=%s key=%s", self.model.__name__, key)

            outcome = self.hooks.call("deleted", submission)
            if outcome.halted:
                return outcome.response
        except Exception as exc:
            _LOG.warning("destroy failed model=%s ids=%s error=%s", self.model.__name__, ids, exc)
            message = getattr(exc, "detail", None) or str(exc) or settings.MESSAGE_DELETE_FAILED
            return JSONResponse({"status": False, "message": message})

        return JSONResponse({"status": True, "message": settings.MESSAGE_DELETE_SUCCEEDED})

    def delete_files(self, record: Any, force: bool = False) -> None:
        if not force and self.soft_deletes:
            return
        original = row_to_dict(record)
        for field in self.registry.file_fields():
            field.destroy(original)

    def edit(self, key: Any, ctx: SubmitContext | None = None) -> dict[str, Any] | Response:
        ctx = ctx or SubmitContext()
        relations = self.relations()
        record = self.records.find(key, relations.names, with_trashed=self.soft_deletes)
        submission = Submission("edit", {}, ctx, record=record, key=key)

        outcome = self.hooks.call("editing", submission)
        if outcome.halted:
            return outcome.response

        data = row_to_dict(record, relations.names)
        values: dict[str, Any] = {}
        for field in self.registry:
            if field.is_composite:
                for path in field.columns:
                    values[path] = get_path(data, path, None)
            elif isinstance(field, BelongsToMany):
                handle = relation_handle(self.model, field.column)
                members = get_path(data, field.column, None) or []
                pk_name = handle.primary_key_name if handle is not None else "id"
                values[field.column] = [member.get(pk_name) for member in members]
            elif isinstance(field, MultipleSelect) and "." not in field.column:
                values[field.column] = decode_sequence(self.model, field.column, data.get(field.column))
            else:
                values[field.column] = get_path(data, field.column, None)

        return {
            "key": primary_key_of(record),
            "values": values,
            "confirm": self.confirmations.get("edit"),
        }

    def display_overrides(self, record: Any, inputs: Mapping[str, Any], relations: RelationMap) -> dict[str, Any]:
        fields = [
            field
            for field in self.registry
            if field.display is not None and not field.is_composite and has_path(inputs, field.column)
        ]
        if not fields:
            return {}
        self.db.refresh(record)
        data = row_to_dict(record, relations.top_level())
        return {field.column: field.display(record, get_path(data, field.column, None)) for field in fields}
