from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from .prepare import PreparedUpdate, SubRelationContext, UpdatePreparer
from .relations import RelationMap, relation_handle
from .store import RecordStore

_LOG = logging.getLogger("crudform.form")


class RelationWriter:
    """Applies prepared relation payloads to a saved record, recursing into child rows."""

    def __init__(self, store: RecordStore, relations: RelationMap):
        self.store = store
        self.relations = relations

    def apply(self, parent: Any, prepared: PreparedUpdate, allowed: Iterable[str] | None = None) -> None:
        allowed = None if allowed is None else set(allowed)
        for name, payload in prepared.relations.items():
            if allowed is not None and name not in allowed:
                continue
            handle = relation_handle(type(parent), name)
            if handle is None:
                continue
            _LOG.debug("relation write model=%s relation=%s variant=%s", type(parent).__name__, name, handle.variant)
            handle.apply(
                parent,
                payload,
                store=self.store,
                writer=self,
                raw=prepared.raw_relations.get(name),
                path=name,
            )

    def has_sub_relation_input(self, path: str, raw_row: Mapping[str, Any]) -> bool:
        return any(sub in raw_row for sub in self.relations.sub_relation_fields(path))

    def apply_sub_relations(self, child: Any, path: str, raw_row: Mapping[str, Any]) -> None:
        for sub in self.relations.sub_relation_fields(path):
            if sub not in raw_row:
                continue
            handle = relation_handle(type(child), sub)
            if handle is None:
                continue
            sub_path = f"{path}.{sub}"
            context = SubRelationContext(sub, self.relations.fields_for(sub_path))
            prepared = UpdatePreparer(context.fields, (sub,)).prepare(
                {sub: raw_row[sub]},
                relation_mode=True,
                sub_relation=context,
            )
            if sub not in prepared:
                continue
            handle.apply(
                child,
                prepared[sub],
                store=self.store,
                writer=self,
                raw=raw_row[sub],
                path=sub_path,
            )
