"""
Write-default hook composition.

Merges centrally configured default fields into insert documents and update
payloads before they reach the store.

Precedence rules:
- Update hook fields override the caller's own ``$set`` fields, so fields
  such as an update timestamp cannot be overridden by callers.
- Insert hook fields go to ``$setOnInsert`` only for keys that are not in
  the resulting ``$set``; a caller's own ``$setOnInsert`` entry wins over
  the hook on key collision.
- For new documents the insert hook's fields override the caller's fields.
  The same rule holds for ``insert_one``, ``insert_many`` and bulk inserts.

Pipeline-style updates (lists of stages) are passed through untouched since
per-field merging is undefined for them.
"""

import logging
from collections.abc import Mapping
from typing import Any

from .types import Document, WriteHook, maybe_await

logger = logging.getLogger(__name__)

SET = "$set"
SET_ON_INSERT = "$setOnInsert"


async def _call_hook(hook: WriteHook | None, collection: str, payload: Any) -> dict[str, Any]:
    if hook is None:
        return {}
    fields = await maybe_await(hook(collection, payload))
    return dict(fields) if fields else {}


async def compose_insert(
    collection: str,
    document: Mapping[str, Any],
    *,
    set_on_insert: WriteHook | None = None,
) -> Document:
    """
    Merge insert hook fields into a new document.

    Args:
        collection: Collection name passed to the hook
        document: Caller's document (not mutated)
        set_on_insert: Optional insert hook

    Returns:
        A new document; hook fields win on key collision
    """
    defaults = await _call_hook(set_on_insert, collection, document)
    if not defaults:
        return dict(document)
    return {**document, **defaults}


async def compose_update(
    collection: str,
    update: Any,
    *,
    set_on_update: WriteHook | None = None,
    set_on_insert: WriteHook | None = None,
    skip_hooks: bool = False,
) -> Any:
    """
    Merge update and insert hook fields into an update payload.

    Args:
        collection: Collection name passed to the hooks
        update: Operator mapping or pipeline list (not mutated)
        set_on_update: Optional update hook
        set_on_insert: Optional insert hook
        skip_hooks: Return ``update`` unchanged when True

    Returns:
        The composed payload
    """
    if skip_hooks or isinstance(update, list | tuple):
        return update

    on_update = await _call_hook(set_on_update, collection, update)
    on_insert = await _call_hook(set_on_insert, collection, update)

    if not on_update and not on_insert:
        return update

    composed = dict(update)

    if on_update:
        composed[SET] = {**(composed.get(SET) or {}), **on_update}

    if on_insert:
        current_set = composed.get(SET) or {}
        entries = {key: value for key, value in on_insert.items() if key not in current_set}
        if entries:
            composed[SET_ON_INSERT] = {**entries, **(composed.get(SET_ON_INSERT) or {})}

    return composed


async def compose_bulk_operations(
    collection: str,
    operations: list[Mapping[str, Any]],
    *,
    set_on_update: WriteHook | None = None,
    set_on_insert: WriteHook | None = None,
    skip_hooks: bool = False,
) -> list[dict[str, Any]]:
    """
    Apply hook composition to every operation of a bulk write.

    Operations are single-key mappings such as ``{"insert_one": {"document": ...}}``
    or ``{"update_many": {"filter": ..., "update": ...}}``. Inserts always
    receive ``compose_insert``, updates ``compose_update`` (honoring
    ``skip_hooks``); every other operation passes through.
    """
    composed: list[dict[str, Any]] = []
    for operation in operations:
        if "insert_one" in operation:
            body = dict(operation["insert_one"])
            body["document"] = await compose_insert(
                collection, body["document"], set_on_insert=set_on_insert
            )
            composed.append({"insert_one": body})
        elif "update_one" in operation or "update_many" in operation:
            kind = "update_one" if "update_one" in operation else "update_many"
            body = dict(operation[kind])
            body["update"] = await compose_update(
                collection,
                body["update"],
                set_on_update=set_on_update,
                set_on_insert=set_on_insert,
                skip_hooks=skip_hooks,
            )
            composed.append({kind: body})
        else:
            composed.append(dict(operation))

    logger.debug(f"Composed {len(composed)} bulk operations for '{collection}'")
    return composed
