"""
MongoDB utility functions for MDB Wrapper.

Identifier conversion between the store's ``ObjectId`` and its 24-character
hexadecimal string form, transport-safe serialization for cached results,
and small helpers shared by the transports.

Both identifier conversions are pure and total: they never mutate their
input and never raise. Anything they do not recognize is returned as-is.
"""

import base64
import re
from collections.abc import Mapping
from typing import Any

from bson import ObjectId, json_util
from bson.json_util import CANONICAL_JSON_OPTIONS

from ..constants import OBJECT_ID_PATTERN

_OBJECT_ID_RE = re.compile(OBJECT_ID_PATTERN)


def is_object_id(value: Any) -> bool:
    """Return True if ``value`` is the store's opaque identifier type."""
    return isinstance(value, ObjectId)


def is_object_id_string(value: Any) -> bool:
    """Return True if ``value`` is a string in the exact ObjectId grammar."""
    return isinstance(value, str) and _OBJECT_ID_RE.fullmatch(value) is not None


def is_walkable(value: Any, include_sequences: bool = False) -> bool:
    """
    Return True if the identifier conversion should descend into ``value``.

    Non-empty mappings are always walkable. Lists and tuples are walkable when
    ``include_sequences`` is set (they are never "empty-checked": an empty
    list simply has nothing to convert).
    """
    if isinstance(value, Mapping):
        return len(value) > 0
    return include_sequences and isinstance(value, list | tuple)


def _convert(value: Any, leaf) -> Any:
    converted = leaf(value)
    if converted is not value:
        return converted
    if is_walkable(value, include_sequences=True):
        return _walk(value, leaf)
    return value


def _walk(obj: Any, leaf) -> Any:
    if isinstance(obj, list | tuple):
        items = [_convert(item, leaf) for item in obj]
        if hasattr(obj, "_fields"):
            # namedtuple
            return type(obj)(*items)
        return type(obj)(items)
    if is_walkable(obj):
        return {key: _convert(item, leaf) for key, item in obj.items()}
    # datetime, Binary, Decimal128 or other opaque scalar
    return obj


def _oid_to_str(value: Any) -> Any:
    return str(value) if is_object_id(value) else value


def _str_to_oid(value: Any) -> Any:
    return ObjectId(value) if is_object_id_string(value) else value


def object_id_to_string(obj: Any) -> Any:
    """
    Replace every ObjectId in ``obj`` with its string form.

    Example:
        ```python
        doc = {"_id": ObjectId("507f1f77bcf86cd799439011"), "tags": [ObjectId(...)]}
        object_id_to_string(doc)
        # {"_id": "507f1f77bcf86cd799439011", "tags": ["..."]}
        ```
    """
    return _convert(obj, _oid_to_str)


def string_to_object_id(obj: Any) -> Any:
    """
    Replace every valid ObjectId string in ``obj`` with an ObjectId.

    Strings that do not match the 24-character hexadecimal grammar are left
    unchanged.
    """
    return _convert(obj, _str_to_oid)


# Short names used at call sites, mirroring the direction of the conversion
to_external = object_id_to_string
to_internal = string_to_object_id


def to_transport(value: Any) -> str:
    """
    Serialize ``value`` to canonical Extended JSON.

    Canonical mode keeps datetimes, ObjectIds, Binary and numeric types
    distinguishable so ``from_transport`` returns equal values.
    """
    return json_util.dumps(value, json_options=CANONICAL_JSON_OPTIONS)


def from_transport(text: str | bytes) -> Any:
    """Deserialize Extended JSON produced by ``to_transport``."""
    return json_util.loads(text, json_options=CANONICAL_JSON_OPTIONS)


def encode_cache_arg(value: Any) -> str:
    """Encode one call argument as a deterministic cache key part."""
    return base64.b64encode(to_transport(value).encode("utf-8")).decode("ascii")


def parse_sort(sort: str | None) -> dict[str, int] | None:
    """
    Convert a sort string into a MongoDB sort specification.

    A leading ``-`` means descending; the first ``_`` becomes a ``.`` so that
    ``"-author_name"`` sorts on ``author.name``.

    Example:
        ```python
        parse_sort("-created_at")  # {"created.at": -1}
        parse_sort("name")         # {"name": 1}
        ```
    """
    if not sort:
        return None

    descending = sort.startswith("-")
    field = sort.replace("-", "", 1).replace("_", ".", 1)
    return {field: -1 if descending else 1}
