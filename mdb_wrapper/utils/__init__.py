"""
Utility functions and helpers for MDB Wrapper.

This module provides utility functions used across the MDB Wrapper codebase.
"""

from .mongo import (
    encode_cache_arg,
    from_transport,
    is_object_id,
    is_object_id_string,
    is_walkable,
    object_id_to_string,
    parse_sort,
    string_to_object_id,
    to_external,
    to_internal,
    to_transport,
)

__all__ = [
    "object_id_to_string",
    "string_to_object_id",
    "to_external",
    "to_internal",
    "is_object_id",
    "is_object_id_string",
    "is_walkable",
    "to_transport",
    "from_transport",
    "encode_cache_arg",
    "parse_sort",
]
