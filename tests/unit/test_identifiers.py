"""
Unit tests for ObjectId/string conversion and transport serialization.
"""

import copy
from collections import namedtuple
from datetime import datetime

from bson import Binary, Decimal128, ObjectId

from mdb_wrapper.utils.mongo import (
    encode_cache_arg,
    from_transport,
    is_object_id,
    is_object_id_string,
    is_walkable,
    object_id_to_string,
    parse_sort,
    string_to_object_id,
    to_transport,
)

OID = ObjectId("507f1f77bcf86cd799439011")
OID_2 = ObjectId("65a0c0ffee0000000000beef")


class TestPredicates:
    """Test the explicit predicates used by the recursion."""

    def test_is_object_id(self):
        assert is_object_id(OID)
        assert not is_object_id(str(OID))

    def test_is_object_id_string(self):
        assert is_object_id_string("507f1f77bcf86cd799439011")
        assert is_object_id_string("507F1F77BCF86CD799439011")
        assert not is_object_id_string("507f1f77bcf86cd79943901")  # 23 chars
        assert not is_object_id_string("507f1f77bcf86cd79943901z")
        assert not is_object_id_string(" 507f1f77bcf86cd799439011")
        assert not is_object_id_string(12)

    def test_is_walkable(self):
        assert is_walkable({"a": 1})
        assert not is_walkable({})
        assert not is_walkable([1, 2])
        assert is_walkable([1, 2], include_sequences=True)
        assert not is_walkable("text", include_sequences=True)


class TestObjectIdToString:
    """Test conversion to the external (string) form."""

    def test_nested_document(self):
        document = {
            "_id": OID,
            "owner": {"id": OID_2, "tags": [OID, "plain"]},
            "count": 3,
        }

        assert object_id_to_string(document) == {
            "_id": str(OID),
            "owner": {"id": str(OID_2), "tags": [str(OID), "plain"]},
            "count": 3,
        }

    def test_does_not_mutate_input(self):
        document = {"_id": OID, "items": [{"ref": OID_2}]}
        snapshot = copy.deepcopy(document)

        object_id_to_string(document)

        assert document == snapshot

    def test_opaque_values_untouched(self):
        when = datetime(2024, 1, 2, 3, 4, 5)
        blob = Binary(b"\x00\x01")
        price = Decimal128("9.99")

        result = object_id_to_string({"when": when, "blob": blob, "price": price})

        assert result["when"] is when
        assert result["blob"] is blob
        assert result["price"] is price

    def test_top_level_values(self):
        assert object_id_to_string(OID) == str(OID)
        assert object_id_to_string(None) is None
        assert object_id_to_string([]) == []
        assert object_id_to_string({}) == {}

    def test_tuples_keep_their_type(self):
        assert object_id_to_string((OID, 1)) == (str(OID), 1)

    def test_namedtuples_keep_their_type(self):
        Ref = namedtuple("Ref", ["id", "label"])

        result = object_id_to_string(Ref(OID, "primary"))

        assert result == Ref(str(OID), "primary")
        assert type(result) is Ref
        assert string_to_object_id(result) == Ref(OID, "primary")


class TestStringToObjectId:
    """Test conversion to the internal (ObjectId) form."""

    def test_converts_only_valid_strings(self):
        result = string_to_object_id(
            {"_id": str(OID), "name": "alice", "short": "507f1f77", "ids": [str(OID_2)]}
        )

        assert result == {"_id": OID, "name": "alice", "short": "507f1f77", "ids": [OID_2]}

    def test_query_operators(self):
        query = {"_id": {"$in": [str(OID), str(OID_2)]}, "$or": [{"owner": str(OID)}]}

        result = string_to_object_id(query)

        assert result == {"_id": {"$in": [OID, OID_2]}, "$or": [{"owner": OID}]}

    def test_round_trip(self):
        document = {"_id": OID, "refs": [OID_2, {"deep": OID}], "name": "x"}

        assert string_to_object_id(object_id_to_string(document)) == document

    def test_does_not_mutate_input(self):
        query = {"_id": str(OID)}

        string_to_object_id(query)

        assert query == {"_id": str(OID)}

    def test_near_miss_strings_are_left_alone(self):
        query = {
            "trailing_newline": str(OID) + "\n",
            "leading_space": " " + str(OID),
            "too_long": str(OID) + "0",
            "non_hex": "z" * 24,
        }

        assert string_to_object_id(query) == query
        assert not is_object_id_string(str(OID) + "\n")


class TestTransportSerialization:
    """Test canonical Extended JSON serialization used by the cache."""

    def test_round_trip_preserves_types(self):
        value = {
            "_id": OID,
            "when": datetime(2024, 1, 2, 3, 4, 5, 123000),
            "count": 7,
            "ratio": 0.5,
            "items": [1, "two", None],
        }

        assert from_transport(to_transport(value)) == value

    def test_encode_cache_arg_is_deterministic(self):
        assert encode_cache_arg({"a": 1}) == encode_cache_arg({"a": 1})
        assert encode_cache_arg({"a": 1}) != encode_cache_arg({"a": 2})

    def test_encode_cache_arg_is_base64(self):
        encoded = encode_cache_arg({"a": 1})

        assert set(encoded) <= set(
            "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/="
        )


class TestParseSort:
    """Test sort string parsing."""

    def test_ascending(self):
        assert parse_sort("name") == {"name": 1}

    def test_descending_with_nested_field(self):
        assert parse_sort("-created_at") == {"created.at": -1}

    def test_empty(self):
        assert parse_sort("") is None
        assert parse_sort(None) is None
