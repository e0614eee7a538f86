"""
test_hasher.py - Canonical hashing tests.

Vectors follow RFC 8785 (JSON Canonicalization Scheme).
"""

import pytest

from ledger_history.services.reconciliation.errors import SerializationError
from ledger_history.services.reconciliation.hasher import (
    canonicalize,
    compute_content_hash,
    content_view,
)


class TestCanonicalize:
    def test_keys_sorted(self):
        assert canonicalize({"b": 1, "a": 2}) == b'{"a":2,"b":1}'

    def test_nested_structures(self):
        data = {"z": [3, {"y": None, "x": True}], "a": "text"}
        assert canonicalize(data) == b'{"a":"text","z":[3,{"x":true,"y":null}]}'

    def test_integral_float_has_no_fraction(self):
        assert canonicalize(2.0) == b"2"
        assert canonicalize(-0.0) == b"0"

    def test_exponent_has_no_plus_or_leading_zero(self):
        assert canonicalize(1e-7) == b"1e-7"

    def test_unicode_kept_verbatim(self):
        assert canonicalize("café") == '"café"'.encode("utf-8")

    def test_tuple_treated_as_array(self):
        assert canonicalize((1, 2)) == b"[1,2]"

    def test_nan_rejected(self):
        with pytest.raises(SerializationError):
            canonicalize(float("nan"))

    def test_infinity_rejected(self):
        with pytest.raises(SerializationError):
            canonicalize({"v": float("inf")})

    def test_non_string_key_rejected(self):
        with pytest.raises(SerializationError) as exc:
            canonicalize({1: "one"})
        assert exc.value.code == "SERIALIZATION_ERROR"

    def test_unsupported_type_rejected(self):
        with pytest.raises(SerializationError):
            canonicalize({"when": object()})


class TestContentHash:
    def test_stable_across_calls(self):
        payload = {"lot": "L1", "weight": 12.5, "tags": ["organic", "fair"]}
        assert compute_content_hash(payload) == compute_content_hash(payload)

    def test_key_order_irrelevant(self):
        first = {"a": 1, "b": {"c": 2, "d": 3}}
        second = {"b": {"d": 3, "c": 2}, "a": 1}
        assert compute_content_hash(first) == compute_content_hash(second)

    def test_one_character_changes_hash(self):
        assert compute_content_hash({"lot": "L1"}) != compute_content_hash({"lot": "L2"})

    def test_number_and_string_differ(self):
        assert compute_content_hash({"v": 1}) != compute_content_hash({"v": "1"})

    def test_hex_sha256(self):
        digest = compute_content_hash({})
        assert len(digest) == 64
        int(digest, 16)


class TestContentView:
    def test_strips_enrichment_object(self):
        payload = {
            "lot": "L1",
            "_ledger": {"emitting_actor": "farm-1", "ledger_status": "confirmado"},
        }
        assert content_view(payload) == {"lot": "L1"}

    def test_keeps_source_fields_with_ledger_names(self):
        payload = {"lot": "L1", "emitting_actor": "farm-1", "storage_reference": "s3://bucket/key"}
        assert content_view(payload) == payload

    def test_does_not_mutate_input(self):
        payload = {"_ledger": {"emitting_actor": "farm-1"}}
        content_view(payload)
        assert payload == {"_ledger": {"emitting_actor": "farm-1"}}
