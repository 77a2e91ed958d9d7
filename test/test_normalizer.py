"""
orderstream normalizer tests

Covers:
- Canonical re-encoding (sorted keys, no whitespace, UTF-8)
- Identifier extraction from the configured top-level field
- Rejection classes: MalformedPayload vs MissingIdentifier

Property of Uncompromising Sensors LLC.
"""

import os
import sys
import pytest

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from orderstream.core.normalizer import (
    normalize, NormalizedOrder, NormalizationError, MalformedPayload, MissingIdentifier
)


class TestCanonicalForm:
    """Semantically identical documents normalize to identical bytes"""

    def test_valid_document(self):
        """Identifier is extracted and the payload is canonical"""
        result = normalize(b'{ "order_uid": "abc123",  "amount": 10 }')

        assert isinstance(result, NormalizedOrder)
        assert result.orderId == "abc123"
        assert result.payload == b'{"amount":10,"order_uid":"abc123"}'

    def test_key_order_and_whitespace_do_not_matter(self):
        """Reordered keys and whitespace produce the same canonical bytes"""
        first = normalize(b'{"order_uid":"x1","items":[{"b":2,"a":1}],"track":"T"}')
        second = normalize(b'{\n  "track": "T",\n  "items": [ {"a": 1, "b": 2} ],\n  "order_uid": "x1"\n}')

        assert first.payload == second.payload
        assert first.orderId == second.orderId == "x1"

    def test_nested_structure_preserved(self):
        """Everything beyond the identifier is carried through untouched"""
        result = normalize(b'{"order_uid":"n1","delivery":{"name":"Test","zip":"2639809"},"items":[1,2,3]}')
        assert result.payload == b'{"delivery":{"name":"Test","zip":"2639809"},"items":[1,2,3],"order_uid":"n1"}'

    def test_non_ascii_is_utf8(self):
        """Non-ASCII text is emitted as raw UTF-8, not \\u escapes"""
        result = normalize('{"order_uid":"u1","city":"Köln"}'.encode('utf-8'))
        assert result.payload == '{"city":"Köln","order_uid":"u1"}'.encode('utf-8')

    def test_bytearray_input(self):
        """bytearray and memoryview inputs are accepted"""
        raw = b'{"order_uid":"b1"}'
        assert normalize(bytearray(raw)).orderId == "b1"
        assert normalize(memoryview(raw)).orderId == "b1"

    def test_custom_id_field(self):
        """Identifier field is configurable"""
        result = normalize(b'{"id":"c1","order_uid":"ignored"}', idField="id")
        assert result.orderId == "c1"


class TestRejection:
    """Payloads that can never be ingested"""

    @pytest.mark.parametrize("raw", [
        b'{"unterminated',
        b'',
        b'not json',
        b'\xff\xfe\x00',
        b'{"order_uid": NaN}',
        b'{"order_uid": "a", "x": Infinity}',
        b'{"order_uid": "a", "x": "\\ud800"}',
    ])
    def test_malformed(self, raw):
        with pytest.raises(MalformedPayload):
            normalize(raw)

    @pytest.mark.parametrize("raw", [
        b'{"no_id_field":true}',
        b'{"order_uid": ""}',
        b'{"order_uid": 123}',
        b'{"order_uid": null}',
        b'[{"order_uid": "a"}]',
        b'"order_uid"',
        b'{"nested": {"order_uid": "a"}}',
    ])
    def test_missing_identifier(self, raw):
        with pytest.raises(MissingIdentifier):
            normalize(raw)

    def test_common_base_class(self):
        """Callers can catch both rejection kinds at once"""
        assert issubclass(MalformedPayload, NormalizationError)
        assert issubclass(MissingIdentifier, NormalizationError)

    def test_missing_identifier_message_names_field(self):
        with pytest.raises(MissingIdentifier, match="order_uid not found"):
            normalize(b'{"no_id_field":true}')
