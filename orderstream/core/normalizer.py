"""
Message Normalizer

Validates an inbound order message, extracts its identifier and re-encodes
it canonically so that semantically identical documents are stored
byte-identically.

Canonical form (canonicaljson, RFC 8785 subset):
- Sorted object keys
- No insignificant whitespace
- UTF-8 encoding

Only the identifier is typed. The rest of the document stays an opaque blob.
Pure: no I/O, no logging, no state.
"""

import json
from typing import NamedTuple

import canonicaljson

from .contract import DEFAULT_ID_FIELD


class NormalizationError(Exception):
    """Inbound payload can never be ingested"""
    pass


class MalformedPayload(NormalizationError):
    """Payload is not valid UTF-8 JSON"""
    pass


class MissingIdentifier(NormalizationError):
    """Payload is valid JSON but carries no non-empty string identifier"""
    pass


class NormalizedOrder(NamedTuple):
    orderId: str
    payload: bytes


def normalize(raw: bytes, idField: str = DEFAULT_ID_FIELD) -> NormalizedOrder:
    """
    Validate and canonicalize one inbound order message.

    Args:
        raw: Message bytes as delivered by the channel
        idField: Top-level field holding the identifier

    Returns:
        NormalizedOrder(orderId, payload) with canonical payload bytes

    Raises:
        MalformedPayload: raw is not valid UTF-8 JSON
        MissingIdentifier: not a JSON object, or the identifier is absent,
            not a string, or empty
    """
    if isinstance(raw, (bytearray, memoryview)):
        raw = bytes(raw)

    try:
        document = json.loads(raw.decode("utf-8"), parse_constant=_rejectConstant)
    except UnicodeDecodeError as e:
        raise MalformedPayload(f"payload is not UTF-8: {e}")
    except ValueError as e:
        raise MalformedPayload(f"invalid json: {e}")

    orderId = _extractId(document, idField)

    try:
        payload = canonicaljson.encode_canonical_json(document)
    except ValueError as e:
        # Lone surrogate escapes decode but cannot be re-encoded as UTF-8
        raise MalformedPayload(f"payload has no canonical encoding: {e}")

    return NormalizedOrder(orderId, payload)


def _rejectConstant(name: str):
    raise ValueError(f"{name} is not a JSON value")


def _extractId(document, idField: str) -> str:
    if not isinstance(document, dict):
        raise MissingIdentifier(f"{idField} not found: payload is a JSON {type(document).__name__}, not an object")

    if idField not in document:
        raise MissingIdentifier(f"{idField} not found")

    orderId = document[idField]
    if not isinstance(orderId, str) or not orderId:
        raise MissingIdentifier(f"{idField} must be a non-empty string")

    return orderId
