"""Tests for vector encoding helpers."""

from __future__ import annotations

import json

import pytest

from contextkb.db.vectors import decode_vector, encode_vector


def test_encode_vector_is_json_floats():
    raw = encode_vector([1, 0.5, -2])
    assert json.loads(raw) == [1.0, 0.5, -2.0]


def test_encode_vector_rejects_empty():
    with pytest.raises(ValueError, match="empty"):
        encode_vector([])


def test_decode_vector_round_trip():
    assert decode_vector(encode_vector([0.25, 0.75])) == [0.25, 0.75]


def test_decode_vector_none_is_empty():
    assert decode_vector(None) == []
