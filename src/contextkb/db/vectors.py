"""Vector encoding helpers shared by the repository and its callers."""

from __future__ import annotations

import json


def encode_vector(vector: list[float]) -> str:
    """Serialise *vector* as the JSON text sqlite-vec accepts for float32 vectors."""
    if not vector:
        raise ValueError("Cannot store an empty embedding vector")
    return json.dumps([float(v) for v in vector])


def decode_vector(raw: str | None) -> list[float]:
    return json.loads(raw) if raw else []

