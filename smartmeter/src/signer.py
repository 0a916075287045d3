"""
HMAC-SHA256 message authentication for encoded payloads.

Operations:
- sign(payload, key): lowercase hex HMAC-SHA256 over the exact payload bytes.
- verify(payload, key, signature): constant-time check of a signature.
- seal(payload, key, meter_id, timestamp_ns): wrap the payload in a signed
  envelope and serialize it as the bytes to transmit.

All functions are stateless; identical (payload, key) always yields the
same signature.

CHANGELOG:
- 2026-10-13: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import hashlib
import hmac

from smartmeter.src.models import Envelope


def _key_bytes(key: bytes | str) -> bytes:
    """Normalize the key to bytes and reject an empty key."""
    raw = key.encode("utf-8") if isinstance(key, str) else bytes(key)
    if not raw:
        raise ValueError("HMAC key must not be empty")
    return raw


def sign(payload: bytes, key: bytes | str) -> str:
    """Return the lowercase hex HMAC-SHA256 of *payload* under *key*.

    Raises:
        ValueError: If *key* is empty.
    """
    return hmac.new(_key_bytes(key), payload, hashlib.sha256).hexdigest()


def verify(payload: bytes, key: bytes | str, signature: str) -> bool:
    """Return True when *signature* matches ``sign(payload, key)``."""
    return hmac.compare_digest(sign(payload, key), signature.lower())


def build_envelope(payload: bytes, key: bytes | str, meter_id: str, timestamp_ns: int) -> Envelope:
    """Sign *payload* and wrap it with the meter id and capture time."""
    return Envelope(
        payload=payload.decode("utf-8"),
        hmac_hex=sign(payload, key),
        meter_id=meter_id,
        timestamp_ns=timestamp_ns,
    )


def seal(payload: bytes, key: bytes | str, meter_id: str, timestamp_ns: int) -> bytes:
    """Serialize the signed envelope that replaces *payload* on the wire.

    The document is ``{"payload": str, "hmac": hex, "meter_id": str,
    "timestamp_ns": int}``.
    """
    envelope = build_envelope(payload, key, meter_id, timestamp_ns)
    return envelope.model_dump_json(by_alias=True).encode("utf-8")
