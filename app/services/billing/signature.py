"""Stripe webhook signature verification (``t=...,v1=...`` scheme)."""

from __future__ import annotations

import hmac
import time
from hashlib import sha256


def parse_signature_header(signature_header: str) -> tuple[str | None, list[str]]:
    """Return the ``t`` timestamp and every ``v1`` signature in the header."""
    timestamp: str | None = None
    signatures: list[str] = []
    for entry in signature_header.split(","):
        key, sep, value = entry.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp = value
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def compute_signature(raw_body: bytes, timestamp: str, secret: str) -> str:
    signed_payload = f"{timestamp}.".encode() + raw_body
    return hmac.new(secret.encode(), msg=signed_payload, digestmod=sha256).hexdigest()


def verify(
    raw_body: bytes,
    signature_header: str | None,
    secret: str,
    *,
    tolerance: int | None = None,
    now: float | None = None,
) -> bool:
    """Return True when any ``v1`` value matches the HMAC of ``"<t>.<body>"``.

    Fails closed on a missing header, missing timestamp or missing ``v1`` values.
    When ``tolerance`` is a positive number of seconds, timestamps further than
    that from ``now`` are rejected to block replays.
    """
    if not signature_header or not secret:
        return False
    timestamp, signatures = parse_signature_header(signature_header)
    if not timestamp or not signatures:
        return False
    if tolerance:
        try:
            signed_at = int(timestamp)
        except ValueError:
            return False
        current = time.time() if now is None else now
        if abs(current - signed_at) > tolerance:
            return False
    expected = compute_signature(raw_body, timestamp, secret)
    return any(
        candidate.isascii() and hmac.compare_digest(expected, candidate) for candidate in signatures
    )
