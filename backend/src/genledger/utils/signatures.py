"""Webhook signature verification and request parsing helpers.

Provider callbacks are signed with the Standard Webhooks scheme: the content
``"{webhook-id}.{webhook-timestamp}.{body}"`` is HMAC-SHA256 signed with the
base64-decoded secret (``whsec_`` prefix stripped) and sent base64-encoded in
the ``webhook-signature`` header as space-separated ``v1,<signature>`` entries.
"""
import base64
import binascii
import hashlib
import hmac
import json
import time
from typing import Any, Callable, Optional

from genledger.utils.result import Err, Ok, Result


def _decode_secret(secret: str) -> Result[bytes]:
    raw = secret[len("whsec_"):] if secret.startswith("whsec_") else secret
    try:
        return Ok(base64.b64decode(raw, validate=True))
    except (binascii.Error, ValueError):
        return Err("webhook secret is not valid base64")


def compute_signature(secret: str, webhook_id: str, timestamp: str, body: bytes) -> str:
    """
    Compute the base64 signature for a payload.

    Args:
        secret: Webhook secret, optionally prefixed with ``whsec_``
        webhook_id: Value of the ``webhook-id`` header
        timestamp: Value of the ``webhook-timestamp`` header
        body: Raw request body

    Returns:
        Base64-encoded HMAC-SHA256 signature

    Raises:
        ValueError: If the secret cannot be decoded
    """
    key = _decode_secret(secret)
    if not key.ok:
        raise ValueError(key.reason)
    signed = f"{webhook_id}.{timestamp}.".encode() + body
    digest = hmac.new(key.value, signed, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify_webhook_signature(
    secret: str,
    headers: dict[str, Optional[str]],
    body: bytes,
    tolerance_seconds: int = 300,
    now: Callable[[], float] = time.time,
) -> Result[str]:
    """
    Verify a signed provider callback.

    Args:
        secret: Configured webhook secret
        headers: Mapping with ``webhook-id``, ``webhook-timestamp`` and ``webhook-signature``
        body: Raw request body exactly as received
        tolerance_seconds: Maximum accepted clock skew for the timestamp
        now: Clock returning epoch seconds

    Returns:
        Ok(webhook_id) when one of the signatures matches, otherwise Err(reason)
    """
    webhook_id = headers.get("webhook-id")
    timestamp = headers.get("webhook-timestamp")
    signature_header = headers.get("webhook-signature")

    if not webhook_id or not timestamp or not signature_header:
        return Err("missing signature headers")

    try:
        sent_at = int(timestamp)
    except ValueError:
        return Err("invalid timestamp")
    if abs(now() - sent_at) > tolerance_seconds:
        return Err("timestamp outside tolerance")

    key = _decode_secret(secret)
    if not key.ok:
        return key

    expected = compute_signature(secret, webhook_id, timestamp, body)
    for entry in signature_header.split(" "):
        version, _, candidate = entry.partition(",")
        if version != "v1" or not candidate:
            continue
        if hmac.compare_digest(candidate.encode(), expected.encode()):
            return Ok(webhook_id)

    return Err("signature mismatch")


def parse_json_object(body: bytes) -> Result[dict[str, Any]]:
    """Decode a JSON object body."""
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        return Err(f"invalid JSON: {e}")
    if not isinstance(payload, dict):
        return Err("JSON body must be an object")
    return Ok(payload)


def parse_bearer_token(authorization: Optional[str]) -> Result[str]:
    """Extract the token from an ``Authorization: Bearer`` header."""
    if not authorization:
        return Err("missing authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return Err("expected bearer token")
    return Ok(token.strip())
