"""Compact token parsing and segment encoding.

Nothing here touches keys or the network: ``decode`` only splits a token,
parses its JSON segments and keeps the exact bytes that the signature covers.
"""

from __future__ import annotations

import binascii
import json
from dataclasses import dataclass
from typing import Any

from jwt.utils import base64url_decode, base64url_encode

from .errors import MalformedToken


@dataclass(frozen=True)
class DecodedToken:
    header: dict[str, Any]
    payload: dict[str, Any]
    signature: bytes
    signed_data: bytes
    signature_segment: str


def _split(token: Any) -> tuple[str, str, str]:
    if not isinstance(token, str):
        raise MalformedToken("token must be a string")
    parts = token.split(".")
    if len(parts) != 3:
        raise MalformedToken(f"token must consist of 3 parts, got {len(parts)}")
    if not all(parts):
        raise MalformedToken("token segments must not be empty")
    return parts[0], parts[1], parts[2]


def _b64_decode(segment: str, label: str) -> bytes:
    try:
        return base64url_decode(segment)
    except (binascii.Error, ValueError) as exc:
        raise MalformedToken(f"{label} is not valid base64url") from exc


def _decode_object(segment: str, label: str) -> dict[str, Any]:
    raw = _b64_decode(segment, label)
    try:
        obj = json.loads(raw)
    except (ValueError, RecursionError) as exc:
        raise MalformedToken(f"{label} is not valid JSON") from exc
    if not isinstance(obj, dict):
        raise MalformedToken(f"{label} must be a JSON object")
    return obj


def encode_segment(obj: dict[str, Any]) -> str:
    data = json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64url_encode(data).decode("ascii")


def decode_header(token: Any) -> dict[str, Any]:
    header_seg, _, _ = _split(token)
    return _decode_object(header_seg, "header")


def decode(token: Any) -> DecodedToken:
    header_seg, payload_seg, signature_seg = _split(token)
    return DecodedToken(
        header=_decode_object(header_seg, "header"),
        payload=_decode_object(payload_seg, "payload"),
        signature=_b64_decode(signature_seg, "signature"),
        # Signed span is the literal text, never a re-encoding of the parsed JSON.
        signed_data=f"{header_seg}.{payload_seg}".encode("utf-8"),
        signature_segment=signature_seg,
    )
