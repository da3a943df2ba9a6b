from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any

from jwt.utils import base64url_encode

from .algorithms import Algorithm, get_primitive, parse_algorithm
from .codec import encode_segment
from .errors import InvalidKey, SigningFailed, TokenError
from .keys import KeyHandle, Usage

logger = logging.getLogger(__name__)

_RESERVED_HEADERS = frozenset({"typ", "alg", "kid"})


def build_header(
    algorithm: Algorithm, kid: str | None = None, headers: Mapping[str, Any] | None = None
) -> dict[str, Any]:
    header: dict[str, Any] = {"typ": "JWT", "alg": algorithm.value}
    if kid:
        header["kid"] = kid
    if headers:
        header.update({k: v for k, v in headers.items() if k not in _RESERVED_HEADERS})
    return header


def build_payload(payload: Mapping[str, Any], *, at: int | None = None) -> dict[str, Any]:
    # Caller fields overlay the computed iat, including a caller-supplied iat.
    issued_at = int(time.time()) if at is None else int(at)
    return {"iat": issued_at, **payload}


def sign(
    payload: Mapping[str, Any],
    key: KeyHandle,
    *,
    algorithm: Algorithm | str,
    kid: str | None = None,
    headers: Mapping[str, Any] | None = None,
    at: int | None = None,
) -> str:
    alg = parse_algorithm(algorithm)
    if not isinstance(payload, Mapping):
        raise SigningFailed("payload must be an object")
    if not isinstance(payload.get("jti"), str):
        raise SigningFailed("payload must carry a string jti")
    if not isinstance(key, KeyHandle):
        raise InvalidKey("key must be a KeyHandle")
    if not key.can(Usage.SIGN):
        raise InvalidKey(f"key is not usable for signing ({key.algorithm.value})")
    if key.algorithm is not alg:
        raise InvalidKey(f"key is bound to {key.algorithm.value}, cannot sign {alg.value}")

    try:
        header_seg = encode_segment(build_header(alg, kid, headers))
        payload_seg = encode_segment(build_payload(payload, at=at))
    except (TypeError, ValueError) as exc:
        raise SigningFailed(f"token is not JSON serializable: {exc}") from exc

    signing_input = f"{header_seg}.{payload_seg}"
    try:
        signature = get_primitive(alg).sign(signing_input.encode("utf-8"), key.signing_key())
    except TokenError:
        raise
    except Exception as exc:  # noqa: BLE001 - any primitive failure is a signing failure
        raise SigningFailed(f"{alg.value} signing failed: {exc}") from exc

    logger.debug("signed token alg=%s kid=%s", alg.value, kid)
    return f"{signing_input}.{base64url_encode(signature).decode('ascii')}"
