from __future__ import annotations

import logging
import time
from collections.abc import Collection
from typing import Any, NamedTuple

from jwt.utils import base64url_encode

from .algorithms import Algorithm, get_primitive, parse_algorithm
from .codec import decode
from .errors import (
    Expired,
    InvalidKey,
    MalformedToken,
    NotYetValid,
    SignatureInvalid,
    TokenError,
    UnsupportedAlgorithm,
)
from .keys import KeyHandle, Usage

logger = logging.getLogger(__name__)


class VerifiedToken(NamedTuple):
    header: dict[str, Any]
    payload: dict[str, Any]


def _numeric_claim(payload: dict[str, Any], name: str) -> float | None:
    value = payload.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedToken(f"{name} claim must be a number")
    return value


def check_time_claims(payload: dict[str, Any], *, now: int) -> None:
    nbf = _numeric_claim(payload, "nbf")
    exp = _numeric_claim(payload, "exp")
    if nbf is not None and nbf > now:
        raise NotYetValid("token is not valid yet (nbf in the future)")
    if exp is not None and exp <= now:
        raise Expired("token is expired")


def _resolve_algorithm(header: dict[str, Any], allowed: Collection[Algorithm | str] | None) -> Algorithm:
    alg = parse_algorithm(header.get("alg"))
    if allowed is not None:
        allowlist = {parse_algorithm(item) for item in allowed}
        if alg not in allowlist:
            expected = ", ".join(sorted(item.value for item in allowlist))
            raise UnsupportedAlgorithm(f"algorithm {alg.value} is not allowed (expected one of: {expected})")
    return alg


def verify(
    token: str,
    key: KeyHandle,
    *,
    algorithms: Collection[Algorithm | str] | None = None,
    at: int | None = None,
) -> VerifiedToken:
    """Verify ``token`` with ``key`` and return its header and payload as decoded.

    The algorithm is taken from the token header. Pass ``algorithms`` to
    additionally require it to be one of an explicit allow-list.
    """
    decoded = decode(token)
    now = int(time.time()) if at is None else int(at)
    check_time_claims(decoded.payload, now=now)

    alg = _resolve_algorithm(decoded.header, algorithms)
    if not isinstance(key, KeyHandle):
        raise InvalidKey("key must be a KeyHandle")
    if not key.can(Usage.VERIFY):
        raise InvalidKey(f"key is not usable for verifying ({key.algorithm.value})")
    if key.algorithm is not alg:
        raise InvalidKey(f"key is bound to {key.algorithm.value}, token uses {alg.value}")

    # Non-canonical trailing bits decode to the same bytes; treat them as tampering.
    if base64url_encode(decoded.signature).decode("ascii") != decoded.signature_segment:
        raise SignatureInvalid("signature segment is not canonical base64url")

    try:
        verified = get_primitive(alg).verify(decoded.signed_data, key.verifying_key(), decoded.signature)
    except TokenError:
        raise
    except Exception as exc:  # noqa: BLE001 - primitive rejected the key itself
        raise InvalidKey(f"{alg.value} verification could not use key: {exc}") from exc
    if not verified:
        logger.debug("signature mismatch alg=%s kid=%s", alg.value, decoded.header.get("kid"))
        raise SignatureInvalid("signature verification failed")
    return VerifiedToken(decoded.header, decoded.payload)
