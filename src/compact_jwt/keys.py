from __future__ import annotations

import enum
import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, cast

from cryptography.exceptions import UnsupportedAlgorithm as CryptoUnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jwt import exceptions as jwt_exceptions

from .algorithms import ALGORITHMS, Algorithm, AlgorithmSpec, Family, get_primitive, parse_algorithm
from .errors import InvalidKey

logger = logging.getLogger(__name__)

CURVES: dict[str, type[ec.EllipticCurve]] = {
    "P-256": ec.SECP256R1,
    "P-384": ec.SECP384R1,
    "P-521": ec.SECP521R1,
}

_PRIVATE_TYPES: dict[Family, tuple[type, ...]] = {
    Family.RSASSA_PKCS1_V1_5: (rsa.RSAPrivateKey,),
    Family.ECDSA: (ec.EllipticCurvePrivateKey,),
}

_PUBLIC_TYPES: dict[Family, tuple[type, ...]] = {
    Family.RSASSA_PKCS1_V1_5: (rsa.RSAPublicKey,),
    Family.ECDSA: (ec.EllipticCurvePublicKey,),
}

_IMPORT_ERRORS = (
    jwt_exceptions.InvalidKeyError,
    CryptoUnsupportedAlgorithm,
    KeyError,
    TypeError,
    ValueError,
)


class Usage(str, enum.Enum):
    SIGN = "sign"
    VERIFY = "verify"


@dataclass(frozen=True, eq=False)
class KeyHandle:
    """Key material bound to exactly one algorithm and a set of usages.

    Handles compare by identity; two imports of the same material are distinct.

    Handles are only built through ``import_key``/``import_jwk``; that is where
    family, curve and capability mismatches are rejected.
    """

    algorithm: Algorithm
    usages: frozenset[Usage]
    key: Any = field(repr=False)
    kid: str | None = None

    @property
    def spec(self) -> AlgorithmSpec:
        return ALGORITHMS[self.algorithm]

    def can(self, usage: Usage) -> bool:
        return usage in self.usages

    def signing_key(self) -> Any:
        if Usage.SIGN not in self.usages:
            raise InvalidKey(f"key is not usable for signing ({self.algorithm.value})")
        return self.key

    def verifying_key(self) -> Any:
        if Usage.VERIFY not in self.usages:
            raise InvalidKey(f"key is not usable for verifying ({self.algorithm.value})")
        return _public_half(self.key)


def _public_half(key: Any) -> Any:
    if isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        return key.public_key()
    return key


def _parse_usages(usages: Iterable[Usage | str]) -> frozenset[Usage]:
    parsed: set[Usage] = set()
    for item in usages:
        try:
            parsed.add(Usage(item))
        except ValueError:
            raise InvalidKey(f"unknown key usage: {item!r}") from None
    if not parsed:
        raise InvalidKey("key must allow at least one usage")
    return frozenset(parsed)


def _looks_like_pem(data: bytes) -> bool:
    return b"BEGIN" in data and b"KEY" in data


def _looks_like_json(data: bytes) -> bool:
    return data.strip().startswith(b"{")


def _prepare_secret(material: Any) -> bytes:
    # Text secrets are checked for pasted key files; raw bytes are used verbatim.
    if isinstance(material, str):
        data = material.encode("utf-8")
        if _looks_like_pem(data) or _looks_like_json(data):
            raise InvalidKey("refusing to use PEM/JWK as HMAC secret")
    elif isinstance(material, (bytes, bytearray)):
        data = bytes(material)
    else:
        raise InvalidKey("HMAC secret must be str or bytes")
    if not data:
        raise InvalidKey("HMAC secret must not be empty")
    return data


def _prepare_asymmetric(material: Any, alg: Algorithm) -> Any:
    if isinstance(material, (str, bytes)) and not material:
        raise InvalidKey("key material must not be empty")
    try:
        return get_primitive(alg).prepare_key(material)
    except _IMPORT_ERRORS as exc:
        raise InvalidKey(f"cannot load {alg.value} key: {exc}") from exc


def _bind_asymmetric(
    alg: Algorithm, key: Any, usages: frozenset[Usage], kid: str | None
) -> KeyHandle:
    spec = ALGORITHMS[alg]
    is_private = isinstance(key, _PRIVATE_TYPES[spec.family])
    if not is_private and not isinstance(key, _PUBLIC_TYPES[spec.family]):
        raise InvalidKey(f"key type {type(key).__name__} does not match algorithm {alg.value}")
    if spec.curve is not None and not isinstance(key.curve, CURVES[spec.curve]):
        raise InvalidKey(f"EC curve {key.curve.name} does not match algorithm {alg.value}")
    if Usage.SIGN in usages and not is_private:
        raise InvalidKey(f"signing with {alg.value} requires a private key")
    if usages == {Usage.VERIFY}:
        key = _public_half(key)
    return KeyHandle(algorithm=alg, usages=usages, key=key, kid=kid)


def import_key(
    material: Any,
    algorithm: Algorithm | str,
    *,
    usages: Iterable[Usage | str] = (Usage.VERIFY,),
    kid: str | None = None,
) -> KeyHandle:
    """Import an HMAC secret, PEM text or ``cryptography`` key object.

    Verify-only handles never retain a private key.
    """
    alg = parse_algorithm(algorithm)
    wanted = _parse_usages(usages)
    if ALGORITHMS[alg].family is Family.HMAC:
        return KeyHandle(algorithm=alg, usages=wanted, key=_prepare_secret(material), kid=kid)
    return _bind_asymmetric(alg, _prepare_asymmetric(material, alg), wanted, kid)


def signing_key(material: Any, algorithm: Algorithm | str, *, kid: str | None = None) -> KeyHandle:
    return import_key(material, algorithm, usages=(Usage.SIGN,), kid=kid)


def verifying_key(
    material: Any, algorithm: Algorithm | str, *, kid: str | None = None
) -> KeyHandle:
    return import_key(material, algorithm, usages=(Usage.VERIFY,), kid=kid)


def import_jwk(
    jwk: Mapping[str, Any],
    algorithm: Algorithm | str,
    *,
    usages: Iterable[Usage | str] = (Usage.VERIFY,),
) -> KeyHandle:
    alg = parse_algorithm(algorithm)
    spec = ALGORITHMS[alg]
    wanted = _parse_usages(usages)
    if not isinstance(jwk, Mapping):
        raise InvalidKey("JWK must be an object")

    kty = jwk.get("kty")
    if kty != spec.kty:
        raise InvalidKey(f"JWK kty {kty!r} does not match algorithm {alg.value} (expected {spec.kty})")
    if "alg" in jwk and jwk["alg"] != alg.value:
        raise InvalidKey(f"JWK alg {jwk['alg']!r} does not match algorithm {alg.value}")
    if "use" in jwk and jwk["use"] != "sig":
        raise InvalidKey(f"JWK use {jwk['use']!r} is not usable for signatures")
    if "key_ops" in jwk:
        ops = jwk["key_ops"]
        if not isinstance(ops, list) or any(usage.value not in ops for usage in wanted):
            raise InvalidKey("JWK key_ops does not allow the requested usage")

    kid = jwk.get("kid") if isinstance(jwk.get("kid"), str) else None
    try:
        key = get_primitive(alg).from_jwk(dict(jwk))
    except _IMPORT_ERRORS as exc:
        raise InvalidKey(f"cannot import JWK for {alg.value}: {exc}") from exc
    logger.debug("imported JWK kid=%s alg=%s usages=%s", kid, alg.value, sorted(wanted))

    if spec.family is Family.HMAC:
        if not key:
            raise InvalidKey("HMAC JWK has an empty secret")
        return KeyHandle(algorithm=alg, usages=wanted, key=bytes(key), kid=kid)
    return _bind_asymmetric(alg, key, wanted, kid)


def public_jwk(handle: KeyHandle, kid: str | None = None) -> dict[str, Any]:
    """Export the verification half of ``handle`` as a JWK tagged with its algorithm."""
    key = _public_half(handle.key)
    jwk_any = json.loads(get_primitive(handle.algorithm).to_jwk(key))
    if not isinstance(jwk_any, dict):
        raise InvalidKey("invalid JWK output")
    jwk = cast(dict[str, Any], jwk_any)
    jwk["alg"] = handle.algorithm.value
    jwk["use"] = "sig"
    kid = kid or handle.kid
    if kid:
        jwk["kid"] = kid
    return jwk


def key_set_from_pem(pem_text: str, algorithm: Algorithm | str, kid: str | None = None) -> dict[str, Any]:
    handle = verifying_key(pem_text, algorithm, kid=kid)
    return {"keys": [public_jwk(handle)]}
