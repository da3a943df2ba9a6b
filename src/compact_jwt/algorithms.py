from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from jwt.algorithms import Algorithm as Primitive
from jwt.algorithms import get_default_algorithms

from .errors import UnsupportedAlgorithm


class Algorithm(str, enum.Enum):
    HS256 = "HS256"
    HS384 = "HS384"
    HS512 = "HS512"
    RS256 = "RS256"
    RS384 = "RS384"
    RS512 = "RS512"
    ES256 = "ES256"
    ES384 = "ES384"
    ES512 = "ES512"


class Family(str, enum.Enum):
    HMAC = "HMAC"
    RSASSA_PKCS1_V1_5 = "RSASSA-PKCS1-v1_5"
    ECDSA = "ECDSA"


_KTY_BY_FAMILY = {
    Family.HMAC: "oct",
    Family.RSASSA_PKCS1_V1_5: "RSA",
    Family.ECDSA: "EC",
}


@dataclass(frozen=True)
class AlgorithmSpec:
    family: Family
    hash: str
    curve: str | None = None

    @property
    def kty(self) -> str:
        """JWK key type a key for this algorithm must carry."""
        return _KTY_BY_FAMILY[self.family]


ALGORITHMS: Mapping[Algorithm, AlgorithmSpec] = MappingProxyType(
    {
        Algorithm.HS256: AlgorithmSpec(Family.HMAC, "SHA-256"),
        Algorithm.HS384: AlgorithmSpec(Family.HMAC, "SHA-384"),
        Algorithm.HS512: AlgorithmSpec(Family.HMAC, "SHA-512"),
        Algorithm.RS256: AlgorithmSpec(Family.RSASSA_PKCS1_V1_5, "SHA-256"),
        Algorithm.RS384: AlgorithmSpec(Family.RSASSA_PKCS1_V1_5, "SHA-384"),
        Algorithm.RS512: AlgorithmSpec(Family.RSASSA_PKCS1_V1_5, "SHA-512"),
        Algorithm.ES256: AlgorithmSpec(Family.ECDSA, "SHA-256", "P-256"),
        Algorithm.ES384: AlgorithmSpec(Family.ECDSA, "SHA-384", "P-384"),
        Algorithm.ES512: AlgorithmSpec(Family.ECDSA, "SHA-512", "P-521"),
    }
)

_PRIMITIVES: Mapping[Algorithm, Primitive] = MappingProxyType(
    {alg: get_default_algorithms()[alg.value] for alg in Algorithm}
)


def parse_algorithm(value: Any) -> Algorithm:
    if isinstance(value, Algorithm):
        return value
    if isinstance(value, str):
        try:
            return Algorithm(value)
        except ValueError:
            pass
    raise UnsupportedAlgorithm(f"unsupported algorithm: {value!r}")


def get_spec(alg: Algorithm | str) -> AlgorithmSpec:
    return ALGORITHMS[parse_algorithm(alg)]


def get_primitive(alg: Algorithm | str) -> Primitive:
    return _PRIMITIVES[parse_algorithm(alg)]


def supported_algorithms() -> list[str]:
    return [alg.value for alg in Algorithm]
