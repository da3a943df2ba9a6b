from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Any

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from .algorithms import ALGORITHMS, Algorithm, Family, parse_algorithm
from .errors import UnsupportedAlgorithm
from .keys import CURVES, KeyHandle, Usage, import_key, public_jwk


@dataclass(frozen=True)
class SampleKeys:
    algorithm: Algorithm
    signing_text: str
    verifying_text: str
    jwk: dict[str, Any]

    def signing_handle(self) -> KeyHandle:
        return import_key(self.signing_text, self.algorithm, usages=(Usage.SIGN,))

    def verifying_handle(self) -> KeyHandle:
        return import_key(self.verifying_text, self.algorithm, usages=(Usage.VERIFY,))


def _pem_pair(private_key: Any) -> tuple[str, str]:
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("utf-8")
    )
    return private_pem, public_pem


def generate_sample_keys(algorithm: Algorithm | str, kid: str | None = None) -> SampleKeys:
    """Generate fresh offline key material for ``algorithm``.

    HMAC samples share one random text secret between signing and verifying.
    """
    alg = parse_algorithm(algorithm)
    spec = ALGORITHMS[alg]
    if spec.family is Family.HMAC:
        secret = secrets.token_urlsafe(48)
        signing_text = verifying_text = secret
    elif spec.family is Family.RSASSA_PKCS1_V1_5:
        signing_text, verifying_text = _pem_pair(
            rsa.generate_private_key(public_exponent=65537, key_size=2048)
        )
    elif spec.family is Family.ECDSA and spec.curve is not None:
        signing_text, verifying_text = _pem_pair(ec.generate_private_key(CURVES[spec.curve]()))
    else:
        raise UnsupportedAlgorithm(f"no sample keys for {alg.value}")

    handle = import_key(verifying_text, alg, usages=(Usage.VERIFY,))
    return SampleKeys(
        algorithm=alg,
        signing_text=signing_text,
        verifying_text=verifying_text,
        jwk=public_jwk(handle, kid=kid),
    )
