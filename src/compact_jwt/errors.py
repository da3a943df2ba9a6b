from __future__ import annotations

import enum
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    MALFORMED_TOKEN = "malformed_token"
    UNSUPPORTED_ALGORITHM = "unsupported_algorithm"
    INVALID_KEY = "invalid_key"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    SIGNATURE_INVALID = "signature_invalid"
    INVALID_JWKS = "invalid_jwks"
    KEY_NOT_FOUND = "key_not_found"
    NETWORK_FAILURE = "network_failure"
    SIGNING_FAILED = "signing_failed"
    CAPABILITY_DENIED = "capability_denied"


class TokenError(ValueError):
    """Base class for every rejection raised by compact_jwt."""

    kind: ErrorKind


class MalformedToken(TokenError):
    kind = ErrorKind.MALFORMED_TOKEN


class UnsupportedAlgorithm(TokenError):
    kind = ErrorKind.UNSUPPORTED_ALGORITHM


class InvalidKey(TokenError):
    kind = ErrorKind.INVALID_KEY


class NotYetValid(TokenError):
    kind = ErrorKind.NOT_YET_VALID


class Expired(TokenError):
    kind = ErrorKind.EXPIRED


class SignatureInvalid(TokenError):
    kind = ErrorKind.SIGNATURE_INVALID


class InvalidJwks(TokenError):
    kind = ErrorKind.INVALID_JWKS


class KeyNotFound(TokenError):
    kind = ErrorKind.KEY_NOT_FOUND


class NetworkFailure(TokenError):
    kind = ErrorKind.NETWORK_FAILURE


class SigningFailed(TokenError):
    kind = ErrorKind.SIGNING_FAILED


class CapabilityDenied(TokenError):
    kind = ErrorKind.CAPABILITY_DENIED


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: TokenError

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind


Result = Union[Ok[T], Err]


def capture(func: Callable[..., T], *args: Any, **kwargs: Any) -> Result[T]:
    """Call ``func`` and return its outcome as ``Ok``/``Err`` instead of raising.

    Only ``TokenError`` is converted; anything else is a bug and propagates.
    """
    try:
        return Ok(func(*args, **kwargs))
    except TokenError as exc:
        return Err(exc)


def format_error(exc: TokenError) -> str:
    message = str(exc)
    if not message:
        return exc.kind.value
    return f"{exc.kind.value}: {message}"
