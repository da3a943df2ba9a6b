from __future__ import annotations

import json
import logging
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable, Collection
from dataclasses import dataclass
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match

from .algorithms import Algorithm, parse_algorithm
from .codec import decode_header
from .errors import InvalidJwks, KeyNotFound, NetworkFailure, UnsupportedAlgorithm
from .keys import Usage, import_jwk
from .verifier import VerifiedToken, verify

logger = logging.getLogger(__name__)

DEFAULT_JWKS_TIMEOUT = 3.0
DEFAULT_JWKS_MAX_BYTES = 512 * 1024

KEY_SET_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["keys"],
    "properties": {
        "keys": {
            "type": "array",
            "items": {"type": "object"},
        },
    },
}

_KEY_SET_VALIDATOR = Draft202012Validator(KEY_SET_SCHEMA)

JwksFetcher = Callable[[str, float], Any]


@dataclass(frozen=True)
class KeySet:
    keys: tuple[dict[str, Any], ...]


def fetch_jwks(
    url: str,
    timeout: float = DEFAULT_JWKS_TIMEOUT,
    *,
    max_bytes: int = DEFAULT_JWKS_MAX_BYTES,
) -> Any:
    """GET ``url`` and return the parsed JSON body. Shape is not checked here."""
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in {"http", "https"}:
        raise NetworkFailure(f"JWKS url must be http(s): {url}")

    req = urllib.request.Request(url, headers={"Accept": "application/json"})
    logger.debug("fetching JWKS from %s", url)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            body = response.read(max_bytes + 1)
    except urllib.error.HTTPError as exc:
        raise NetworkFailure(f"JWKS fetch from {url} returned HTTP {exc.code}") from exc
    except (urllib.error.URLError, OSError) as exc:
        raise NetworkFailure(f"failed to fetch JWKS from {url}: {exc}") from exc
    if len(body) > max_bytes:
        raise NetworkFailure("JWKS response too large")

    try:
        return json.loads(body.decode("utf-8"))
    except (ValueError, RecursionError) as exc:
        raise InvalidJwks("JWKS url did not return valid JSON") from exc


def parse_key_set(document: Any) -> KeySet:
    error = best_match(_KEY_SET_VALIDATOR.iter_errors(document))
    if error is not None:
        where = "/".join(str(part) for part in error.absolute_path) or "document"
        raise InvalidJwks(f"invalid JWKS ({where}): {error.message}")
    return KeySet(keys=tuple(document["keys"]))


def select_key(key_set: KeySet, kid: Any = None) -> dict[str, Any]:
    if kid:
        for entry in key_set.keys:
            if entry.get("kid") == kid:
                return entry
        raise KeyNotFound(f"kid not found in JWKS: {kid}")
    if not key_set.keys:
        raise KeyNotFound("JWKS has no keys")
    return key_set.keys[0]


def entry_algorithm(entry: dict[str, Any]) -> Algorithm:
    alg = entry.get("alg")
    if not isinstance(alg, str):
        raise UnsupportedAlgorithm("JWKS entry is missing a string alg")
    return parse_algorithm(alg)


class KeySetCache:
    """In-memory key-set cache keyed by URL; entries expire after ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float = 300.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[str, tuple[float, KeySet]] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> KeySet | None:
        with self._lock:
            entry = self._entries.get(url)
            if entry is None:
                return None
            expires_at, key_set = entry
            if self._clock() >= expires_at:
                del self._entries[url]
                return None
            return key_set

    def put(self, url: str, key_set: KeySet) -> None:
        with self._lock:
            self._entries[url] = (self._clock() + self.ttl_seconds, key_set)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def load_key_set(
    url: str,
    *,
    fetcher: JwksFetcher | None = None,
    cache: KeySetCache | None = None,
    timeout: float = DEFAULT_JWKS_TIMEOUT,
) -> KeySet:
    if cache is not None:
        cached = cache.get(url)
        if cached is not None:
            return cached
    key_set = parse_key_set((fetcher or fetch_jwks)(url, timeout))
    if cache is not None:
        cache.put(url, key_set)
    return key_set


def verify_with_jwks(
    token: str,
    jwks_url: str,
    *,
    fetcher: JwksFetcher | None = None,
    cache: KeySetCache | None = None,
    timeout: float = DEFAULT_JWKS_TIMEOUT,
    algorithms: Collection[Algorithm | str] | None = None,
    at: int | None = None,
) -> VerifiedToken:
    """Verify ``token`` against the key published under its ``kid`` at ``jwks_url``.

    Without a ``cache`` the document is fetched on every call. Tokens without a
    ``kid`` are checked against the first key in the set.
    """
    kid = decode_header(token).get("kid")
    key_set = load_key_set(jwks_url, fetcher=fetcher, cache=cache, timeout=timeout)
    entry = select_key(key_set, kid)
    handle = import_jwk(entry, entry_algorithm(entry), usages=(Usage.VERIFY,))
    logger.debug("resolved JWKS key kid=%s alg=%s", handle.kid, handle.algorithm.value)
    return verify(token, handle, algorithms=algorithms, at=at)
