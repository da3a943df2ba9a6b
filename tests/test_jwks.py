from __future__ import annotations

import socket
from collections.abc import Callable
from typing import Any

import pytest

from compact_jwt.errors import (
    InvalidJwks,
    InvalidKey,
    KeyNotFound,
    MalformedToken,
    NetworkFailure,
    SignatureInvalid,
    UnsupportedAlgorithm,
)
from compact_jwt.jwks import (
    KeySet,
    KeySetCache,
    fetch_jwks,
    parse_key_set,
    select_key,
    verify_with_jwks,
)
from compact_jwt.keys import KeyHandle, signing_key
from compact_jwt.samples import SampleKeys
from compact_jwt.signer import sign


def _closed_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


@pytest.fixture()
def two_keys(sample_keys: Callable[..., SampleKeys]) -> tuple[SampleKeys, SampleKeys]:
    return sample_keys("ES256", "A"), sample_keys("RS256", "B")


def _hs_signer() -> KeyHandle:
    return signing_key("secret", "HS256")


def _static(document: Any) -> Callable[[str, float], Any]:
    def fetcher(_url: str, _timeout: float) -> Any:
        return document

    return fetcher


def test_selects_entry_by_kid(jwks_server: Any, two_keys: tuple[SampleKeys, SampleKeys]) -> None:
    key_a, key_b = two_keys
    url = jwks_server.publish({"keys": [key_a.jwk, key_b.jwk]})

    token = sign({"jti": "t1"}, key_b.signing_handle(), algorithm="RS256", kid="B")
    header, payload = verify_with_jwks(token, url)
    assert header == {"typ": "JWT", "alg": "RS256", "kid": "B"}
    assert payload["jti"] == "t1"
    assert jwks_server.hits == ["/.well-known/jwks.json"]


def test_kid_pins_the_entry(two_keys: tuple[SampleKeys, SampleKeys], sample_keys: Callable[..., SampleKeys]) -> None:
    key_a, key_b = two_keys
    other = sample_keys("RS256", "other")
    fetcher = _static({"keys": [key_a.jwk, key_b.jwk]})

    # Signed by a different RS256 key but claiming kid B: only entry B is tried.
    token = sign({"jti": "t1"}, other.signing_handle(), algorithm="RS256", kid="B")
    with pytest.raises(SignatureInvalid):
        verify_with_jwks(token, "https://issuer.example/jwks", fetcher=fetcher)


def test_unknown_kid(two_keys: tuple[SampleKeys, SampleKeys]) -> None:
    key_a, key_b = two_keys
    token = sign({"jti": "t1"}, key_a.signing_handle(), algorithm="ES256", kid="C")
    with pytest.raises(KeyNotFound, match="C"):
        verify_with_jwks(token, "https://x/jwks", fetcher=_static({"keys": [key_a.jwk, key_b.jwk]}))


def test_without_kid_uses_first_entry(two_keys: tuple[SampleKeys, SampleKeys]) -> None:
    key_a, key_b = two_keys
    token = sign({"jti": "t1"}, key_a.signing_handle(), algorithm="ES256")
    _, payload = verify_with_jwks(token, "https://x/jwks", fetcher=_static({"keys": [key_a.jwk, key_b.jwk]}))
    assert payload["jti"] == "t1"

    token_b = sign({"jti": "t2"}, key_b.signing_handle(), algorithm="RS256")
    with pytest.raises(InvalidKey, match="bound to ES256"):
        verify_with_jwks(token_b, "https://x/jwks", fetcher=_static({"keys": [key_a.jwk, key_b.jwk]}))


def test_empty_key_set() -> None:
    token = sign({"jti": "t1"}, _hs_signer(), algorithm="HS256")
    with pytest.raises(KeyNotFound, match="no keys"):
        verify_with_jwks(token, "https://x/jwks", fetcher=_static({"keys": []}))


@pytest.mark.parametrize(
    "document",
    [
        [],
        "keys",
        {"nokeys": []},
        {"keys": {}},
        {"keys": "abc"},
        {"keys": [1, 2]},
        {"keys": [{"kid": "A"}, None]},
    ],
)
def test_invalid_key_set_documents(document: Any) -> None:
    with pytest.raises(InvalidJwks):
        parse_key_set(document)


def test_parse_key_set_keeps_entries() -> None:
    key_set = parse_key_set({"keys": [{"kid": "A"}, {"kid": "B"}], "extra": True})
    assert key_set == KeySet(keys=({"kid": "A"}, {"kid": "B"}))
    assert select_key(key_set, "B") == {"kid": "B"}
    assert select_key(key_set, None) == {"kid": "A"}
    assert select_key(key_set, "") == {"kid": "A"}


@pytest.mark.parametrize(
    "entry",
    [
        {"kty": "oct", "k": "c2VjcmV0"},
        {"kty": "oct", "k": "c2VjcmV0", "alg": 256},
        {"kty": "oct", "k": "c2VjcmV0", "alg": "none"},
        {"kty": "RSA", "n": "AQAB", "e": "AQAB", "alg": "PS256"},
    ],
)
def test_entry_algorithm_must_be_supported(entry: dict[str, Any]) -> None:
    token = sign({"jti": "t1"}, _hs_signer(), algorithm="HS256")
    with pytest.raises(UnsupportedAlgorithm):
        verify_with_jwks(token, "https://x/jwks", fetcher=_static({"keys": [entry]}))


def test_entry_import_failure() -> None:
    token = sign({"jti": "t1"}, _hs_signer(), algorithm="HS256")
    entry = {"kty": "RSA", "alg": "RS256", "n": "", "e": "AQAB"}
    with pytest.raises(InvalidKey):
        verify_with_jwks(token, "https://x/jwks", fetcher=_static({"keys": [entry]}))


def test_hmac_entry_round_trip() -> None:
    token = sign({"jti": "t1"}, _hs_signer(), algorithm="HS256", kid="shared")
    entry = {"kty": "oct", "k": "c2VjcmV0", "alg": "HS256", "kid": "shared"}
    _, payload = verify_with_jwks(token, "https://x/jwks", fetcher=_static({"keys": [entry]}))
    assert payload["jti"] == "t1"


def test_malformed_token_fails_before_fetch() -> None:
    calls: list[str] = []

    def fetcher(url: str, _timeout: float) -> Any:
        calls.append(url)
        return {"keys": []}

    with pytest.raises(MalformedToken):
        verify_with_jwks("not-a-token", "https://x/jwks", fetcher=fetcher)
    assert calls == []


def test_allow_list_applies(two_keys: tuple[SampleKeys, SampleKeys]) -> None:
    key_a, _ = two_keys
    token = sign({"jti": "t1"}, key_a.signing_handle(), algorithm="ES256", kid="A")
    with pytest.raises(UnsupportedAlgorithm, match="not allowed"):
        verify_with_jwks(token, "https://x/jwks", fetcher=_static({"keys": [key_a.jwk]}), algorithms=["RS256"])


def test_fetches_on_every_call_without_cache(jwks_server: Any, two_keys: tuple[SampleKeys, SampleKeys]) -> None:
    key_a, _ = two_keys
    url = jwks_server.publish({"keys": [key_a.jwk]})
    token = sign({"jti": "t1"}, key_a.signing_handle(), algorithm="ES256", kid="A")
    verify_with_jwks(token, url)
    verify_with_jwks(token, url)
    assert len(jwks_server.hits) == 2


def test_injected_cache_reuses_key_set(jwks_server: Any, two_keys: tuple[SampleKeys, SampleKeys]) -> None:
    key_a, _ = two_keys
    url = jwks_server.publish({"keys": [key_a.jwk]})
    token = sign({"jti": "t1"}, key_a.signing_handle(), algorithm="ES256", kid="A")
    cache = KeySetCache(ttl_seconds=60)
    verify_with_jwks(token, url, cache=cache)
    verify_with_jwks(token, url, cache=cache)
    assert len(jwks_server.hits) == 1


def test_cache_expiry() -> None:
    now = [100.0]
    cache = KeySetCache(ttl_seconds=10, clock=lambda: now[0])
    key_set = KeySet(keys=({"kid": "A"},))
    cache.put("u", key_set)
    assert cache.get("u") is key_set
    now[0] = 110.0
    assert cache.get("u") is None
    cache.put("u", key_set)
    cache.clear()
    assert cache.get("u") is None
    with pytest.raises(ValueError):
        KeySetCache(ttl_seconds=0)


def test_fetch_http_error(jwks_server: Any) -> None:
    url = jwks_server.respond(b'{"error": "nope"}', status=404)
    with pytest.raises(NetworkFailure, match="HTTP 404"):
        fetch_jwks(url)


def test_fetch_non_json(jwks_server: Any) -> None:
    url = jwks_server.respond(b"<html>oops</html>")
    with pytest.raises(InvalidJwks, match="valid JSON"):
        fetch_jwks(url)


def test_fetch_deeply_nested_body(jwks_server: Any) -> None:
    url = jwks_server.respond(b"[" * 100_000 + b"]" * 100_000)
    with pytest.raises(InvalidJwks, match="valid JSON"):
        fetch_jwks(url)


def test_fetch_too_large(jwks_server: Any) -> None:
    url = jwks_server.respond(b'{"keys": []}' + b" " * 64)
    with pytest.raises(NetworkFailure, match="too large"):
        fetch_jwks(url, max_bytes=16)


def test_fetch_connection_refused() -> None:
    with pytest.raises(NetworkFailure):
        fetch_jwks(f"http://127.0.0.1:{_closed_port()}/jwks", timeout=1.0)


def test_fetch_rejects_non_http_urls() -> None:
    with pytest.raises(NetworkFailure, match="http"):
        fetch_jwks("file:///etc/passwd")


def test_network_failure_propagates_from_resolver() -> None:
    token = sign({"jti": "t1"}, _hs_signer(), algorithm="HS256")
    with pytest.raises(NetworkFailure):
        verify_with_jwks(token, f"http://127.0.0.1:{_closed_port()}/jwks", timeout=1.0)
