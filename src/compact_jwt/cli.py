from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from .algorithms import supported_algorithms
from .capabilities import ACTIONS, check_capability, load_channel_key
from .codec import decode, decode_header
from .errors import TokenError, format_error
from .jwks import DEFAULT_JWKS_TIMEOUT, verify_with_jwks
from .keys import KeyHandle, import_jwk, key_set_from_pem, signing_key, verifying_key
from .samples import generate_sample_keys
from .signer import sign
from .verifier import VerifiedToken, verify
from .version import __version__


def _ensure_dict(obj: Any, context: str) -> dict[str, Any]:
    if not isinstance(obj, dict):
        raise ValueError(f"{context} must be a JSON object")
    return obj


def _load_payload(args: argparse.Namespace) -> dict[str, Any]:
    if args.payload and args.payload_file:
        raise ValueError("use only one of --payload or --payload-file")
    if args.payload_file:
        obj = json.loads(Path(args.payload_file).read_text(encoding="utf-8"))
        return _ensure_dict(obj, "payload")
    if args.payload:
        return _ensure_dict(json.loads(args.payload), "payload")
    raise ValueError("missing payload: use --payload or --payload-file")


def _load_headers(args: argparse.Namespace) -> dict[str, Any] | None:
    if not args.headers:
        return None
    return _ensure_dict(json.loads(args.headers), "headers")


def _print_json(obj: object) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _load_token(token_arg: str) -> str:
    if token_arg != "-":
        return token_arg
    token = sys.stdin.read().strip()
    if not token:
        raise ValueError("stdin is empty; expected JWT")
    return token


def _load_key_text(args: argparse.Namespace) -> str:
    if args.key and args.key_text is not None:
        raise ValueError("use only one of --key or --key-text")
    if args.key:
        return Path(args.key).read_text(encoding="utf-8").strip()
    if args.key_text == "-":
        text = sys.stdin.read()
        if not text.strip():
            raise ValueError("stdin is empty; expected key material")
        return text
    if args.key_text is not None:
        return str(args.key_text)
    raise ValueError("missing key material; provide --key or --key-text")


def _count_key_sources(args: argparse.Namespace) -> int:
    sources = [
        bool(args.key or args.key_text is not None),
        bool(args.jwk),
        bool(args.jwks_url),
        bool(args.key_env),
    ]
    return sum(sources)


def _local_verifying_key(args: argparse.Namespace, token: str) -> KeyHandle:
    if args.key_env:
        encoded = os.environ.get(args.key_env)
        if not encoded:
            raise ValueError(f"environment variable {args.key_env} is not set")
        return load_channel_key(encoded)

    alg = args.alg or decode_header(token).get("alg")
    if args.jwk:
        obj = json.loads(Path(args.jwk).read_text(encoding="utf-8"))
        return import_jwk(_ensure_dict(obj, "JWK"), alg)
    return verifying_key(_load_key_text(args), alg)


def _cmd_decode(args: argparse.Namespace) -> int:
    decoded = decode(_load_token(args.token))
    _print_json({"header": decoded.header, "payload": decoded.payload})
    return 0


def _cmd_sign(args: argparse.Namespace) -> int:
    payload = _load_payload(args)
    key = signing_key(_load_key_text(args), args.alg)
    print(sign(payload, key, algorithm=args.alg, kid=args.kid, headers=_load_headers(args)))
    return 0


def _cmd_verify(args: argparse.Namespace) -> int:
    if args.token == "-" and args.key_text == "-":
        raise ValueError("cannot read both token and key from stdin; provide one normally")
    selected = _count_key_sources(args)
    if selected == 0:
        raise ValueError("missing key material; provide --key, --key-text, --jwk, --jwks-url or --key-env")
    if selected > 1:
        raise ValueError("provide exactly one key source")
    if bool(args.channel) != bool(args.action):
        raise ValueError("--channel and --action must be used together")

    token = _load_token(args.token)
    allowed = args.allow_alg or None
    verified: VerifiedToken
    if args.jwks_url:
        if args.alg:
            raise ValueError("--alg is taken from the JWKS entry; use --allow-alg to restrict it")
        verified = verify_with_jwks(
            token,
            args.jwks_url,
            timeout=args.jwks_timeout,
            algorithms=allowed,
            at=args.at,
        )
    else:
        verified = verify(token, _local_verifying_key(args, token), algorithms=allowed, at=args.at)

    if args.channel:
        check_capability(verified.payload, args.channel, args.action)
    _print_json({"valid": True, "header": verified.header, "payload": verified.payload})
    return 0


def _cmd_jwks(args: argparse.Namespace) -> int:
    _print_json(key_set_from_pem(Path(args.pem).read_text(encoding="utf-8"), args.alg, kid=args.kid))
    return 0


def _cmd_sample(args: argparse.Namespace) -> int:
    sample = generate_sample_keys(args.alg, kid=args.kid)
    _print_json(
        {
            "alg": sample.algorithm.value,
            "sign_key": sample.signing_text,
            "verify_key": sample.verifying_text,
            "jwks": {"keys": [sample.jwk]},
        }
    )
    return 0


def _add_token_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--token", required=True, help="JWT string (use '-' to read from stdin)")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="compact-jwt")
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug details to stderr")

    sub = parser.add_subparsers(dest="cmd", required=True)
    algs = supported_algorithms()

    p_decode = sub.add_parser("decode", help="Decode a token without verifying it")
    _add_token_arg(p_decode)
    p_decode.set_defaults(func=_cmd_decode)

    p_sign = sub.add_parser("sign", help="Sign a payload")
    p_sign.add_argument("--payload", help="JSON payload string (must include jti)")
    p_sign.add_argument("--payload-file", help="Path to JSON payload file")
    p_sign.add_argument("--headers", help="Extra JSON header fields (optional)")
    p_sign.add_argument("--alg", choices=algs, default="HS256", help="Algorithm (default: HS256)")
    p_sign.add_argument("--key", help="Path to HMAC secret or PEM private key")
    p_sign.add_argument("--key-text", help="Raw secret or PEM text (use '-' to read from stdin)")
    p_sign.add_argument("--kid", help="Optional key id")
    p_sign.set_defaults(func=_cmd_sign)

    p_verify = sub.add_parser("verify", help="Verify a token signature and time claims")
    _add_token_arg(p_verify)
    p_verify.add_argument("--alg", choices=algs, help="Algorithm the local key is bound to (default: token alg)")
    p_verify.add_argument("--key", help="Path to HMAC secret or PEM key")
    p_verify.add_argument("--key-text", help="Raw secret or PEM text (use '-' to read from stdin)")
    p_verify.add_argument("--jwk", help="Path to JWK JSON file")
    p_verify.add_argument("--jwks-url", help="Key-set URL; the key is selected by the token kid")
    p_verify.add_argument(
        "--jwks-timeout",
        type=float,
        default=DEFAULT_JWKS_TIMEOUT,
        help=f"Key-set fetch timeout in seconds (default: {DEFAULT_JWKS_TIMEOUT})",
    )
    p_verify.add_argument("--key-env", help="Environment variable holding a base64 HS256 channel key")
    p_verify.add_argument(
        "--allow-alg",
        action="append",
        choices=algs,
        help="Only accept these algorithms (repeatable)",
    )
    p_verify.add_argument("--at", type=int, help="Override current time as unix seconds")
    p_verify.add_argument("--channel", help="Require a cap grant on this channel")
    p_verify.add_argument("--action", choices=sorted(ACTIONS), help="Action required on --channel")
    p_verify.set_defaults(func=_cmd_verify)

    p_jwks = sub.add_parser("jwks", help="Convert a PEM key to a key-set document")
    p_jwks.add_argument("--pem", required=True, help="Path to PEM key")
    p_jwks.add_argument("--alg", choices=algs, required=True, help="Algorithm the key is used with")
    p_jwks.add_argument("--kid", help="Optional key id")
    p_jwks.set_defaults(func=_cmd_jwks)

    p_sample = sub.add_parser("sample", help="Generate offline demo keys (no network)")
    p_sample.add_argument("--alg", choices=algs, default="HS256", help="Algorithm (default: HS256)")
    p_sample.add_argument("--kid", help="Optional key id for the JWKS entry")
    p_sample.set_defaults(func=_cmd_sample)

    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    try:
        return int(args.func(args))
    except KeyboardInterrupt:
        return 130
    except TokenError as exc:
        print(f"error: {format_error(exc)}", file=sys.stderr)
        return 2
    except (OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
