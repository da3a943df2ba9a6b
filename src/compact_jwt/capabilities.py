"""Channel capability checks carried in a token's ``cap`` claim.

A capability claim maps channel names to the actions the bearer may perform::

    {"cap": {"news": ["subscribe"], "alerts": ["subscribe", "post"]}}
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Collection
from typing import Any

from .algorithms import Algorithm
from .errors import CapabilityDenied, InvalidKey
from .keys import KeyHandle, Usage, import_key
from .verifier import VerifiedToken, verify

ACTIONS = frozenset({"subscribe", "post"})


def check_capability(payload: dict[str, Any], channel: str, action: str) -> None:
    if action not in ACTIONS:
        raise ValueError(f"unknown action: {action}")
    cap = payload.get("cap")
    if not isinstance(cap, dict):
        raise CapabilityDenied("token carries no cap claim")
    if channel not in cap:
        raise CapabilityDenied(f"token grants nothing on channel {channel!r}")
    actions = cap[channel]
    if not isinstance(actions, list) or action not in actions:
        raise CapabilityDenied(f"token does not allow {action} on channel {channel!r}")


def authorize(
    token: str,
    key: KeyHandle,
    *,
    channel: str,
    action: str,
    algorithms: Collection[Algorithm | str] | None = None,
    at: int | None = None,
) -> VerifiedToken:
    verified = verify(token, key, algorithms=algorithms, at=at)
    check_capability(verified.payload, channel, action)
    return verified


def load_channel_key(encoded: str) -> KeyHandle:
    """Build the shared HS256 channel key from a standard base64 secret."""
    try:
        secret = base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidKey("channel key is not valid base64") from exc
    return import_key(secret, Algorithm.HS256, usages=(Usage.SIGN, Usage.VERIFY))
