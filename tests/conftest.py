from __future__ import annotations

import json
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

import pytest

from compact_jwt.samples import SampleKeys, generate_sample_keys


@pytest.fixture(scope="session")
def sample_keys() -> Callable[..., SampleKeys]:
    cache: dict[tuple[str, str | None], SampleKeys] = {}

    def get(alg: str, kid: str | None = None) -> SampleKeys:
        if (alg, kid) not in cache:
            cache[(alg, kid)] = generate_sample_keys(alg, kid=kid)
        return cache[(alg, kid)]

    return get


@dataclass
class JWKSServer:
    url: str
    body: bytes = b"{}"
    status: int = 200
    hits: list[str] = field(default_factory=list)

    def publish(self, document: Any) -> str:
        self.body = json.dumps(document).encode("utf-8")
        self.status = 200
        return self.url

    def respond(self, body: bytes, status: int = 200) -> str:
        self.body = body
        self.status = status
        return self.url


@pytest.fixture()
def jwks_server() -> Iterator[JWKSServer]:
    state: dict[str, JWKSServer] = {}

    class JWKSHandler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802 - http handler API
            current = state["server"]
            current.hits.append(self.path)
            self.send_response(current.status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(current.body)))
            self.end_headers()
            self.wfile.write(current.body)

        def log_message(self, _fmt: str, *_args: object) -> None:
            return

    server = ThreadingHTTPServer(("127.0.0.1", 0), JWKSHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    host_text = host.decode("ascii") if isinstance(host, bytes) else host
    state["server"] = JWKSServer(url=f"http://{host_text}:{port}/.well-known/jwks.json")
    try:
        yield state["server"]
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)

