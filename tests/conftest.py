"""
Shared fixtures: a recording httpx.MockTransport and a small valid .torrent.
"""
import json

import bencodepy
import httpx
import pytest

from torrent_clients.models import ServerConfig


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler):
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request):
            self.requests.append(request)
            return handler(request)

        super().__init__(record)


def json_body(request: httpx.Request):
    return json.loads(request.content)


def make_config(application: str, hostname: str, **overrides) -> ServerConfig:
    values = {
        "name": f"test-{application}",
        "application": application,
        "hostname": hostname,
        "username": "admin",
        "password": "secret",
    }
    values.update(overrides)
    return ServerConfig(**values)


@pytest.fixture
def torrent_file() -> bytes:
    return bencodepy.encode({
        b"announce": b"http://tracker.test/announce",
        b"info": {
            b"name": b"example.iso",
            b"length": 1024,
            b"piece length": 16384,
            b"pieces": b"\x00" * 20,
        },
    })
