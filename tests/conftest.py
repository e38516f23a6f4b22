from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import httpx
import pytest
from opentelemetry.test.test_base import TestBase

if TYPE_CHECKING:
    from collections.abc import Iterator


class FakeNode:
    def __init__(self, host: str) -> None:
        self.host = host
        self.status: list[int] = []
        self.default_status = 200
        self.down = False
        self.latency = 0.0
        self.retry_after = ""
        self.corrupt = False
        self.count = 0
        self.requests: list[httpx.Request] = []

    def respond(self, request: httpx.Request) -> httpx.Response:
        self.count += 1
        self.requests.append(request)
        if self.down:
            msg = "Connection refused"
            raise httpx.ConnectError(msg, request=request)
        try:
            status = self.status.pop(0)
        except IndexError:
            status = self.default_status
        if self.corrupt:
            # Claims gzip but is not, so reading the body fails to decode.
            return httpx.Response(
                200,
                headers={"content-encoding": "gzip"},
                stream=httpx.ByteStream(b"not gzip"),
            )
        headers = {}
        if self.retry_after:
            headers["retry-after"] = self.retry_after
        return httpx.Response(status, headers=headers, json={"node": self.host})


class Cluster:
    def __init__(self, *hosts: str) -> None:
        self.nodes = {host: FakeNode(host) for host in hosts}

    def __getitem__(self, host: str) -> FakeNode:
        return self.nodes[host]

    @property
    def urls(self) -> list[str]:
        return [f"http://{host}" for host in self.nodes]

    def sync_transport(self) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            node = self.nodes[request.url.host]
            if node.latency:
                time.sleep(node.latency)
            return node.respond(request)

        return httpx.MockTransport(handler)

    def async_transport(self) -> httpx.MockTransport:
        async def handler(request: httpx.Request) -> httpx.Response:
            node = self.nodes[request.url.host]
            if node.latency:
                await asyncio.sleep(node.latency)
            return node.respond(request)

        return httpx.MockTransport(handler)


@pytest.fixture
def cluster() -> Cluster:
    return Cluster("a", "b", "c")


@pytest.fixture
def single() -> Cluster:
    return Cluster("a")


@pytest.fixture
def otel_test_base() -> Iterator[TestBase]:
    test_base = TestBase()
    test_base.setUp()
    try:
        yield test_base
    finally:
        test_base.tearDown()
