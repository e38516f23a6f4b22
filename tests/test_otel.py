from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from opentelemetry.trace import SpanKind, StatusCode

from nodepool import ConnectionPool, SyncConnectionPool

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import ReadableSpan
    from opentelemetry.test.test_base import TestBase

    from .conftest import Cluster


def check_spans(spans: tuple[ReadableSpan, ...] | list[ReadableSpan]) -> None:
    assert len(spans) == 2
    failed, succeeded = spans

    assert failed.name == "GET /blocks/{height}"
    assert failed.kind == SpanKind.CLIENT
    assert failed.status.status_code == StatusCode.ERROR
    assert failed.attributes is not None
    assert failed.attributes["server.address"] == "http://a"
    assert failed.attributes["url.full"] == "http://a/blocks/1"
    assert failed.attributes["http.request.method"] == "GET"
    assert failed.attributes["nodepool.backoff.delay"] == 0.5
    assert failed.attributes["nodepool.backoff.retries"] == 1
    assert any(event.name == "exception" for event in failed.events)

    assert succeeded.status.status_code == StatusCode.UNSET
    assert succeeded.attributes is not None
    assert succeeded.attributes["server.address"] == "http://b"
    assert succeeded.attributes["http.response.status_code"] == 200
    assert "nodepool.backoff.delay" not in succeeded.attributes


def test_sync_spans(cluster: Cluster, otel_test_base: TestBase) -> None:
    cluster["a"].down = True
    with SyncConnectionPool(
        cluster.urls,
        transport=cluster.sync_transport(),
        tracer_provider=otel_test_base.tracer_provider,
    ) as pool:
        pool.forward_request("/blocks/{height}", {"path_params": {"height": 1}})
    check_spans(otel_test_base.get_finished_spans())


@pytest.mark.asyncio
async def test_async_spans(cluster: Cluster, otel_test_base: TestBase) -> None:
    cluster["a"].status = [500]
    async with ConnectionPool(
        cluster.urls,
        transport=cluster.async_transport(),
        tracer_provider=otel_test_base.tracer_provider,
    ) as pool:
        await pool.forward_request("/blocks/{height}", {"path_params": {"height": 1}})
    spans = otel_test_base.get_finished_spans()
    check_spans(spans)
    assert spans[0].attributes is not None
    assert spans[0].attributes["http.response.status_code"] == 500
