from __future__ import annotations

from typing import TYPE_CHECKING

from opentelemetry.trace import SpanKind, Status, StatusCode, get_tracer

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    import httpx
    from opentelemetry.trace import Span, Tracer, TracerProvider

    from ._backoff import Outcome
    from ._shared import Node

INSTRUMENTATION_NAME = "nodepool"


def new_tracer(tracer_provider: TracerProvider | None) -> Tracer:
    return get_tracer(INSTRUMENTATION_NAME, tracer_provider=tracer_provider)


def start_attempt_span(
    tracer: Tracer, node: Node, path: str, request: httpx.Request
) -> AbstractContextManager[Span]:
    return tracer.start_as_current_span(
        f"{request.method} {path}",
        kind=SpanKind.CLIENT,
        attributes={
            "http.request.method": request.method,
            "server.address": node.endpoint,
            "url.full": str(request.url),
        },
        record_exception=False,
        set_status_on_exception=False,
    )


def record_response(span: Span, response: httpx.Response) -> None:
    span.set_attribute("http.response.status_code", response.status_code)


def record_failure(span: Span, outcome: Outcome) -> None:
    if outcome.error is not None:
        span.record_exception(outcome.error)
        span.set_status(Status(StatusCode.ERROR, str(outcome.error)))
    span.set_attribute("nodepool.backoff.delay", outcome.delay)
    span.set_attribute("nodepool.backoff.retries", outcome.retries)
