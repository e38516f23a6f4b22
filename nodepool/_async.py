from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from ._backoff import BackoffState
from ._errors import (
    BackoffExceededError,
    ConfigurationError,
    HTTPStatusError,
    NodeTransportError,
    PoolTimeoutError,
)
from ._otel import new_tracer, record_failure, record_response, start_attempt_span
from ._shared import (
    build_request,
    default_is_failure_response,
    per_call_timeout,
    resolve_max_backoff,
    resolve_timeout,
    suggested_backoff,
    to_nodes,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from types import TracebackType

    from opentelemetry.trace import Tracer, TracerProvider

    from ._backoff import BackoffSnapshot, Outcome
    from ._shared import Node, NodeLike, RequestConfig

logger = structlog.get_logger()


class Connection:
    """A single node together with its backoff state.

    Connections are normally created by a [`ConnectionPool`][] and share
    its HTTP client.
    """

    node: Node
    _client: httpx.AsyncClient
    _headers: Mapping[str, str]
    _tracer: Tracer
    _is_failure_response: Callable[[httpx.Response], bool]
    _backoff: BackoffState

    def __init__(
        self,
        node: Node,
        client: httpx.AsyncClient,
        headers: Mapping[str, str] | None = None,
        tracer: Tracer | None = None,
        is_failure_response: Callable[[httpx.Response], bool] | None = None,
    ) -> None:
        self.node = node
        self._client = client
        self._headers = headers or {}
        self._tracer = tracer or new_tracer(None)
        self._is_failure_response = is_failure_response or default_is_failure_response
        self._backoff = BackoffState()

    @property
    def backoff(self) -> BackoffSnapshot:
        return self._backoff.snapshot()

    @property
    def last_error(self) -> Exception | None:
        return self._backoff.snapshot().last_error

    def time_until_available(self) -> float:
        """Returns the seconds until this node is out of backoff, 0 if it is now."""
        return self._backoff.time_until_available()

    def record_outcome(
        self,
        error: Exception | None,
        max_backoff: float,
        suggested_delay: float | None = None,
    ) -> Outcome:
        """Records the outcome of a request, updating the node's backoff.

        Args:
            error: The failure, or None for a success.
            max_backoff: The longest the node may be backed off for, in seconds.
            suggested_delay: A delay the node asked for, e.g. with Retry-After.
        """
        outcome = self._backoff.record_outcome(error, max_backoff, suggested_delay)
        if not outcome.ok:
            logger.debug(
                "node_backoff_recorded",
                node=self.node.endpoint,
                delay=outcome.delay,
                retries=outcome.retries,
            )
        return outcome

    async def request(
        self,
        path: str,
        config: RequestConfig | None,
        timeout: float | None,
        max_backoff: float,
    ) -> httpx.Response:
        """Sends a request to this node, first waiting out any backoff.

        Args:
            path: The request path, appended to the node endpoint.
            config: Options for the request.
            timeout: The remaining time budget in seconds, or None for no limit.
                httpx applies it to each phase of the request (connect, write,
                pool and every read) separately, so a node trickling its body
                can run one attempt past it; the pool then stops retrying.
            max_backoff: The longest the node may be backed off for on failure.

        Raises:
            ValueError: If path is empty.
            BackoffExceededError: If the node's backoff outlasts timeout.
            HTTPStatusError: If the node returned a failure response.
            NodeTransportError: If the request could not be completed or its
                response could not be read.
        """
        if not path:
            msg = "Request was not given a url."
            raise ValueError(msg)

        delay = self.time_until_available()
        if timeout is not None and timeout < delay:
            msg = (
                f"{self.node.endpoint} is backed off for {delay:.3f}s, "
                f"more than the remaining {timeout:.3f}s"
            )
            raise BackoffExceededError(msg, self.node)
        if delay > 0:
            await asyncio.sleep(delay)

        request = build_request(
            self._client,
            self.node,
            path,
            config,
            self._headers,
            per_call_timeout(timeout, delay),
        )
        with start_attempt_span(self._tracer, self.node, path, request) as span:
            try:
                response = await self._client.send(request)
            except httpx.RequestError as e:
                msg = f"Request to {self.node.endpoint} failed: {e!r}"
                err = NodeTransportError(msg, self.node)
                record_failure(span, self.record_outcome(err, max_backoff))
                raise err from e

            record_response(span, response)
            if self._is_failure_response(response):
                status_err = HTTPStatusError(self.node, response)
                outcome = self.record_outcome(
                    status_err, max_backoff, suggested_backoff(response)
                )
                record_failure(span, outcome)
                raise status_err

            self.record_outcome(None, max_backoff)
            return response


class ConnectionPool:
    """Asynchronously sends requests to a set of equivalent nodes, failing over
    between them.

    Each request goes to the node with the shortest remaining backoff,
    preferring earlier nodes on ties. Failed nodes are backed off and the
    request is retried on the next best node until the timeout is used up.
    """

    _connections: tuple[Connection, ...]
    _timeout: float
    _max_backoff: float
    _client: httpx.AsyncClient
    _owns_client: bool

    def __init__(
        self,
        nodes: NodeLike | list[NodeLike] | tuple[NodeLike, ...],
        timeout: float | None = None,
        *,
        max_backoff: float | None = None,
        headers: Mapping[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        tracer_provider: TracerProvider | None = None,
    ) -> None:
        """Creates a new ConnectionPool.

        Args:
            nodes: The nodes to send requests to, as URLs, mappings with
                   endpoint and headers, or Node objects.
            timeout: The total time in seconds a forwarded request may take,
                     including retries. Defaults to 20 seconds.
            max_backoff: The longest a failing node is backed off for. Defaults
                         to half the timeout, or 10 seconds without a timeout.
            headers: Headers sent with every request.
            client: The httpx client to send requests with. It is not closed
                    with the pool.
            transport: The httpx transport for the client created by the pool.
            tracer_provider: The OpenTelemetry tracer provider. Defaults to the
                             global one.

        Raises:
            ConfigurationError: If no nodes are given or an option is invalid.
        """
        node_list = to_nodes(nodes)
        self._timeout = resolve_timeout(timeout)
        self._max_backoff = resolve_max_backoff(timeout, max_backoff)
        if client is not None:
            if transport is not None:
                msg = "Only one of client and transport may be given"
                raise ConfigurationError(msg)
            self._client = client
            self._owns_client = False
        else:
            self._client = httpx.AsyncClient(transport=transport)
            self._owns_client = True
        tracer = new_tracer(tracer_provider)
        self._connections = tuple(
            Connection(
                node,
                self._client,
                headers=headers,
                tracer=tracer,
                is_failure_response=self.is_failure_response,
            )
            for node in node_list
        )

    @property
    def connections(self) -> tuple[Connection, ...]:
        return self._connections

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def max_backoff(self) -> float:
        return self._max_backoff

    def pick_connection(self) -> Connection:
        """Returns the connection with the shortest backoff.

        Ties go to the connection created first.
        """
        return min(self._connections, key=lambda c: c.time_until_available())

    async def forward_request(
        self, path: str, config: RequestConfig | None = None
    ) -> httpx.Response:
        """Sends a request to the best available node, failing over on errors.

        Args:
            path: The request path, appended to the node endpoint.
            config: Options for the request.

        Raises:
            PoolTimeoutError: If no node returned a successful response within
                              the timeout.
        """
        budget = self._timeout
        error: NodeTransportError | None = None
        while budget >= 0:
            connection = self.pick_connection()
            start = time.monotonic()
            try:
                return await connection.request(
                    path, config, budget, self._max_backoff
                )
            except BackoffExceededError as e:
                error = e
                break
            except NodeTransportError as e:
                error = e
                logger.debug(
                    "node_attempt_failed",
                    node=connection.node.endpoint,
                    error=str(e),
                    budget=budget,
                )
            if budget <= 0:
                break
            budget -= time.monotonic() - start

        logger.warning(
            "forward_request_timeout",
            path=path,
            timeout=self._timeout,
            nodes=len(self._connections),
        )
        raise PoolTimeoutError from error

    async def get(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Forwards a GET request.

        Args:
            path: The request path, appended to the node endpoint.
            params: Query string parameters.
            headers: Extra request headers.

        Raises:
            PoolTimeoutError: If no node responded successfully in time.
        """
        config: RequestConfig = {"method": "GET"}
        if params is not None:
            config["params"] = params
        if headers is not None:
            config["headers"] = headers
        return await self.forward_request(path, config)

    async def post(
        self,
        path: str,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Forwards a POST request with a JSON body.

        Args:
            path: The request path, appended to the node endpoint.
            json: The body, encoded as JSON.
            params: Query string parameters.
            headers: Extra request headers.

        Raises:
            PoolTimeoutError: If no node responded successfully in time.
        """
        config: RequestConfig = {"method": "POST", "json": json}
        if params is not None:
            config["params"] = params
        if headers is not None:
            config["headers"] = headers
        return await self.forward_request(path, config)

    def is_failure_response(self, response: httpx.Response) -> bool:
        """Returns whether a response counts as a node failure.

        By default any non-2xx response is a failure. Override to accept some
        error responses as final.
        """
        return default_is_failure_response(response)

    async def aclose(self) -> None:
        """Closes the pool's HTTP client if the pool created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> ConnectionPool:
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_value: BaseException | None,
        _traceback: TracebackType | None,
    ) -> None:
        await self.aclose()
