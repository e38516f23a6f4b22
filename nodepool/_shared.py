from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from http import HTTPStatus
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, TypedDict
from urllib.parse import quote

import httpx

from ._errors import ConfigurationError

if TYPE_CHECKING:
    from httpx._client import UseClientDefault

# Delay after the first failure of a node, doubled on every further
# consecutive failure.
BACKOFF_DELAY = 0.5
# Ceiling on a node's backoff when the pool has no timeout to derive it from.
DEFAULT_MAX_BACKOFF = 10.0
# Budget for a forwarded request when the pool is built without a timeout.
DEFAULT_TIMEOUT = 20.0

DEFAULT_HEADERS: Mapping[str, str] = MappingProxyType({"Accept": "application/json"})

_MAX_BACKOFF_EXPONENT = 32


@dataclass(frozen=True)
class Node:
    """A backend node requests can be sent to.

    Args:
        endpoint: The base URL of the node, e.g. ``https://node1:9984/api/v1``.
        headers: Headers sent with every request to this node.
    """

    endpoint: str
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.endpoint:
            msg = "Node endpoint must not be empty"
            raise ConfigurationError(msg)
        object.__setattr__(self, "endpoint", self.endpoint.rstrip("/"))
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))


NodeLike = Node | str | Mapping[str, Any]


def to_node(node: NodeLike) -> Node:
    match node:
        case Node():
            return node
        case str():
            return Node(node)
        case Mapping():
            try:
                endpoint = node["endpoint"]
            except KeyError as e:
                msg = f"Node mapping is missing 'endpoint': {node!r}"
                raise ConfigurationError(msg) from e
            return Node(endpoint, node.get("headers") or {})
        case _:
            msg = f"Unsupported node: {node!r}"
            raise ConfigurationError(msg)


def to_nodes(nodes: NodeLike | list[NodeLike] | tuple[NodeLike, ...]) -> list[Node]:
    if isinstance(nodes, (str, Node, Mapping)):
        nodes = [nodes]
    ret = [to_node(n) for n in nodes]
    if not ret:
        msg = "At least one node is required"
        raise ConfigurationError(msg)
    return ret


def resolve_timeout(timeout: float | None) -> float:
    if timeout is None:
        return DEFAULT_TIMEOUT
    return timeout


def resolve_max_backoff(timeout: float | None, max_backoff: float | None) -> float:
    if max_backoff is not None:
        if max_backoff <= 0:
            msg = f"max_backoff must be positive, got {max_backoff}"
            raise ConfigurationError(msg)
        return max_backoff
    if timeout is not None and timeout > 0:
        return timeout / 2
    return DEFAULT_MAX_BACKOFF


def compute_backoff(
    retries: int, max_backoff: float, suggested: float | None = None
) -> float:
    delay = BACKOFF_DELAY * 2 ** min(retries, _MAX_BACKOFF_EXPONENT)
    if suggested is not None and suggested > delay:
        delay = suggested
    return min(delay, max_backoff)


def per_call_timeout(
    timeout: float | None, delay: float
) -> float | UseClientDefault:
    # httpx enforces this per phase, not for the whole attempt. A zero budget
    # still gets one full attempt, so it falls back to the client's own timeout.
    if timeout is None or timeout - delay <= 0:
        return httpx.USE_CLIENT_DEFAULT
    return timeout - delay


class RequestConfig(TypedDict, total=False):
    """Options for a forwarded request.

    Attributes:
        method: The HTTP method, ``GET`` if unset.
        headers: Extra request headers, overriding pool and node headers.
        json: A body to send encoded as JSON.
        content: A raw body to send.
        params: Query string parameters.
        path_params: Values substituted into ``{name}`` placeholders of the path.
    """

    method: str
    headers: Mapping[str, str]
    json: Any
    content: bytes | str
    params: Mapping[str, Any]
    path_params: Mapping[str, Any]


def format_path(path: str, path_params: Mapping[str, Any] | None) -> str:
    if not path_params:
        return path
    return path.format(**{k: quote(str(v), safe="") for k, v in path_params.items()})


def build_request(
    client: httpx.Client | httpx.AsyncClient,
    node: Node,
    path: str,
    config: RequestConfig | None,
    headers: Mapping[str, str],
    timeout: float | UseClientDefault,
) -> httpx.Request:
    config = config or {}
    request_headers = httpx.Headers(DEFAULT_HEADERS)
    request_headers.update(headers)
    request_headers.update(node.headers)
    request_headers.update(config.get("headers") or {})
    return client.build_request(
        config.get("method", "GET"),
        node.endpoint + format_path(path, config.get("path_params")),
        headers=request_headers,
        params=config.get("params"),
        json=config.get("json"),
        content=config.get("content"),
        timeout=timeout,
    )


def parse_retry_after(header: str | None) -> float | None:
    if header is None:
        return None
    # of seconds, e.g., Retry-After: 120
    try:
        ret = int(header)
        if ret < 0:
            return None
        return float(ret)
    except ValueError:
        pass

    # Date, e.g., Retry-After: Wed, 21 Oct 2015 07:28:00 GMT
    try:
        dt = parsedate_to_datetime(header)
    except Exception:
        return None

    delta = (dt - dt.now(dt.tzinfo)).total_seconds()
    if delta < 0:
        return None
    return delta


def suggested_backoff(response: httpx.Response) -> float | None:
    """Returns the delay a throttling or unavailable node asked for, if any."""
    if response.status_code not in (
        HTTPStatus.TOO_MANY_REQUESTS,
        HTTPStatus.SERVICE_UNAVAILABLE,
    ):
        return None
    return parse_retry_after(response.headers.get("retry-after"))


def default_is_failure_response(response: httpx.Response) -> bool:
    return not response.is_success
