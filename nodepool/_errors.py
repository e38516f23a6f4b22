from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from ._shared import Node

TIMEOUT_ERROR = "TimeoutError"
ERROR_FROM_SERVER = "HTTP Error: Requested page not reachable"


class NodepoolError(Exception):
    """Base class for errors raised by nodepool."""


class ConfigurationError(NodepoolError, ValueError):
    """The pool was constructed with invalid arguments."""


class NodeTransportError(NodepoolError):
    """A request to a single node failed.

    These errors only affect the backoff state of the node and are never
    raised from a pool's forward_request.
    """

    node: Node

    def __init__(self, msg: str, node: Node) -> None:
        super().__init__(msg)
        self.node = node


class HTTPStatusError(NodeTransportError):
    """The node answered with a response considered a failure."""

    response: httpx.Response

    def __init__(self, node: Node, response: httpx.Response) -> None:
        super().__init__(ERROR_FROM_SERVER, node)
        self.response = response


class BackoffExceededError(NodeTransportError):
    """The node is backed off for longer than the remaining budget."""


class PoolTimeoutError(NodepoolError, TimeoutError):
    """No node returned a response within the pool's timeout."""

    def __init__(self) -> None:
        super().__init__(TIMEOUT_ERROR)
