from __future__ import annotations

__all__ = [
    "BACKOFF_DELAY",
    "DEFAULT_MAX_BACKOFF",
    "DEFAULT_TIMEOUT",
    "TIMEOUT_ERROR",
    "BackoffExceededError",
    "BackoffSnapshot",
    "BackoffState",
    "ConfigurationError",
    "Connection",
    "ConnectionPool",
    "HTTPStatusError",
    "Node",
    "NodeTransportError",
    "NodepoolError",
    "Outcome",
    "PoolTimeoutError",
    "RequestConfig",
    "SyncConnection",
    "SyncConnectionPool",
]

from ._async import Connection, ConnectionPool
from ._backoff import BackoffSnapshot, BackoffState, Outcome
from ._errors import (
    TIMEOUT_ERROR,
    BackoffExceededError,
    ConfigurationError,
    HTTPStatusError,
    NodepoolError,
    NodeTransportError,
    PoolTimeoutError,
)
from ._shared import (
    BACKOFF_DELAY,
    DEFAULT_MAX_BACKOFF,
    DEFAULT_TIMEOUT,
    Node,
    RequestConfig,
)
from ._sync import SyncConnection, SyncConnectionPool
