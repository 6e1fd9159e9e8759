from .core.network import (
    Cookie,
    Request,
    Response,
    BodyLoaded,
    SecurityDetails,
    FetchInterceptor,
    CorrelationStrategy,
    HashCorrelation,
    IdCorrelation,
    IdleOptions,
    NetworkIdleWatcher,
    NetworkManager,
    request_hash,
)
from .core.connection import (
    CDPSession,
    NodriverSession,
    send_cdp,
)
from .core.errors import (
    NetworkError,
    ProtocolError,
    ConnectionClosedError,
    StaleContextError,
    UsageError,
    WaitTimeoutError,
)
from .core.events import (
    NetworkEvent,
    FetchEvent,
    InterceptionMode,
)
from . import utils
import nodriver
from nodriver import cdp

__all__ = [
    "nodriver",
    "cdp",
    "utils",
    "Cookie",
    "Request",
    "Response",
    "BodyLoaded",
    "SecurityDetails",
    "FetchInterceptor",
    "CorrelationStrategy",
    "HashCorrelation",
    "IdCorrelation",
    "IdleOptions",
    "NetworkIdleWatcher",
    "NetworkManager",
    "request_hash",
    "CDPSession",
    "NodriverSession",
    "send_cdp",
    "NetworkError",
    "ProtocolError",
    "ConnectionClosedError",
    "StaleContextError",
    "UsageError",
    "WaitTimeoutError",
    "NetworkEvent",
    "FetchEvent",
    "InterceptionMode",
]
