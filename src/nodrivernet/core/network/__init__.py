from .cookie import Cookie
from .request import Request, ERROR_REASONS, error_reason
from .response import Response, BodyLoaded, SecurityDetails, REDIRECT_BODY_ERROR
from .fetch import FetchInterceptor, validate_patterns
from .correlation import (
    CorrelationStrategy,
    HashCorrelation,
    IdCorrelation,
    Multimap,
    IGNORED_HEADERS,
    request_hash,
)
from .idle_watcher import IdleOptions, NetworkIdleWatcher
from .manager import NetworkManager

__all__ = [
    "Cookie",
    "Request",
    "ERROR_REASONS",
    "error_reason",
    "Response",
    "BodyLoaded",
    "SecurityDetails",
    "REDIRECT_BODY_ERROR",
    "FetchInterceptor",
    "validate_patterns",
    "CorrelationStrategy",
    "HashCorrelation",
    "IdCorrelation",
    "Multimap",
    "IGNORED_HEADERS",
    "request_hash",
    "IdleOptions",
    "NetworkIdleWatcher",
    "NetworkManager",
]
