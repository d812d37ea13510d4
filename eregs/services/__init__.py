"""
Service layer - resilient access to the eRegulations API.

Provides:
- DurableCache: Persistent per-namespace cache with TTL and stale reads
- NamespaceManager: Cache isolation per API base URL
- ResilientFetcher: Retries, cancellation and circuit breaking
- ERegulationsClient: Cache-aside client combining all of the above
"""

from eregs.services.errors import (
    ServiceError,
    ConfigurationError,
    StorageError,
    TransientNetworkError,
    RequestTimeoutError,
    RequestCancelledError,
    CircuitOpenError,
    UpstreamHTTPError,
    ResourceNotFoundError,
    MalformedResponseError,
)
from eregs.services.cache import DurableCache, CacheStats
from eregs.services.namespace import NamespaceManager, derive_namespace
from eregs.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from eregs.services.fetcher import FetchRequest, FetchResponse, ResilientFetcher
from eregs.services.flattener import flatten
from eregs.services.models import FlatRecord, ObjectiveSummary
from eregs.services.client import ERegulationsClient

__all__ = [
    # Errors
    "ServiceError",
    "ConfigurationError",
    "StorageError",
    "TransientNetworkError",
    "RequestTimeoutError",
    "RequestCancelledError",
    "CircuitOpenError",
    "UpstreamHTTPError",
    "ResourceNotFoundError",
    "MalformedResponseError",
    # Cache
    "DurableCache",
    "CacheStats",
    "NamespaceManager",
    "derive_namespace",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Fetcher
    "FetchRequest",
    "FetchResponse",
    "ResilientFetcher",
    # Records
    "flatten",
    "FlatRecord",
    "ObjectiveSummary",
    # Client
    "ERegulationsClient",
]
