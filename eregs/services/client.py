"""
ERegulationsClient - Cached, retrying client for the eRegulations API.

Combines:
- NamespaceManager/DurableCache for per-address persistent caching
- ResilientFetcher for retries, cancellation and circuit breaking
- The tree flattener for the procedure list
- CacheSweeper for the daily expiry sweep

Every public call follows the same policy: fresh cache, else live fetch,
else stale cache, else the original error.
"""

import json
from datetime import timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar
from urllib.parse import quote

from loguru import logger
from pydantic import ValidationError

from eregs.services.cache import DurableCache
from eregs.services.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from eregs.services.errors import (
    ConfigurationError,
    MalformedResponseError,
    ServiceError,
    StorageError,
)
from eregs.services.fetcher import FetchRequest, ResilientFetcher
from eregs.services.flattener import extract_roots, flatten
from eregs.services.models import FlatRecord, ObjectiveSummary
from eregs.services.namespace import NamespaceManager
from eregs.services.sweeper import CacheSweeper
from eregs.settings import Settings, global_settings

T = TypeVar("T")


class CacheTTL:
    """Cache lifetimes per kind of resource."""

    PROCEDURES_LIST = timedelta(days=30)
    PROCEDURE_DETAILS = timedelta(days=7)
    PROCEDURE_COMPONENTS = timedelta(days=7)


class ResourceKey:
    """Cache key templates, one per kind of resource."""

    PROCEDURES_LIST = "procedures_list"
    PROCEDURE = "procedure_{id}"
    PROCEDURE_STEP = "procedure_{id}_step_{step_id}"
    PROCEDURE_RESUME = "procedure_resume_{id}"
    PROCEDURE_DETAILED_RESUME = "procedure_detailed_resume_{id}"
    PROCEDURE_TOTALS = "procedure_totals_{id}"
    SEARCH = "search_objectives_{keyword}"

    @classmethod
    def search(cls, keyword: str) -> str:
        return cls.SEARCH.format(keyword=quote(keyword.lower(), safe=""))


def _require_id(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{label} is required")
    return value


class ERegulationsClient:
    """
    Client for one eRegulations instance.

    Usage:
        async with ERegulationsClient("https://api-example.eregulations.org") as api:
            procedures = await api.list_procedures()
            detail = await api.get_procedure(725)
            step = await api.get_procedure_step(725, 1)
            hits = await api.search_procedures("import")

    The base URL may be omitted and come from EREGULATIONS_API_URL, or be set
    later with set_base_url(). The cache is opened on first use, under the
    namespace of the base URL in effect at that time.
    """

    def __init__(
        self,
        base_url: str | None = None,
        cache_enabled: bool | None = None,
        cache_dir: Path | str | None = None,
        fetcher: ResilientFetcher | None = None,
        settings: Settings = global_settings,
    ):
        self._settings = settings
        self._configured_url = base_url or settings.eregulations_api_url
        self._cache_enabled = (
            settings.cache_enabled if cache_enabled is None else cache_enabled
        )
        self._namespace = NamespaceManager(
            Path(cache_dir or settings.cache_dir),
            debug=settings.cache_debug,
        )
        self._fetcher = fetcher or ResilientFetcher(
            timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
            circuit_breakers=CircuitBreakerRegistry(
                CircuitBreakerConfig(
                    failure_threshold=settings.circuit_failure_threshold,
                    reset_timeout=timedelta(seconds=settings.circuit_reset_seconds),
                )
            ),
        )
        self._sweeper = CacheSweeper(
            lambda: self._namespace.current,
            interval_hours=settings.cache_sweep_interval_hours,
        )

        if not self._cache_enabled:
            logger.warning("Cache is disabled. All requests will be made to the server.")

    @property
    def cache_enabled(self) -> bool:
        return self._cache_enabled

    @property
    def namespace(self) -> NamespaceManager:
        return self._namespace

    @property
    def sweeper(self) -> CacheSweeper:
        return self._sweeper

    # Configuration

    def _get_base_url(self) -> str:
        """
        The base URL in effect, binding the configured one on first use.

        Raises:
            ConfigurationError: If no base URL is configured
        """
        if self._namespace.address is None:
            if not self._configured_url:
                raise ConfigurationError(
                    "No EREGULATIONS_API_URL set. Please set the "
                    "EREGULATIONS_API_URL environment variable or use set_base_url()."
                )
            self._namespace.bind(self._configured_url)
            logger.info(f"Initializing API with URL: {self._namespace.address}")
        return self._namespace.address

    async def set_base_url(self, url: str) -> None:
        """
        Point the client at another instance.

        An already-open cache is re-opened under the new namespace.

        Raises:
            ConfigurationError: If the URL is empty or invalid
        """
        await self._namespace.rebind(url)
        self._configured_url = self._namespace.address
        logger.info(f"Manually setting API URL: {self._namespace.address}")

    async def _get_store(self) -> DurableCache | None:
        """Current store, opening it (and the sweeper) on first use."""
        if not self._cache_enabled:
            return None

        self._get_base_url()
        try:
            store = await self._namespace.get_store()
        except StorageError as e:
            logger.error(f"Cache unavailable, continuing without it: {e}")
            return None

        if not self._sweeper.is_running():
            self._sweeper.start()
        return store

    async def _resolve(self) -> tuple[str, DurableCache | None]:
        """Base URL and store captured together for one logical call."""
        store = await self._get_store()
        return self._get_base_url(), store

    # Cache-aside

    async def fetch_with_cache(
        self,
        cache_key: str,
        produce: Callable[[], Awaitable[T]],
        ttl: timedelta,
        store: DurableCache | None = None,
    ) -> T:
        """
        Serve cache_key from cache, else from produce(), else from stale cache.

        Args:
            cache_key: Resource key
            produce: Coroutine function fetching the fresh value
            ttl: Lifetime of a freshly produced value
            store: Store captured by the caller (looked up if omitted)

        Raises:
            Whatever produce() raised, if no cached copy exists at all
        """
        if self._cache_enabled and store is None:
            store = await self._get_store()
        if not self._cache_enabled:
            store = None

        if store is not None:
            cached = await store.get(cache_key)
            if cached is not None:
                logger.debug(f"Returning data for {cache_key} from cache")
                return cached

        try:
            data = await produce()
        except Exception as e:
            if store is not None:
                stale = await store.get(cache_key, allow_expired=True)
                if stale is not None:
                    logger.warning(
                        f"Error fetching fresh data for {cache_key}, "
                        f"returning stale cache: {e}"
                    )
                    return stale
            logger.error(f"Error fetching data for {cache_key}: {e}")
            raise

        if store is not None:
            await store.set(cache_key, data, ttl)
            logger.debug(f"Cached data for {cache_key}")
        return data

    async def _get_json(self, resource: str, request: FetchRequest | str) -> Any:
        """Fetch and return the parsed body, rejecting unparseable bodies."""
        response = await self._fetcher.fetch(request)
        if response.is_malformed:
            raise MalformedResponseError(resource, response.data["raw_length"])
        return response.data

    # Public API

    async def list_procedures(self) -> list[FlatRecord]:
        """All procedures and categories, flattened and sorted by full path."""
        base_url, store = await self._resolve()

        async def produce() -> list[dict[str, Any]]:
            logger.info("Fetching procedures from API...")
            data = await self._get_json(
                ResourceKey.PROCEDURES_LIST, f"{base_url}/Objectives"
            )
            if data is None:
                logger.warning("Empty response from API when fetching procedures")
                return []

            roots = extract_roots(data)
            logger.info(f"Found {len(roots)} top-level items in API response")
            return [record.model_dump() for record in flatten(roots)]

        items = await self.fetch_with_cache(
            ResourceKey.PROCEDURES_LIST, produce, CacheTTL.PROCEDURES_LIST, store
        )
        return [FlatRecord.model_validate(item) for item in items]

    async def get_procedure(self, procedure_id: int) -> dict[str, Any]:
        """Procedure detail, with convenience links to its sub-resources."""
        procedure_id = _require_id(procedure_id, "Procedure ID")
        cache_key = ResourceKey.PROCEDURE.format(id=procedure_id)
        base_url, store = await self._resolve()

        async def produce() -> dict[str, Any]:
            logger.info(f"Fetching procedure details for ID {procedure_id}...")
            url = f"{base_url}/Procedures/{procedure_id}"
            data = await self._get_json(cache_key, url)
            if not isinstance(data, dict) or not data:
                raise ServiceError(f"Failed to get data for procedure {procedure_id}")

            if not data.get("id") or not data.get("name"):
                logger.warning(
                    f"API response for procedure {procedure_id} "
                    "is missing required fields"
                )
            return {
                **data,
                "id": data.get("id") or procedure_id,
                "name": data.get("name") or f"Procedure {procedure_id}",
                "_links": {
                    "self": url,
                    "resume": f"{url}/Resume",
                    "totals": f"{url}/Totals",
                    "abc": f"{url}/ABC",
                },
            }

        return await self.fetch_with_cache(
            cache_key, produce, CacheTTL.PROCEDURE_DETAILS, store
        )

    async def get_procedure_step(
        self, procedure_id: int, step_id: int
    ) -> dict[str, Any]:
        """One step of a procedure."""
        procedure_id = _require_id(procedure_id, "Procedure ID")
        step_id = _require_id(step_id, "Step ID")
        cache_key = ResourceKey.PROCEDURE_STEP.format(id=procedure_id, step_id=step_id)
        base_url, store = await self._resolve()

        async def produce() -> dict[str, Any]:
            logger.info(f"Fetching step {step_id} for procedure {procedure_id}...")
            data = await self._get_json(
                cache_key, f"{base_url}/Procedures/{procedure_id}/Steps/{step_id}"
            )
            if not isinstance(data, dict) or not data:
                raise ServiceError(
                    f"Failed to get step {step_id} for procedure {procedure_id}"
                )

            step = data.get("data")
            return {
                "id": step_id,
                "name": "Unknown",
                **(step if isinstance(step, dict) else {}),
                "procedureId": procedure_id,
                "_links": data.get("links"),
            }

        return await self.fetch_with_cache(
            cache_key, produce, CacheTTL.PROCEDURE_COMPONENTS, store
        )

    async def search_procedures(self, keyword: str) -> list[ObjectiveSummary]:
        """Objectives matching a keyword."""
        if not keyword or not isinstance(keyword, str):
            raise ValueError("Search keyword is required")
        cache_key = ResourceKey.search(keyword)
        base_url, store = await self._resolve()

        async def produce() -> list[Any]:
            logger.info(f'Searching objectives with keyword "{keyword}"...')
            data = await self._get_json(
                cache_key,
                FetchRequest(
                    url=f"{base_url}/Objectives/Search",
                    method="POST",
                    content=json.dumps(keyword),
                ),
            )
            if not isinstance(data, list):
                logger.warning(
                    "Unexpected search API response type for objectives: "
                    f"{type(data).__name__}. Expected list."
                )
                return []

            logger.info(f'Found {len(data)} objective search results for "{keyword}"')
            return data

        items = await self.fetch_with_cache(
            cache_key, produce, CacheTTL.PROCEDURES_LIST, store
        )
        return self._to_summaries(items)

    @staticmethod
    def _to_summaries(items: list[Any]) -> list[ObjectiveSummary]:
        summaries = []
        for item in items:
            try:
                summaries.append(ObjectiveSummary.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed search result: {e}")
        return summaries

    async def _get_component(
        self, procedure_id: int, key_template: str, path: str
    ) -> Any:
        procedure_id = _require_id(procedure_id, "Procedure ID")
        cache_key = key_template.format(id=procedure_id)
        base_url, store = await self._resolve()

        async def produce() -> Any:
            return await self._get_json(
                cache_key, f"{base_url}/Procedures/{procedure_id}/{path}"
            )

        return await self.fetch_with_cache(
            cache_key, produce, CacheTTL.PROCEDURE_COMPONENTS, store
        )

    async def get_procedure_resume(self, procedure_id: int) -> Any:
        """Summary of a procedure (number of steps, institutions, requirements)."""
        return await self._get_component(
            procedure_id, ResourceKey.PROCEDURE_RESUME, "Resume"
        )

    async def get_procedure_detailed_resume(self, procedure_id: int) -> Any:
        return await self._get_component(
            procedure_id, ResourceKey.PROCEDURE_DETAILED_RESUME, "ResumeDetail"
        )

    async def get_procedure_totals(self, procedure_id: int) -> Any:
        """Total costs and time of a procedure."""
        return await self._get_component(
            procedure_id, ResourceKey.PROCEDURE_TOTALS, "Totals"
        )

    # Lifecycle and status

    def get_health_status(self) -> dict[str, Any]:
        store = self._namespace.current
        breakers = self._fetcher.circuit_breakers
        return {
            "base_url": self._namespace.address,
            "namespace": self._namespace.namespace,
            "cache_enabled": self._cache_enabled,
            "cache_persistent": store.is_persistent if store else None,
            "cache": store.get_stats().to_dict() if store else None,
            "sweeper_running": self._sweeper.is_running(),
            "circuit_breakers": breakers.get_all_status() if breakers else {},
            "open_circuits": breakers.get_open_circuits() if breakers else [],
        }

    async def close(self) -> None:
        """Stop the sweeper and release the HTTP client and the cache."""
        self._sweeper.stop()
        await self._fetcher.close()
        await self._namespace.close()
        logger.debug("ERegulationsClient closed")

    async def __aenter__(self) -> "ERegulationsClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


# Global client instance
_global_client: ERegulationsClient | None = None


def get_eregulations_client() -> ERegulationsClient:
    """Get the global client instance."""
    global _global_client
    if _global_client is None:
        _global_client = ERegulationsClient()
    return _global_client


async def close_eregulations_client() -> None:
    """Close the global client."""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
