"""
Namespace handling for the durable cache.

Every remote base address gets its own cache file, so switching the client
between environments never mixes their data.
"""

import asyncio
import hashlib
from pathlib import Path

import httpx
from loguru import logger

from eregs.services.cache import DurableCache
from eregs.services.errors import ConfigurationError


def normalize_address(address: str | None) -> str:
    """
    Normalize a remote base address.

    Adds https:// when no scheme is given and drops trailing slashes.

    Raises:
        ConfigurationError: If the address is empty or has no host
    """
    if not address or not address.strip():
        raise ConfigurationError("Base URL cannot be empty")

    address = address.strip()
    if not address.startswith(("http://", "https://")):
        address = "https://" + address
    address = address.rstrip("/")

    try:
        url = httpx.URL(address)
    except httpx.InvalidURL as e:
        raise ConfigurationError(f"Invalid base URL '{address}': {e}") from e
    if not url.host:
        raise ConfigurationError(f"Invalid base URL '{address}': missing host")
    return address


def derive_namespace(address: str) -> str:
    """Stable namespace id for a base address."""
    return hashlib.md5(f"api-cache-{address}".encode()).hexdigest()


class NamespaceManager:
    """
    Owns the "current" cache handle and re-points it when the address changes.

    The handle is replaced wholesale on rebind. Callers that captured the old
    handle keep it; once it is closed their writes are dropped, never
    redirected into the new namespace.

    Usage:
        manager = NamespaceManager(Path("data/cache"))
        manager.bind("https://api.example.org")
        cache = await manager.get_store()      # opened lazily

        await manager.rebind("https://other.example.org")
        await manager.close()
    """

    def __init__(
        self,
        cache_dir: Path | None,
        address: str | None = None,
        debug: bool = False,
    ):
        self._cache_dir = cache_dir
        self._debug = debug
        self._address: str | None = None
        self._store: DurableCache | None = None
        self._lock = asyncio.Lock()
        if address:
            self.bind(address)

    @property
    def address(self) -> str | None:
        return self._address

    @property
    def namespace(self) -> str | None:
        return derive_namespace(self._address) if self._address else None

    @property
    def current(self) -> DurableCache | None:
        """The open store, if any. Never opens one."""
        return self._store

    def bind(self, address: str) -> None:
        """Set the address without opening anything. Only valid before first use."""
        if self._store is not None:
            raise RuntimeError("Store already open, use rebind()")
        self._address = normalize_address(address)

    async def open_store_for(self, address: str) -> DurableCache:
        """Open (creating if needed) the store scoped to address's namespace."""
        namespace = derive_namespace(normalize_address(address))
        db_path = (
            self._cache_dir / f"{namespace}.sqlite"
            if self._cache_dir is not None
            else None
        )
        logger.debug(f"Opening cache namespace {namespace} for {address}")
        store = DurableCache(db_path, namespace=namespace, debug=self._debug)
        await store.open()
        return store

    async def get_store(self) -> DurableCache:
        """
        The store for the bound address, opening it on first use.

        Raises:
            ConfigurationError: If no address has been bound
        """
        store = self._store
        if store is not None:
            return store

        async with self._lock:
            if self._store is None:
                if not self._address:
                    raise ConfigurationError("No API base URL configured")
                self._store = await self.open_store_for(self._address)
            return self._store

    async def rebind(self, new_address: str) -> DurableCache | None:
        """
        Point the manager at a new address.

        Validation happens before anything changes; an invalid address raises
        ConfigurationError and leaves the current store in place. If a store
        was open, a new one is opened for the new namespace and the old one is
        closed. Returns the current store (None if none was open yet).
        """
        address = normalize_address(new_address)

        async with self._lock:
            if self._store is None:
                self._address = address
                return None

            if derive_namespace(address) == self._store.namespace:
                self._address = address
                return self._store

            new_store = await self.open_store_for(address)
            old_store = self._store
            self._store = new_store
            self._address = address

        logger.info(
            f"Cache namespace switched {old_store.namespace[:8]} -> "
            f"{new_store.namespace[:8]} for {address}"
        )
        await old_store.close()
        return new_store

    async def close(self) -> None:
        async with self._lock:
            store, self._store = self._store, None
        if store is not None:
            await store.close()
