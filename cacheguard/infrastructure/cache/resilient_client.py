"""
Resilient Cache Client - Redis with In-Memory Fallback

Architecture:
    ResilientCacheClient (Public API)
        ├── CacheClientConfig (Mode selection, timeouts, connect retry budget)
        ├── BackendFactory (Builds single-node or cluster handles)
        ├── BackendState (Single authoritative mode + handle)
        ├── RetryPolicy (Connect handshake backoff, see core.resilience)
        └── BoundedMemoryCache (Fallback store)

State machine:
    Uninitialized ──initialize()──> Single | Cluster | Memory
    Single | Cluster ──connect failure / transport failure──> Memory
    Memory ──reconnect()──> Single | Cluster | Memory
    any ──close()──> Closed (terminal)

    Memory never moves back to a networked backend on its own. The state is
    a frozen BackendState swapped with a single attribute assignment, so a
    concurrent operation sees either the old or the new state, never a mix.

Dispatch:
    Memory state      -> fallback store, no network attempt
    Networked state   -> one backend attempt bounded by command_timeout
        command error -> fallback for this call (fallback enabled) or raise
        transport error / timeout -> fallback for this call and switch to Memory

    Commands are sent once and never re-sent, so a lost INCR reply cannot
    count twice. Only the connect handshake runs under the RetryPolicy.

Author: System Architect
Date: 2025-12-08
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar
from urllib.parse import urlparse

from redis.asyncio import Redis
from redis.asyncio.cluster import ClusterNode, RedisCluster
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import RedisError

from cacheguard.core.config.constants import ConnectionMode, Stage
from cacheguard.core.config.settings import Settings
from cacheguard.core.exceptions import (
    CacheClientClosedError,
    CacheConnectionError,
    ConfigurationError,
)
from cacheguard.core.logging.logger import get_logger
from cacheguard.core.resilience.retry_policy import TRANSPORT_ERRORS, RetryPolicy
from cacheguard.infrastructure.cache.memory_cache import BoundedMemoryCache
from cacheguard.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)

logger = get_logger(__name__)

T = TypeVar("T")

BACKEND_ERRORS: tuple[type[BaseException], ...] = (RedisError, *TRANSPORT_ERRORS)

DEFAULT_REDIS_PORT = 6379

RedisHandle = Redis | RedisCluster


# =============================================================================
# LAYER 1: CONFIGURATION
# =============================================================================


def _normalize_url(url: str) -> str:
    url = url.strip()
    return url if "://" in url else f"redis://{url}"


def parse_node_url(url: str) -> tuple[str, int]:
    """
    Split a node URL into (host, port).

    Raises:
        ConfigurationError: If the URL has no host or an invalid port
    """
    try:
        parsed = urlparse(_normalize_url(url))
        port = parsed.port or DEFAULT_REDIS_PORT
    except ValueError as e:
        raise ConfigurationError.from_exception(e, f"Invalid Redis URL: {url}", url=url) from e
    if not parsed.hostname:
        raise ConfigurationError(f"Invalid Redis URL: {url}", details={"url": url})
    return parsed.hostname, port


@dataclass(frozen=True)
class CacheClientConfig:
    """
    Immutable configuration for ResilientCacheClient.

    ``mode`` is the requested mode. The mode actually entered on
    initialize() is given by target_mode(): cluster needs nodes, single
    needs a URL, and with neither the client runs from memory.
    """

    mode: ConnectionMode = ConnectionMode.SINGLE
    url: str | None = None
    cluster_nodes: tuple[str, ...] = ()
    fallback_to_memory: bool = True
    max_retries: int = 3
    retry_delay_ms: int = 200
    connection_timeout_ms: int = 5000
    command_timeout_ms: int = 5000
    fallback_max_entries: int = 10_000
    fallback_default_ttl: int = 60

    def __post_init__(self):
        if self.mode is ConnectionMode.MEMORY:
            return
        for node in self.cluster_nodes:
            parse_node_url(node)
        if self.url:
            parse_node_url(self.url)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheClientConfig":
        nodes = tuple(
            node.strip()
            for node in (settings.REDIS_CLUSTER_URLS or "").split(",")
            if node.strip()
        )
        return cls(
            mode=ConnectionMode.CLUSTER if nodes else ConnectionMode.SINGLE,
            url=settings.REDIS_URL or None,
            cluster_nodes=nodes,
            fallback_to_memory=settings.REDIS_FALLBACK_TO_MEMORY,
            max_retries=settings.REDIS_MAX_RETRIES,
            retry_delay_ms=settings.REDIS_RETRY_DELAY_MS,
            connection_timeout_ms=settings.REDIS_CONNECTION_TIMEOUT_MS,
            command_timeout_ms=settings.REDIS_COMMAND_TIMEOUT_MS,
            fallback_max_entries=settings.CACHE_FALLBACK_MAX_ENTRIES,
            fallback_default_ttl=settings.CACHE_FALLBACK_DEFAULT_TTL,
        )

    def target_mode(self) -> ConnectionMode:
        if self.mode is ConnectionMode.CLUSTER and self.cluster_nodes:
            return ConnectionMode.CLUSTER
        if self.url:
            return ConnectionMode.SINGLE
        return ConnectionMode.MEMORY

    @property
    def connection_timeout(self) -> float:
        return self.connection_timeout_ms / 1000

    @property
    def command_timeout(self) -> float:
        return self.command_timeout_ms / 1000


# =============================================================================
# LAYER 2: BACKEND STATE AND CONSTRUCTION
# =============================================================================


@dataclass(frozen=True)
class BackendState:
    """
    Current backend: a mode tag plus the handle that goes with it.

    MEMORY carries no handle; SINGLE and CLUSTER always carry one.
    """

    mode: ConnectionMode
    handle: RedisHandle | None = field(default=None, compare=False)

    def __post_init__(self):
        if (self.mode is ConnectionMode.MEMORY) != (self.handle is None):
            raise ValueError(f"Invalid handle for {self.mode.value} state")

    @classmethod
    def memory(cls) -> "BackendState":
        return cls(ConnectionMode.MEMORY)


class BackendFactory:
    """
    Builds redis-py handles for the configured mode.

    redis-py's own retry is turned off (Retry(NoBackoff(), 0)); the client's
    RetryPolicy retries the connect handshake only.
    """

    def __init__(self, config: CacheClientConfig):
        self._config = config

    def build(self, mode: ConnectionMode) -> RedisHandle:
        if mode is ConnectionMode.SINGLE:
            return self._build_single()
        if mode is ConnectionMode.CLUSTER:
            return self._build_cluster()
        raise ValueError("memory mode has no backend handle")

    def _common_kwargs(self) -> dict[str, Any]:
        return {
            "decode_responses": True,
            "socket_connect_timeout": self._config.connection_timeout,
            "socket_timeout": self._config.command_timeout,
            "retry": Retry(NoBackoff(), 0),
        }

    def _build_single(self) -> Redis:
        return Redis.from_url(_normalize_url(self._config.url), **self._common_kwargs())

    def _build_cluster(self) -> RedisCluster:
        nodes = [ClusterNode(*parse_node_url(node)) for node in self._config.cluster_nodes]
        first = urlparse(_normalize_url(self._config.cluster_nodes[0]))
        return RedisCluster(
            startup_nodes=nodes,
            username=first.username or None,
            password=first.password or None,
            read_from_replicas=True,
            **self._common_kwargs(),
        )


# =============================================================================
# LAYER 3: PUBLIC API
# =============================================================================


class ResilientCacheClient:
    """
    Key-value and counter API over Redis (single or cluster) that degrades
    to an in-process bounded store.

    While ``fallback_to_memory`` is true no operation raises because of the
    backend; the worst case is an answer from the memory store. With the
    fallback disabled, backend errors propagate and memory mode raises
    CacheConnectionError.

    Usage:
        client = ResilientCacheClient(CacheClientConfig.from_settings(get_settings()))
        await client.initialize()
        await client.setex("cache:settings", 60, payload)
        value = await client.get("cache:settings")
        await client.close()
    """

    def __init__(
        self,
        config: CacheClientConfig | None = None,
        fallback: BoundedMemoryCache | None = None,
        metrics: MetricsCollector | None = None,
        backend_factory: BackendFactory | None = None,
    ):
        self._config = config or CacheClientConfig()
        self._policy = RetryPolicy(
            max_retries=self._config.max_retries,
            base_delay_ms=self._config.retry_delay_ms,
        )
        self._memory = fallback or BoundedMemoryCache(
            max_size=self._config.fallback_max_entries,
            default_ttl=self._config.fallback_default_ttl,
        )
        self._metrics = metrics or get_metrics_collector()
        self._factory = backend_factory or BackendFactory(self._config)
        self._state = BackendState.memory()
        self._retired: list[RedisHandle] = []
        self._lifecycle_lock = asyncio.Lock()
        self._closed = False

    @property
    def config(self) -> CacheClientConfig:
        return self._config

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    @property
    def fallback_store(self) -> BoundedMemoryCache:
        return self._memory

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> ConnectionMode:
        """
        Select and connect the backend.

        STAGE-CACHE.1: Mode selection

        Returns:
            ConnectionMode: The mode entered (MEMORY when no backend is
            configured or the connection could not be established)
        """
        async with self._lifecycle_lock:
            self._ensure_open()
            if self._state.handle is not None:
                self._retired.append(self._state.handle)
                self._transition(BackendState.memory(), reason="reinitialize")
                await self._dispose_retired()
            target = self._config.target_mode()

            if target is ConnectionMode.MEMORY:
                logger.info(
                    "No Redis configured, using in-memory cache",
                    stage=Stage.CACHE_INIT,
                    fallback_enabled=self._config.fallback_to_memory,
                )
                self._transition(BackendState.memory(), reason="not_configured")
                return ConnectionMode.MEMORY

            logger.info(
                "Connecting to Redis",
                stage=Stage.CACHE_INIT,
                mode=target.value,
                nodes=len(self._config.cluster_nodes) if target is ConnectionMode.CLUSTER else 1,
            )
            handle = self._factory.build(target)

            try:
                await self._policy.run(
                    lambda: asyncio.wait_for(handle.ping(), timeout=self._config.connection_timeout),
                    name="connect",
                )
            except BACKEND_ERRORS as e:
                logger.warning(
                    "Redis connection failed, falling back to in-memory cache",
                    stage=Stage.CACHE_CONNECT,
                    mode=target.value,
                    error=str(e),
                    error_type=type(e).__name__,
                    attempts=self._policy.max_retries + 1,
                )
                self._retired.append(handle)
                await self._dispose_retired()
                self._transition(BackendState.memory(), reason="connect_failed")
                return ConnectionMode.MEMORY

            self._transition(BackendState(target, handle), reason="connected")
            return target

    async def reconnect(self) -> bool:
        """
        Re-run initialization, the only way out of memory mode.

        Returns:
            bool: Whether the client is connected to a networked backend
        """
        if self._closed:
            logger.warning("Reconnect requested on a closed cache client", stage=Stage.CACHE_CONNECT)
            return False
        if self.is_connected():
            return True
        await self._dispose_retired()
        await self.initialize()
        return self.is_connected()

    async def close(self) -> None:
        """
        Tear down the backend connection and clear the fallback store.

        STAGE-CACHE.5: Shutdown. The client cannot be used afterwards.
        """
        async with self._lifecycle_lock:
            if self._closed:
                return
            state = self._state
            self._closed = True
            self._state = BackendState.memory()
            if state.handle is not None:
                self._retired.append(state.handle)
            await self._dispose_retired()
            self._memory.clear()
            logger.info("Cache client closed", stage=Stage.CACHE_CLOSE, previous_mode=state.mode.value)

    def is_connected(self) -> bool:
        """
        True while a networked backend is authoritative.

        The backend reports ready through the successful connect handshake,
        and every transport failure or timeout after that moves the client
        to memory at once, so a networked mode means the last exchange with
        Redis succeeded.
        """
        return not self._closed and self._state.mode is not ConnectionMode.MEMORY

    def get_mode(self) -> ConnectionMode:
        return self._state.mode

    def health(self) -> dict[str, Any]:
        return {
            "mode": self._state.mode.value,
            "connected": self.is_connected(),
            "fallback_enabled": self._config.fallback_to_memory,
            "fallback_entries": len(self._memory),
            "closed": self._closed,
        }

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise CacheClientClosedError("Cache client has been closed")

    def _transition(self, new_state: BackendState, reason: str) -> None:
        old_state = self._state
        self._state = new_state
        self._metrics.set_cache_mode(new_state.mode)
        if old_state.mode is new_state.mode and old_state.handle is new_state.handle:
            return
        self._metrics.record_mode_transition(old_state.mode, new_state.mode)
        degraded = new_state.mode is ConnectionMode.MEMORY and reason != "not_configured"
        (logger.warning if degraded else logger.info)(
            "Cache mode changed",
            stage=Stage.CACHE_CONNECT,
            from_mode=old_state.mode.value,
            to_mode=new_state.mode.value,
            reason=reason,
        )

    def _transport_failed(self, state: BackendState, error: BaseException) -> None:
        # Only the first failing caller for this handle performs the switch.
        if self._state is not state or not self._config.fallback_to_memory:
            return
        logger.warning(
            "Redis unreachable, switching to in-memory cache",
            stage=Stage.CACHE_FALLBACK,
            mode=state.mode.value,
            error_type=type(error).__name__,
            error=str(error),
        )
        self._retired.append(state.handle)
        self._transition(BackendState.memory(), reason="transport_failure")

    async def _dispose_retired(self) -> None:
        while self._retired:
            handle = self._retired.pop()
            try:
                await asyncio.wait_for(handle.aclose(), timeout=self._config.connection_timeout)
            except (*BACKEND_ERRORS, RuntimeError) as e:
                logger.debug("Error closing Redis handle", stage=Stage.CACHE_CLOSE, error=str(e))

    def _from_memory(self, name: str, fallback: Callable[[], T]) -> T:
        if not self._config.fallback_to_memory:
            raise CacheConnectionError(
                "No cache backend available and memory fallback is disabled",
                details={"operation": name},
            ).with_suggestion("Set REDIS_URL or REDIS_CLUSTER_URLS, or call reconnect()")
        self._metrics.record_cache_operation(name, ConnectionMode.MEMORY.value)
        return fallback()

    async def execute_with_fallback(
        self,
        name: str,
        operation: Callable[[BackendState], Awaitable[T]],
        fallback: Callable[[], T],
    ) -> T:
        """
        Run ``operation`` against the backend, or ``fallback`` against memory.

        Args:
            name: Operation name for logs and metrics
            operation: Receives the state snapshot the call runs against
            fallback: Synchronous equivalent on the memory store
        """
        self._ensure_open()
        state = self._state

        if state.mode is ConnectionMode.MEMORY:
            return self._from_memory(name, fallback)

        try:
            result = await asyncio.wait_for(operation(state), timeout=self._config.command_timeout)
        except BACKEND_ERRORS as e:
            if not self._config.fallback_to_memory:
                raise
            logger.warning(
                "Redis operation failed, using in-memory fallback",
                stage=Stage.CACHE_FALLBACK,
                operation=name,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._metrics.record_cache_fallback(name)
            if isinstance(e, TRANSPORT_ERRORS):
                self._transport_failed(state, e)
            return fallback()

        self._metrics.record_cache_operation(name, state.mode.value)
        return result

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        return await self.execute_with_fallback(
            "get",
            lambda s: s.handle.get(key),
            lambda: self._memory.get(key),
        )

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        async def _set(state: BackendState) -> None:
            if ttl:
                await state.handle.set(key, value, ex=ttl)
            else:
                await state.handle.set(key, value)

        await self.execute_with_fallback("set", _set, lambda: self._memory.set(key, value, ttl))

    async def delete(self, key: str) -> None:
        async def _delete(state: BackendState) -> None:
            await state.handle.delete(key)

        await self.execute_with_fallback("del", _delete, lambda: self._memory.delete(key))

    async def mget(self, keys: list[str]) -> list[str | None]:
        """One result per key, order and duplicates preserved."""
        if not keys:
            return []

        async def _mget(state: BackendState) -> list[str | None]:
            if state.mode is ConnectionMode.CLUSTER:
                # Keys may span hash slots
                return list(await state.handle.mget_nonatomic(keys))
            return list(await state.handle.mget(keys))

        return await self.execute_with_fallback("mget", _mget, lambda: self._memory.mget(keys))

    async def keys(self, pattern: str) -> list[str]:
        async def _keys(state: BackendState) -> list[str]:
            if state.mode is ConnectionMode.CLUSTER:
                result = await state.handle.keys(pattern, target_nodes=RedisCluster.PRIMARIES)
            else:
                result = await state.handle.keys(pattern)
            if isinstance(result, dict):
                return [key for node_keys in result.values() for key in node_keys]
            return list(result)

        return await self.execute_with_fallback("keys", _keys, lambda: self._memory.keys(pattern))

    async def ping(self) -> str:
        async def _ping(state: BackendState) -> str:
            return "PONG" if await state.handle.ping() else "ERROR"

        return await self.execute_with_fallback("ping", _ping, lambda: "PONG")

    async def ttl(self, key: str) -> int:
        return await self.execute_with_fallback(
            "ttl",
            lambda s: s.handle.ttl(key),
            lambda: self._memory.ttl(key),
        )

    async def setex(self, key: str, seconds: int, value: str) -> str:
        await self.set(key, value, seconds)
        return "OK"

    async def incr(self, key: str) -> int:
        return await self.execute_with_fallback(
            "incr",
            lambda s: s.handle.incr(key),
            lambda: self._memory.incr(key),
        )

    async def expire(self, key: str, seconds: int) -> int:
        async def _expire(state: BackendState) -> int:
            return 1 if await state.handle.expire(key, seconds) else 0

        return await self.execute_with_fallback(
            "expire", _expire, lambda: self._memory.expire(key, seconds)
        )

    async def exists(self, key: str) -> int:
        async def _exists(state: BackendState) -> int:
            return 1 if await state.handle.exists(key) else 0

        return await self.execute_with_fallback("exists", _exists, lambda: self._memory.exists(key))


async def verify_connection(client: ResilientCacheClient) -> bool:
    """True when the client answers PING (live or from memory)."""
    try:
        return await client.ping() == "PONG"
    except BACKEND_ERRORS + (CacheConnectionError, CacheClientClosedError):
        return False

