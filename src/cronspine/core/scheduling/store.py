"""Store clients - the only coordination point between replicas.

Manifesto:
    Replicas never talk to each other; they only talk to the store.  So the
    store client has exactly one correctness-critical job: make
    "claim this instant if nobody has, and push its job" a single atomic
    step.  Everything else (discovery, failover, retries) is plumbing that
    callers must never see as a distinct state.  They see success, a
    ``TransientStoreError`` (try again next tick) or a
    ``PermanentStoreError`` (stop the process).

Architecture:
    ::

        StoreClient (Protocol)
        ├── InMemoryStore  — single process (tests, dry runs, dev)
        └── RedisStore     — shared Redis, direct URL or Sentinel

        claim_and_push (RedisStore) is ONE Lua script, atomic on the server:

            SET   {ns}:claim:{schedule}:{epoch}  <replica>  NX EX ttl
            RPUSH {ns}:queue:{queue}             <payload>     (only if SET won)
            SADD  {ns}:queues                    {queue}

Failover:
    ``RedisStore.from_sentinel`` builds its client with
    ``Sentinel.master_for``; the connection pool asks the sentinels for the
    current primary on every (re)connect, and redis-py's ``Retry`` with
    exponential backoff re-runs commands that failed on a connection error.
    A Lua script that timed out after executing may be re-run by that retry;
    the second run finds the claim and pushes nothing, so the guarantee
    holds (the caller just sees ``ALREADY_CLAIMED``).

Guardrails:
    ❌ DON'T: Implement claim-and-push as GET then SET then RPUSH from Python
    ✅ DO: Keep the conditional write and the push in one server-side script

    ❌ DON'T: Use the replica's local clock for window math
    ✅ DO: Use ``store.now()`` (Redis ``TIME``)

Tags:
    cron-spine, store, redis, sentinel, lua, atomic, failover

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol, runtime_checkable

import redis
from redis.backoff import ExponentialBackoff
from redis.exceptions import (
    AuthenticationError,
    AuthorizationError,
    BusyLoadingError,
    NoPermissionError,
    ReadOnlyError,
    RedisError,
    ResponseError,
    TryAgainError,
)
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.retry import Retry
from redis.sentinel import Sentinel

from cronspine.core.errors import PermanentStoreError, TransientStoreError
from cronspine.core.logging import get_logger
from cronspine.core.settings import CronSpineSettings, StoreBackend

logger = get_logger(__name__)

Clock = Callable[[], datetime]

# KEYS[1] claim key, KEYS[2] queue list, KEYS[3] queue registry set
# ARGV[1] claim value, ARGV[2] ttl seconds, ARGV[3] payload, ARGV[4] queue name
CLAIM_AND_PUSH_LUA = """
if redis.call('SET', KEYS[1], ARGV[1], 'NX', 'EX', ARGV[2]) then
    redis.call('RPUSH', KEYS[2], ARGV[3])
    redis.call('SADD', KEYS[3], ARGV[4])
    return 1
end
return 0
"""

# KEYS[1] key; ARGV[1] value, ARGV[2] ttl seconds (0 = no expiry)
SET_IF_ABSENT_LUA = """
local current = redis.call('GET', KEYS[1])
if current then
    return current
end
if tonumber(ARGV[2]) > 0 then
    redis.call('SET', KEYS[1], ARGV[1], 'EX', ARGV[2])
else
    redis.call('SET', KEYS[1], ARGV[1])
end
return ARGV[1]
"""

# Server replies that mean "ask again shortly", not "you are misconfigured".
_TRANSIENT_REPLY_PREFIXES = ("LOADING", "MASTERDOWN", "TRYAGAIN", "READONLY", "BUSY")


@runtime_checkable
class StoreClient(Protocol):
    """Contract every store backend implements.

    Methods raise only ``TransientStoreError`` or ``PermanentStoreError``.
    """

    namespace: str

    def claim_and_push(
        self,
        claim_key: str,
        queue: str,
        payload: str,
        *,
        ttl_seconds: int,
        claim_value: str = "1",
    ) -> bool:
        """Atomically claim ``claim_key`` and push ``payload`` onto ``queue``.

        Returns:
            True if this call created the claim and pushed, False if the
            claim already existed (nothing pushed)
        """
        ...

    def set_if_absent(self, key: str, value: str, *, ttl_seconds: int | None = None) -> str:
        """Store ``value`` unless ``key`` exists; return whatever is stored."""
        ...

    def now(self) -> datetime:
        """Current time according to the store (aware, UTC)."""
        ...

    def claim_exists(self, claim_key: str) -> bool: ...

    def queue_length(self, queue: str) -> int: ...

    def peek_queue(self, queue: str, count: int = 10) -> list[str]:
        """Oldest ``count`` payloads on ``queue`` without removing them."""
        ...

    def ping(self) -> bool: ...

    def close(self) -> None: ...


def queue_key(namespace: str, queue: str) -> str:
    return f"{namespace}:queue:{queue}"


def queues_key(namespace: str) -> str:
    return f"{namespace}:queues"


def epoch_key(namespace: str, schedule_name: str) -> str:
    return f"{namespace}:epoch:{schedule_name}"


# ------------------------------------------------------------------ #
# In-Memory Store
# ------------------------------------------------------------------ #


class InMemoryStore:
    """Process-local store with the same atomicity contract as Redis.

    One lock guards every operation, so concurrent ``claim_and_push`` calls
    from many threads behave like concurrent scripts on one Redis server.

    Args:
        namespace: Key prefix (kept for parity with RedisStore)
        clock: Source of ``now()`` and of claim expiry; defaults to UTC wall clock
    """

    name = "memory"

    def __init__(self, *, namespace: str = "cronspine", clock: Clock | None = None) -> None:
        self.namespace = namespace
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()
        self._values: dict[str, tuple[str, datetime | None]] = {}
        self._queues: dict[str, deque[str]] = {}
        self._known_queues: set[str] = set()

    def _live(self, key: str, now: datetime) -> str | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and now >= expires_at:
            del self._values[key]
            return None
        return value

    def claim_and_push(
        self,
        claim_key: str,
        queue: str,
        payload: str,
        *,
        ttl_seconds: int,
        claim_value: str = "1",
    ) -> bool:
        with self._lock:
            now = self._clock()
            if self._live(claim_key, now) is not None:
                return False
            self._values[claim_key] = (claim_value, now + timedelta(seconds=ttl_seconds))
            self._queues.setdefault(queue, deque()).append(payload)
            self._known_queues.add(queue)
            return True

    def set_if_absent(self, key: str, value: str, *, ttl_seconds: int | None = None) -> str:
        with self._lock:
            now = self._clock()
            current = self._live(key, now)
            if current is not None:
                return current
            expires_at = now + timedelta(seconds=ttl_seconds) if ttl_seconds else None
            self._values[key] = (value, expires_at)
            return value

    def now(self) -> datetime:
        return self._clock()

    def claim_exists(self, claim_key: str) -> bool:
        with self._lock:
            return self._live(claim_key, self._clock()) is not None

    def queue_length(self, queue: str) -> int:
        with self._lock:
            return len(self._queues.get(queue, ()))

    def peek_queue(self, queue: str, count: int = 10) -> list[str]:
        with self._lock:
            return list(self._queues.get(queue, ()))[:count]

    def queues(self) -> set[str]:
        with self._lock:
            return set(self._known_queues)

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass


# ------------------------------------------------------------------ #
# Redis Store
# ------------------------------------------------------------------ #


def build_retry(attempts: int, backoff_base: float, backoff_cap: float) -> Retry:
    """Exponential-backoff retry policy for redis-py clients."""
    return Retry(ExponentialBackoff(cap=backoff_cap, base=backoff_base), attempts)


class RedisStore:
    """Redis-backed store shared by every replica.

    Build with :meth:`from_url` or :meth:`from_sentinel`; the constructor
    takes an already-configured ``redis.Redis`` client (tests pass a mock).

    Example:
        store = RedisStore.from_sentinel(
            [("sentinel-a", 26379), ("sentinel-b", 26379)],
            service_name="mymaster",
        )
        store.claim_and_push("cronspine:claim:nightly:1767225600", "reports",
                             payload, ttl_seconds=7200)
    """

    name = "redis"

    def __init__(
        self,
        client: redis.Redis,
        *,
        namespace: str = "cronspine",
        endpoint: str = "redis",
    ) -> None:
        self.namespace = namespace
        self.endpoint = endpoint
        self._client = client
        self._claim_and_push = client.register_script(CLAIM_AND_PUSH_LUA)
        self._set_if_absent = client.register_script(SET_IF_ABSENT_LUA)

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        namespace: str = "cronspine",
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        retry_attempts: int = 3,
        retry_backoff_base: float = 0.1,
        retry_backoff_cap: float = 2.0,
    ) -> RedisStore:
        """Connect to a single Redis endpoint."""
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
            retry=build_retry(retry_attempts, retry_backoff_base, retry_backoff_cap),
            retry_on_error=[BusyLoadingError, RedisConnectionError, RedisTimeoutError],
            health_check_interval=30,
        )
        return cls(client, namespace=namespace, endpoint=_redact(url))

    @classmethod
    def from_sentinel(
        cls,
        sentinels: list[tuple[str, int]],
        service_name: str,
        *,
        namespace: str = "cronspine",
        password: str | None = None,
        db: int = 0,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        retry_attempts: int = 3,
        retry_backoff_base: float = 0.1,
        retry_backoff_cap: float = 2.0,
    ) -> RedisStore:
        """Discover the primary through Redis Sentinel.

        The returned client follows failovers: after the sentinels promote a
        new primary, the next reconnect lands on it.
        """
        sentinel = Sentinel(
            sentinels,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
            sentinel_kwargs={"socket_timeout": socket_timeout},
        )
        client = sentinel.master_for(
            service_name,
            password=password,
            db=db,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
            retry=build_retry(retry_attempts, retry_backoff_base, retry_backoff_cap),
            retry_on_error=[BusyLoadingError, RedisConnectionError, RedisTimeoutError],
        )
        endpoint = f"sentinel://{','.join(f'{h}:{p}' for h, p in sentinels)}/{service_name}"
        return cls(client, namespace=namespace, endpoint=endpoint)

    @contextmanager
    def _translated(self, operation: str) -> Iterator[None]:
        """Map redis-py exceptions onto transient/permanent store errors."""
        try:
            yield
        except (AuthenticationError, AuthorizationError, NoPermissionError) as e:
            raise PermanentStoreError(
                f"Store rejected credentials during {operation}: {e}", cause=e
            ).with_context(endpoint=self.endpoint, operation=operation) from e
        except (RedisConnectionError, RedisTimeoutError, ReadOnlyError, TryAgainError) as e:
            raise TransientStoreError(
                f"Store unavailable during {operation}: {e}", cause=e
            ).with_context(endpoint=self.endpoint, operation=operation) from e
        except ResponseError as e:
            if str(e).upper().startswith(_TRANSIENT_REPLY_PREFIXES):
                raise TransientStoreError(
                    f"Store busy during {operation}: {e}", cause=e
                ).with_context(endpoint=self.endpoint, operation=operation) from e
            raise PermanentStoreError(
                f"Store refused {operation}: {e}", cause=e
            ).with_context(endpoint=self.endpoint, operation=operation) from e
        except RedisError as e:
            raise PermanentStoreError(
                f"Unexpected store error during {operation}: {e}", cause=e
            ).with_context(endpoint=self.endpoint, operation=operation) from e

    def claim_and_push(
        self,
        claim_key: str,
        queue: str,
        payload: str,
        *,
        ttl_seconds: int,
        claim_value: str = "1",
    ) -> bool:
        with self._translated("claim_and_push"):
            result = self._claim_and_push(
                keys=[claim_key, queue_key(self.namespace, queue), queues_key(self.namespace)],
                args=[claim_value, int(ttl_seconds), payload, queue],
            )
        return int(result) == 1

    def set_if_absent(self, key: str, value: str, *, ttl_seconds: int | None = None) -> str:
        with self._translated("set_if_absent"):
            return self._set_if_absent(keys=[key], args=[value, int(ttl_seconds or 0)])

    def now(self) -> datetime:
        with self._translated("time"):
            seconds, microseconds = self._client.time()
        return datetime.fromtimestamp(int(seconds), tz=UTC).replace(microsecond=int(microseconds))

    def claim_exists(self, claim_key: str) -> bool:
        with self._translated("exists"):
            return bool(self._client.exists(claim_key))

    def queue_length(self, queue: str) -> int:
        with self._translated("llen"):
            return int(self._client.llen(queue_key(self.namespace, queue)))

    def peek_queue(self, queue: str, count: int = 10) -> list[str]:
        if count <= 0:
            return []
        with self._translated("lrange"):
            return list(self._client.lrange(queue_key(self.namespace, queue), 0, count - 1))

    def queues(self) -> set[str]:
        with self._translated("smembers"):
            return set(self._client.smembers(queues_key(self.namespace)))

    def ping(self) -> bool:
        with self._translated("ping"):
            return bool(self._client.ping())

    def close(self) -> None:
        self._client.close()


def _redact(url: str) -> str:
    """Drop the password from a redis URL for logs."""
    scheme, sep, rest = url.partition("://")
    if not sep or "@" not in rest:
        return url
    credentials, _, host = rest.rpartition("@")
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user + ':***@' if user else '***@'}{host}"


def create_store(settings: CronSpineSettings, *, clock: Clock | None = None) -> Any:
    """Build the store client selected by ``settings.store_backend``."""
    common = {
        "namespace": settings.namespace,
        "socket_timeout": settings.socket_timeout,
        "socket_connect_timeout": settings.socket_connect_timeout,
        "retry_attempts": settings.retry_attempts,
        "retry_backoff_base": settings.retry_backoff_base,
        "retry_backoff_cap": settings.retry_backoff_cap,
    }

    if settings.store_backend is StoreBackend.MEMORY:
        logger.warning("store.memory_backend", detail="claims are not shared between processes")
        return InMemoryStore(namespace=settings.namespace, clock=clock)

    if settings.store_backend is StoreBackend.SENTINEL:
        store = RedisStore.from_sentinel(
            settings.sentinel_addresses,
            settings.sentinel_service,
            password=settings.redis_password,
            db=settings.redis_db,
            **common,
        )
    else:
        store = RedisStore.from_url(settings.redis_url, **common)

    logger.info("store.configured", backend=settings.store_backend.value, endpoint=store.endpoint)
    return store


__all__ = [
    "StoreClient",
    "InMemoryStore",
    "RedisStore",
    "CLAIM_AND_PUSH_LUA",
    "SET_IF_ABSENT_LUA",
    "build_retry",
    "create_store",
    "queue_key",
    "queues_key",
    "epoch_key",
]
