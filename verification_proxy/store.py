import asyncio
import json
import logging
from contextlib import asynccontextmanager, nullcontext
from typing import Any, AsyncContextManager, AsyncIterator, Dict, Optional

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Flat key/value namespace owned by one registry instance.

    Values are JSON scalars: unsigned ints for the counter, strings for
    slot entries and booleans for membership flags.
    """

    namespace: str

    async def get(self, key: str) -> Optional[Any]:  # pragma: no cover - interface
        raise NotImplementedError

    async def put(self, key: str, value: Any) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def write_many(self, values: Dict[str, Any]) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def lock(self) -> AsyncContextManager:  # pragma: no cover - interface
        """Guard held across a whole read-modify-write invocation on this namespace."""
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    def __init__(self, namespace: str = "memory"):
        self.namespace = namespace
        self.data: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    async def put(self, key: str, value: Any) -> None:
        self.data[key] = value

    async def write_many(self, values: Dict[str, Any]) -> None:
        self.data.update(values)

    def lock(self) -> asyncio.Lock:
        return self._lock


class MemoryBackend:
    """Hands out one MemoryStore per namespace and keeps them for the process lifetime."""

    def __init__(self):
        self._stores: Dict[str, MemoryStore] = {}

    def __call__(self, namespace: str) -> MemoryStore:
        store = self._stores.get(namespace)
        if store is None:
            store = self._stores[namespace] = MemoryStore(namespace)
        return store


class RedisStore(KeyValueStore):
    """One Redis hash per registry instance, JSON-encoded field values."""

    def __init__(self, redis_client: Redis, namespace: str, lock_timeout: float = 10.0):
        self.redis = redis_client
        self.namespace = namespace
        self.lock_timeout = lock_timeout

    async def get(self, key: str) -> Optional[Any]:
        raw = await self.redis.hget(self.namespace, key)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            # Surface the raw text; the registry reports it as a corrupted entry
            return raw

    async def put(self, key: str, value: Any) -> None:
        await self.redis.hset(self.namespace, key, json.dumps(value))

    async def write_many(self, values: Dict[str, Any]) -> None:
        if not values:
            return
        mapping = {key: json.dumps(value) for key, value in values.items()}
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(self.namespace, mapping=mapping)
            await pipe.execute()

    def lock(self):
        # Expires on its own if the holder dies mid-invocation
        return self.redis.lock(f"{self.namespace}:lock", timeout=self.lock_timeout)


class Transaction(KeyValueStore):
    """Stages writes over a backing store until `commit`.

    Reads see staged values first so an invocation observes its own writes.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.namespace = store.namespace
        self.writes: Dict[str, Any] = {}

    async def get(self, key: str) -> Optional[Any]:
        if key in self.writes:
            return self.writes[key]
        return await self.store.get(key)

    async def put(self, key: str, value: Any) -> None:
        self.writes[key] = value

    async def write_many(self, values: Dict[str, Any]) -> None:
        self.writes.update(values)

    async def commit(self) -> None:
        await self.store.write_many(self.writes)
        self.writes = {}


@asynccontextmanager
async def transaction(store: KeyValueStore, exclusive: bool = False) -> AsyncIterator[Transaction]:
    """Run one invocation against `store`; staged writes land only on a clean exit.

    With `exclusive`, the store's lock is held from the first read through the
    commit, so concurrent mutations of one namespace run one after another.
    """
    async with store.lock() if exclusive else nullcontext():
        tx = Transaction(store)
        try:
            yield tx
        except BaseException:
            if tx.writes:
                logger.debug(
                    "Discarding staged writes after aborted invocation.",
                    extra={"registry": store.namespace, "staged_keys": sorted(tx.writes)},
                )
            raise
        await tx.commit()
