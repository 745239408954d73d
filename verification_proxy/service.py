import logging
import time
from typing import Callable, Iterable, List, Optional

from verification_proxy.clients import ProviderClient
from verification_proxy.engine import AggregationEngine, AllowanceRequest, ApprovalRequest, DecisionRequest
from verification_proxy.errors import RegistryAlreadyInitialized
from verification_proxy.identifiers import ProviderId
from verification_proxy.metrics import (
    VERIFICATION_QUERIES_TOTAL,
    VERIFICATION_QUERY_LATENCY_SECONDS,
    VERIFICATION_REGISTRY_MUTATIONS_TOTAL,
)
from verification_proxy.registry import ProviderRegistry, RegistryEntry, get_flavor, registry_namespace
from verification_proxy.store import KeyValueStore, transaction

logger = logging.getLogger(__name__)

StoreFactory = Callable[[str], KeyValueStore]


class VerificationProxy:
    """Administrative and query operations over every registry instance.

    Each call is one invocation: it opens the registry inside a fresh
    transaction, and its writes are kept only if it completes.
    """

    def __init__(self, store_factory: StoreFactory, client: ProviderClient, key_prefix: str = "verification_proxy"):
        self.store_factory = store_factory
        self.client = client
        self.key_prefix = key_prefix

    def _store(self, flavor_name: str, name: str) -> KeyValueStore:
        flavor = get_flavor(flavor_name)
        return self.store_factory(registry_namespace(self.key_prefix, flavor, name))

    async def init(self, flavor_name: str, name: str, initial_providers: Optional[Iterable[str]] = None) -> int:
        store = self._store(flavor_name, name)
        async with transaction(store, exclusive=True) as tx:
            registry = await ProviderRegistry.init(tx, initial_providers)
        return registry.len

    async def add_provider(self, flavor_name: str, name: str, provider: str) -> bool:
        return await self._mutate(flavor_name, name, "add", provider)

    async def ban_provider(self, flavor_name: str, name: str, provider: str) -> bool:
        return await self._mutate(flavor_name, name, "ban", provider)

    async def unban_provider(self, flavor_name: str, name: str, provider: str) -> bool:
        return await self._mutate(flavor_name, name, "unban", provider)

    async def list_providers(self, flavor_name: str, name: str) -> List[RegistryEntry]:
        store = self._store(flavor_name, name)
        async with transaction(store) as tx:
            registry = await ProviderRegistry.open(tx)
            return await registry.entries()

    async def is_approved(self, flavor_name: str, name: str, account: str, index: Optional[int] = None) -> bool:
        return await self._query(flavor_name, name, ApprovalRequest(account=account, index=index))

    async def is_allowed(self, flavor_name: str, name: str, account: str, index: Optional[int], amount: int) -> bool:
        return await self._query(flavor_name, name, AllowanceRequest(account=account, index=index, amount=amount))

    async def bootstrap(self, registries: Iterable[str], initial_providers: Iterable[str]) -> None:
        """Initialize each `flavor:name` instance that has no state yet."""
        initial = list(initial_providers)
        for entry in registries:
            flavor_name, _, name = entry.partition(":")
            name = name or "default"
            try:
                length = await self.init(flavor_name, name, initial)
            except RegistryAlreadyInitialized:
                logger.info("Registry already initialized; leaving state untouched.", extra={"registry": entry})
                continue
            logger.info("Registry bootstrapped.", extra={"registry": entry, "len": length})

    async def _mutate(self, flavor_name: str, name: str, operation: str, provider: str) -> bool:
        provider_id = ProviderId.from_reference(provider)
        store = self._store(flavor_name, name)
        async with transaction(store, exclusive=True) as tx:
            registry = await ProviderRegistry.open(tx)
            applied = await getattr(registry, operation)(provider_id)

        VERIFICATION_REGISTRY_MUTATIONS_TOTAL.labels(
            flavor=flavor_name, operation=operation, applied=str(applied).lower()
        ).inc()
        logger.info(
            "Registry %s %s.", operation, "applied" if applied else "had no effect",
            extra={"registry": store.namespace, "provider": str(provider_id), "len": registry.len},
        )
        return applied

    async def _query(self, flavor_name: str, name: str, request: DecisionRequest) -> bool:
        flavor = get_flavor(flavor_name)
        store = self._store(flavor_name, name)
        start_time = time.perf_counter()
        outcome = "error"
        try:
            async with transaction(store) as tx:
                registry = await ProviderRegistry.open(tx)
                engine = AggregationEngine(registry, self.client, flavor)
                result = await engine.query(request)
            outcome = "approved" if result else "denied"
            return result
        finally:
            VERIFICATION_QUERIES_TOTAL.labels(flavor=flavor.name, decision=request.decision, outcome=outcome).inc()
            VERIFICATION_QUERY_LATENCY_SECONDS.labels(flavor=flavor.name).observe(time.perf_counter() - start_time)
            logger.info(
                "Aggregation query processed.",
                extra={"registry": store.namespace, "account": request.account, "decision": request.decision, "outcome": outcome},
            )
