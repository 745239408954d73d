"""OR-aggregation of provider decisions over a registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from verification_proxy.clients import DecisionResult, DecisionStatus, ProviderClient
from verification_proxy.errors import ProviderInvocationFailure, StorageCorruption, UnsupportedDecision
from verification_proxy.identifiers import ProviderId, validate_amount, validate_disambiguator
from verification_proxy.metrics import VERIFICATION_PROVIDER_CALLS_TOTAL
from verification_proxy.registry import ProviderRegistry, RegistryFlavor

logger = logging.getLogger(__name__)


class DecisionRequest:
    """Payload forwarded to every consulted provider."""

    decision: str
    account: str
    index: Optional[int]

    def entrypoint(self, flavor: RegistryFlavor) -> str:  # pragma: no cover - interface
        raise NotImplementedError

    async def ask(self, client: ProviderClient, provider: ProviderId, entrypoint: str) -> DecisionResult:  # pragma: no cover - interface
        raise NotImplementedError


@dataclass(frozen=True)
class ApprovalRequest(DecisionRequest):
    account: str
    index: Optional[int] = None

    decision = "is_approved"

    def __post_init__(self):
        validate_disambiguator(self.index)

    def entrypoint(self, flavor):
        return flavor.approval_entrypoint

    async def ask(self, client, provider, entrypoint):
        return await client.is_approved(provider, entrypoint, self.account, self.index)


@dataclass(frozen=True)
class AllowanceRequest(DecisionRequest):
    account: str
    index: Optional[int]
    amount: int

    decision = "is_allowed"

    def __post_init__(self):
        validate_disambiguator(self.index)
        validate_amount(self.amount)

    def entrypoint(self, flavor):
        if flavor.allowance_entrypoint is None:
            raise UnsupportedDecision(flavor.name, self.decision)
        return flavor.allowance_entrypoint

    async def ask(self, client, provider, entrypoint):
        return await client.is_allowed(provider, entrypoint, self.account, self.index, self.amount)


RequestT = TypeVar("RequestT", bound=DecisionRequest)


class AggregationEngine(Generic[RequestT]):
    """Consults active providers in slot order; the first approval wins.

    Provider calls are issued one at a time. A failed call is raised as
    :class:`ProviderInvocationFailure` and aborts the whole query.
    """

    def __init__(self, registry: ProviderRegistry, client: ProviderClient, flavor: RegistryFlavor):
        self.registry = registry
        self.client = client
        self.flavor = flavor

    async def query(self, request: RequestT) -> bool:
        entrypoint = request.entrypoint(self.flavor)

        # Walks 0..=len, one slot past the last assigned index; that probe always misses.
        for provider_index in range(self.registry.len + 1):
            provider = await self.registry.provider_at(provider_index)
            if provider is None:
                continue

            active = await self.registry.is_active(provider)
            if active is None:
                raise StorageCorruption(str(provider), "registered provider has no active flag")
            if not active:
                logger.debug(
                    "Skipping banned provider.",
                    extra={"registry": self.registry.name, "provider": str(provider)},
                )
                continue

            result = await request.ask(self.client, provider, entrypoint)
            VERIFICATION_PROVIDER_CALLS_TOTAL.labels(flavor=self.flavor.name, outcome=result.status.value).inc()

            if result.status is DecisionStatus.FAILED:
                logger.error(
                    "Provider decision call failed; aborting query.",
                    extra={"registry": self.registry.name, "provider": str(provider), "entrypoint": entrypoint, "details": result.details},
                )
                raise ProviderInvocationFailure(provider, entrypoint, result.details)

            if result.status is DecisionStatus.APPROVED:
                logger.info(
                    "Provider approved account.",
                    extra={"registry": self.registry.name, "provider": str(provider), "account": request.account, "slot": provider_index},
                )
                return True

        return False
