import os
import sys
from typing import Dict, List, Optional, Set

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from verification_proxy.clients import DecisionResult, DecisionStatus, ProviderClient
from verification_proxy.identifiers import ProviderId
from verification_proxy.service import VerificationProxy
from verification_proxy.store import MemoryBackend, MemoryStore

ACCOUNT_A = "account-hash-" + "aa" * 32
ACCOUNT_B = "account-hash-" + "bb" * 32


def provider_ref(n: int) -> str:
    """Deterministic `hash-<hex>` reference for test provider number `n`."""
    return "hash-" + f"{n:02x}" * 32


def provider_id(n: int) -> ProviderId:
    return ProviderId.from_reference(provider_ref(n))


class FakeProviderClient(ProviderClient):
    """In-process stand-in for deployed providers; records every call in order."""

    def __init__(self):
        self.approvals: Dict[ProviderId, Set[str]] = {}
        self.limits: Dict[ProviderId, int] = {}
        self.failing: Set[ProviderId] = set()
        self.calls: List[tuple] = []

    def approve(self, provider: ProviderId, account: str, limit: Optional[int] = None) -> None:
        self.approvals.setdefault(provider, set()).add(account)
        if limit is not None:
            self.limits[provider] = limit

    def fail(self, provider: ProviderId) -> None:
        self.failing.add(provider)

    @property
    def called_providers(self) -> List[ProviderId]:
        return [call[0] for call in self.calls]

    async def is_approved(self, provider, entrypoint, account, index):
        self.calls.append((provider, entrypoint, account, index, None))
        return self._decide(provider, account, None)

    async def is_allowed(self, provider, entrypoint, account, index, amount):
        self.calls.append((provider, entrypoint, account, index, amount))
        return self._decide(provider, account, amount)

    def _decide(self, provider, account, amount) -> DecisionResult:
        if provider in self.failing:
            return DecisionResult(DecisionStatus.FAILED, {"error": "provider reverted"})
        approved = account in self.approvals.get(provider, set())
        if amount is not None:
            approved = approved and amount <= self.limits.get(provider, 0)
        return DecisionResult(DecisionStatus.APPROVED if approved else DecisionStatus.DENIED)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore("test:default:kyc_providers")


@pytest.fixture
def fake_client() -> FakeProviderClient:
    return FakeProviderClient()


@pytest.fixture
def memory_backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def proxy(memory_backend, fake_client) -> VerificationProxy:
    return VerificationProxy(memory_backend, fake_client, key_prefix="test")
