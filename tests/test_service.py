import asyncio

import pytest

from conftest import ACCOUNT_A, provider_id, provider_ref
from verification_proxy.errors import (
    InvalidProviderReference,
    ProviderInvocationFailure,
    RegistryAlreadyInitialized,
    RegistryNotInitialized,
    UnknownRegistry,
    UnsupportedDecision,
)
from verification_proxy.service import VerificationProxy
from verification_proxy.store import MemoryStore

KYC_NAMESPACE = "test:default:kyc_providers"


class SlowMemoryStore(MemoryStore):
    """Gives the event loop a turn on every read, like a network round trip."""

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)


@pytest.fixture
def slow_stores():
    return {}


@pytest.fixture
def slow_proxy(slow_stores, fake_client):
    def factory(namespace):
        return slow_stores.setdefault(namespace, SlowMemoryStore(namespace))

    return VerificationProxy(factory, fake_client, key_prefix="test")


@pytest.mark.asyncio
async def test_no_providers(proxy):
    await proxy.init("kyc", "default", None)

    assert await proxy.is_approved("kyc", "default", ACCOUNT_A) is False


@pytest.mark.asyncio
async def test_ban_query_unban_query(proxy, fake_client):
    fake_client.approve(provider_id(1), ACCOUNT_A)
    await proxy.init("kyc", "default", None)
    await proxy.add_provider("kyc", "default", provider_ref(1))

    assert await proxy.is_approved("kyc", "default", ACCOUNT_A) is True
    assert await proxy.ban_provider("kyc", "default", provider_ref(1)) is True
    assert await proxy.is_approved("kyc", "default", ACCOUNT_A) is False
    assert await proxy.unban_provider("kyc", "default", provider_ref(1)) is True
    assert await proxy.is_approved("kyc", "default", ACCOUNT_A) is True


@pytest.mark.asyncio
async def test_add_invalid_reference_leaves_len_unchanged(proxy, memory_backend):
    await proxy.init("kyc", "default", [provider_ref(1)])

    with pytest.raises(InvalidProviderReference):
        await proxy.add_provider("kyc", "default", "account-hash-" + "01" * 32)

    assert memory_backend(KYC_NAMESPACE).data["len"] == 1


@pytest.mark.asyncio
async def test_repeated_add_and_add_after_ban_have_no_effect(proxy, memory_backend):
    await proxy.init("kyc", "default", None)

    assert await proxy.add_provider("kyc", "default", provider_ref(1)) is True
    assert await proxy.add_provider("kyc", "default", provider_ref(1)) is False
    await proxy.ban_provider("kyc", "default", provider_ref(1))
    assert await proxy.add_provider("kyc", "default", provider_ref(1)) is False

    entries = await proxy.list_providers("kyc", "default")
    assert [(e.index, e.provider, e.active) for e in entries] == [(0, provider_id(1), False)]
    assert memory_backend(KYC_NAMESPACE).data["len"] == 1


@pytest.mark.asyncio
async def test_failed_provider_aborts_query(proxy, fake_client):
    fake_client.fail(provider_id(1))
    await proxy.init("kyc", "default", [provider_ref(1)])

    with pytest.raises(ProviderInvocationFailure):
        await proxy.is_approved("kyc", "default", ACCOUNT_A)


@pytest.mark.asyncio
async def test_init_twice_leaves_state_untouched(proxy, memory_backend):
    await proxy.init("kyc", "default", [provider_ref(1)])
    before = dict(memory_backend(KYC_NAMESPACE).data)

    with pytest.raises(RegistryAlreadyInitialized):
        await proxy.init("kyc", "default", [provider_ref(2)])

    assert memory_backend(KYC_NAMESPACE).data == before


@pytest.mark.asyncio
async def test_operations_on_uninitialized_registry_fail(proxy):
    with pytest.raises(RegistryNotInitialized):
        await proxy.add_provider("kyc", "default", provider_ref(1))
    with pytest.raises(RegistryNotInitialized):
        await proxy.is_approved("kyc", "default", ACCOUNT_A)


@pytest.mark.asyncio
async def test_unknown_flavor_is_rejected(proxy):
    with pytest.raises(UnknownRegistry):
        await proxy.init("payments", "default", None)


@pytest.mark.asyncio
async def test_named_instances_are_independent(proxy, fake_client):
    fake_client.approve(provider_id(1), ACCOUNT_A, limit=500)
    await proxy.init("synth", "gold", [provider_ref(1)])
    await proxy.init("synth", "silver", None)

    assert await proxy.is_allowed("synth", "gold", ACCOUNT_A, None, 500) is True
    assert await proxy.is_allowed("synth", "silver", ACCOUNT_A, None, 500) is False
    assert await proxy.is_approved("synth", "gold", ACCOUNT_A) is True


@pytest.mark.asyncio
async def test_is_allowed_on_kyc_registry_is_unsupported(proxy):
    await proxy.init("kyc", "default", [provider_ref(1)])

    with pytest.raises(UnsupportedDecision):
        await proxy.is_allowed("kyc", "default", ACCOUNT_A, None, 10)


@pytest.mark.asyncio
async def test_bootstrap_initializes_only_fresh_registries(proxy, memory_backend):
    await proxy.init("synth", "default", [provider_ref(9)])

    await proxy.bootstrap(["kyc:default", "synth:default", "synth"], [provider_ref(1), provider_ref(2)])

    assert memory_backend(KYC_NAMESPACE).data["len"] == 2
    synth = memory_backend("test:default:synth_providers").data
    assert synth["len"] == 1
    assert synth["0"] == str(provider_id(9))


@pytest.mark.asyncio
async def test_concurrent_adds_each_get_their_own_slot(slow_proxy, slow_stores, fake_client):
    fake_client.approve(provider_id(1), ACCOUNT_A)
    await slow_proxy.init("kyc", "default", None)

    applied = await asyncio.gather(
        *(slow_proxy.add_provider("kyc", "default", provider_ref(n)) for n in (1, 2, 3))
    )

    data = slow_stores[KYC_NAMESPACE].data
    assert applied == [True, True, True]
    assert data["len"] == 3
    slots = [data[str(i)] for i in range(3)]
    assert sorted(slots) == sorted(str(provider_id(n)) for n in (1, 2, 3))
    flagged = [key for key, value in data.items() if value is True]
    assert sorted(flagged) == sorted(slots)
    assert await slow_proxy.add_provider("kyc", "default", provider_ref(1)) is False
    assert await slow_proxy.is_approved("kyc", "default", ACCOUNT_A) is True


@pytest.mark.asyncio
async def test_concurrent_add_and_ban_both_land(slow_proxy, slow_stores):
    await slow_proxy.init("kyc", "default", [provider_ref(1)])

    applied = await asyncio.gather(
        slow_proxy.add_provider("kyc", "default", provider_ref(2)),
        slow_proxy.ban_provider("kyc", "default", provider_ref(1)),
    )

    data = slow_stores[KYC_NAMESPACE].data
    assert applied == [True, True]
    assert data["len"] == 2
    assert data[str(provider_id(1))] is False
    assert data[str(provider_id(2))] is True


@pytest.mark.asyncio
async def test_concurrent_inits_apply_once(slow_proxy, slow_stores):
    results = await asyncio.gather(
        slow_proxy.init("kyc", "default", [provider_ref(1)]),
        slow_proxy.init("kyc", "default", [provider_ref(2), provider_ref(3)]),
        return_exceptions=True,
    )

    assert sum(isinstance(result, RegistryAlreadyInitialized) for result in results) == 1
    length = next(result for result in results if isinstance(result, int))
    data = slow_stores[KYC_NAMESPACE].data
    assert data["len"] == length
    assert all(str(i) in data for i in range(length))
    assert str(length) not in data
