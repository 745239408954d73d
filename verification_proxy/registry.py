"""Indexed provider registry.

State of one registry instance, as laid out in its key/value namespace:

- ``"len"``                    -> number of slots assigned so far
- ``"<decimal index>"``        -> provider id stored in that slot
- ``"<provider id string>"``   -> active flag (``True`` usable, ``False`` banned)

Slots are assigned in registration order and never reused or compacted.
Providers are only ever added, banned or unbanned; nothing is deleted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from verification_proxy.errors import (
    RegistryAlreadyInitialized,
    RegistryNotInitialized,
    StorageCorruption,
    UnknownRegistry,
)
from verification_proxy.identifiers import ProviderId
from verification_proxy.store import KeyValueStore

logger = logging.getLogger(__name__)

LEN_KEY = "len"

ProviderRef = Union[str, ProviderId]


@dataclass(frozen=True)
class RegistryFlavor:
    """Names that differ between the identity and the synthetic-asset registries."""

    name: str
    namespace: str
    approval_entrypoint: str
    allowance_entrypoint: Optional[str] = None


KYC = RegistryFlavor("kyc", "kyc_providers", "is_kyc_proved")
SYNTH = RegistryFlavor("synth", "synth_providers", "is_enabled", "is_allowed")

FLAVORS = {flavor.name: flavor for flavor in (KYC, SYNTH)}


def get_flavor(name: str) -> RegistryFlavor:
    flavor = FLAVORS.get(name)
    if flavor is None:
        raise UnknownRegistry(name)
    return flavor


def registry_namespace(prefix: str, flavor: RegistryFlavor, name: str) -> str:
    return f"{prefix}:{name}:{flavor.namespace}"


@dataclass
class RegistryEntry:
    index: int
    provider: ProviderId
    active: bool


class ProviderRegistry:
    """Handle on one registry instance for the duration of a single invocation.

    ``len`` is read once by :meth:`open` and kept on the handle; nothing is
    cached across invocations.
    """

    def __init__(self, store: KeyValueStore, length: int):
        self.store = store
        self.len = length

    @property
    def name(self) -> str:
        return self.store.namespace

    @classmethod
    async def init(cls, store: KeyValueStore, initial: Optional[Iterable[ProviderRef]] = None) -> "ProviderRegistry":
        """Create the registry, registering `initial` in order with add semantics.

        Every reference is resolved before anything is written, so a bad
        reference leaves the store untouched. Repeats collapse into the
        slot of their first occurrence.
        """
        if await store.get(LEN_KEY) is not None:
            raise RegistryAlreadyInitialized(store.namespace)

        providers = [ProviderId.from_reference(ref) for ref in (initial or [])]

        registry = cls(store, 0)
        await store.put(LEN_KEY, 0)
        for provider in providers:
            await registry.add(provider)

        logger.info(
            "Provider registry initialized.",
            extra={"registry": store.namespace, "len": registry.len, "initial_count": len(providers)},
        )
        return registry

    @classmethod
    async def open(cls, store: KeyValueStore) -> "ProviderRegistry":
        length = await store.get(LEN_KEY)
        if length is None:
            raise RegistryNotInitialized(store.namespace)
        if isinstance(length, bool) or not isinstance(length, int) or length < 0:
            raise StorageCorruption(LEN_KEY, f"expected an unsigned integer, found {length!r}")
        return cls(store, length)

    async def add(self, provider: ProviderRef) -> bool:
        """Register `provider` in the next slot. Known providers, banned or not, are left alone."""
        provider_id = ProviderId.from_reference(provider)
        key = str(provider_id)
        if await self._flag(key) is not None:
            return False

        await self.store.put(str(self.len), key)
        await self.store.put(key, True)
        await self.store.put(LEN_KEY, self.len + 1)
        self.len += 1
        return True

    async def ban(self, provider: ProviderRef) -> bool:
        key = str(ProviderId.from_reference(provider))
        if await self._flag(key) is True:
            await self.store.put(key, False)
            return True
        return False

    async def unban(self, provider: ProviderRef) -> bool:
        key = str(ProviderId.from_reference(provider))
        if await self._flag(key) is False:
            await self.store.put(key, True)
            return True
        return False

    async def provider_at(self, index: int) -> Optional[ProviderId]:
        """Return the provider stored in slot `index`, or None for an unassigned slot."""
        key = str(index)
        raw = await self.store.get(key)
        if raw is None:
            return None
        provider_id = ProviderId.parse(raw)
        if provider_id is None:
            raise StorageCorruption(key, f"expected a provider id, found {raw!r}")
        return provider_id

    async def is_active(self, provider: ProviderId) -> Optional[bool]:
        """Active flag of `provider`; None when it was never registered."""
        return await self._flag(str(provider))

    async def entries(self) -> List[RegistryEntry]:
        entries = []
        for index in range(self.len):
            provider = await self.provider_at(index)
            if provider is None:
                raise StorageCorruption(str(index), "slot below len is unassigned")
            active = await self.is_active(provider)
            if active is None:
                raise StorageCorruption(str(provider), "registered provider has no active flag")
            entries.append(RegistryEntry(index=index, provider=provider, active=active))
        return entries

    async def _flag(self, key: str) -> Optional[bool]:
        value = await self.store.get(key)
        if value is None or isinstance(value, bool):
            return value
        raise StorageCorruption(key, f"expected a boolean flag, found {value!r}")
