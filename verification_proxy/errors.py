"""Error taxonomy for the provider registry.

Nothing in the core recovers from these locally. Each one aborts the
invocation it was raised in, and the enclosing transaction discards every
staged write.
"""


class RegistryError(Exception):
    error_code = "INTERNAL_ERROR"


class InvalidProviderReference(RegistryError):
    """The caller passed a provider reference that is not a hash-addressed key."""

    error_code = "INVALID_PROVIDER_REFERENCE"

    def __init__(self, reference, reason: str = "not a hash-addressed reference"):
        self.reference = reference
        self.reason = reason
        super().__init__(f"Invalid provider reference {reference!r}: {reason}")


class StorageCorruption(RegistryError):
    """An entry the registry invariants guarantee is missing or malformed."""

    error_code = "STORAGE_CORRUPTION"

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Storage entry {key!r}: {message}")


class RegistryNotInitialized(StorageCorruption):
    error_code = "REGISTRY_NOT_INITIALIZED"

    def __init__(self, registry: str):
        self.registry = registry
        super().__init__("len", f"registry {registry!r} has not been initialized")


class RegistryAlreadyInitialized(RegistryError):
    error_code = "REGISTRY_ALREADY_INITIALIZED"

    def __init__(self, registry: str):
        self.registry = registry
        super().__init__(f"Registry {registry!r} is already initialized")


class ProviderInvocationFailure(RegistryError):
    """A provider decision call aborted. Never treated as a denial."""

    error_code = "PROVIDER_INVOCATION_FAILED"

    def __init__(self, provider, entrypoint: str, details: dict | None = None):
        self.provider = provider
        self.entrypoint = entrypoint
        self.details = details or {}
        super().__init__(f"Provider {provider} failed on {entrypoint!r}: {self.details}")


class UnsupportedDecision(RegistryError):
    error_code = "UNKNOWN_DECISION"

    def __init__(self, flavor: str, decision: str):
        self.flavor = flavor
        self.decision = decision
        super().__init__(f"Registry flavor {flavor!r} does not support {decision!r}")


class UnknownRegistry(RegistryError):
    error_code = "UNKNOWN_REGISTRY"

    def __init__(self, flavor: str):
        self.flavor = flavor
        super().__init__(f"Unknown registry flavor {flavor!r}")
