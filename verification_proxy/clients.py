import enum
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from verification_proxy.identifiers import ProviderId

logger = logging.getLogger(__name__)


class DecisionStatus(enum.Enum):
    APPROVED = "approved"
    DENIED = "denied"
    FAILED = "failed"


@dataclass
class DecisionResult:
    status: DecisionStatus
    details: dict | None = None


class ProviderClient:
    """Asks a single provider for a decision about an account."""

    async def is_approved(
        self, provider: ProviderId, entrypoint: str, account: str, index: Optional[int]
    ) -> DecisionResult:  # pragma: no cover - interface
        raise NotImplementedError

    async def is_allowed(
        self, provider: ProviderId, entrypoint: str, account: str, index: Optional[int], amount: int
    ) -> DecisionResult:  # pragma: no cover - interface
        raise NotImplementedError


class HttpProviderClient(ProviderClient):
    """Calls providers deployed behind `{base_url}/providers/{provider}/{entrypoint}`.

    Unsigned integers travel as decimal strings so 256/512-bit values are
    not truncated by JSON consumers.
    """

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient()
        self.timeout = timeout

    async def is_approved(self, provider, entrypoint, account, index):
        return await self._call(provider, entrypoint, {
            "account": account,
            "index": None if index is None else str(index),
        })

    async def is_allowed(self, provider, entrypoint, account, index, amount):
        return await self._call(provider, entrypoint, {
            "account": account,
            "index": None if index is None else str(index),
            "amount": str(amount),
        })

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _call(self, provider: ProviderId, entrypoint: str, payload: dict) -> DecisionResult:
        url = f"{self.base_url}/providers/{provider}/{entrypoint}"
        try:
            resp = await self.client.post(url, json=payload, timeout=self.timeout)
        except httpx.HTTPError as exc:
            logger.error(
                "Provider call could not be completed.",
                extra={"provider": str(provider), "entrypoint": entrypoint, "error": str(exc)},
            )
            return DecisionResult(DecisionStatus.FAILED, {"error": str(exc) or exc.__class__.__name__})

        if resp.status_code != 200:
            return DecisionResult(DecisionStatus.FAILED, {"status_code": resp.status_code})

        try:
            body = resp.json()
        except ValueError:
            return DecisionResult(DecisionStatus.FAILED, {"error": "response is not JSON"})

        result = body.get("result") if isinstance(body, dict) else None
        if not isinstance(result, bool):
            return DecisionResult(DecisionStatus.FAILED, {"error": "response has no boolean 'result'"})
        return DecisionResult(DecisionStatus.APPROVED if result else DecisionStatus.DENIED, body)
