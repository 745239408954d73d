from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from verification_proxy.identifiers import AMOUNT_LIMIT, DISAMBIGUATOR_LIMIT

ACCOUNT_PATTERN = r"^(account-hash|hash)-[0-9a-fA-F]{64}$"


class InitRequest(BaseModel):
    initial_providers: Optional[List[str]] = None


class ProviderRequest(BaseModel):
    provider: str


class ApprovalQuery(BaseModel):
    account: str = Field(..., pattern=ACCOUNT_PATTERN)
    index: Optional[int] = None

    @field_validator("index")
    @classmethod
    def check_index(cls, v):
        if v is not None and not 0 <= v < DISAMBIGUATOR_LIMIT:
            raise ValueError("index must be an unsigned 256-bit integer")
        return v


class AllowanceQuery(ApprovalQuery):
    amount: int

    @field_validator("amount")
    @classmethod
    def check_amount(cls, v):
        if not 0 <= v < AMOUNT_LIMIT:
            raise ValueError("amount must be an unsigned 512-bit integer")
        return v


class DecisionResponse(BaseModel):
    result: bool


class InitResponse(BaseModel):
    registry: str
    len: int


class MutationResponse(BaseModel):
    provider: str
    operation: str
    applied: bool


class ProviderInfo(BaseModel):
    index: int
    provider: str
    active: bool


class ProvidersResponse(BaseModel):
    len: int
    providers: List[ProviderInfo]


@dataclass
class ErrorResponse:
    error_code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)
