from fastapi import APIRouter, Depends, HTTPException, status

from verification_proxy.auth import require_admin
from verification_proxy.schemas import (
    AllowanceQuery,
    ApprovalQuery,
    DecisionResponse,
    InitRequest,
    InitResponse,
    MutationResponse,
    ProviderInfo,
    ProviderRequest,
    ProvidersResponse,
)
from verification_proxy.service import VerificationProxy

router = APIRouter(prefix="/api/v1/registries/{flavor}/{name}", tags=["registries"])
admin = [Depends(require_admin)]

# Set by the application lifespan
proxy: VerificationProxy | None = None


def get_proxy() -> VerificationProxy:
    if proxy is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error_code": "SERVICE_UNAVAILABLE", "message": "Registry service is not ready."}
        )
    return proxy


@router.post("/init", response_model=InitResponse, status_code=status.HTTP_201_CREATED, dependencies=admin)
async def init_registry(flavor: str, name: str, body: InitRequest, service: VerificationProxy = Depends(get_proxy)):
    length = await service.init(flavor, name, body.initial_providers)
    return InitResponse(registry=f"{flavor}:{name}", len=length)


@router.post("/providers", response_model=MutationResponse, dependencies=admin)
async def add_provider(flavor: str, name: str, body: ProviderRequest, service: VerificationProxy = Depends(get_proxy)):
    applied = await service.add_provider(flavor, name, body.provider)
    return MutationResponse(provider=body.provider, operation="add", applied=applied)


@router.post("/providers/{provider}/ban", response_model=MutationResponse, dependencies=admin)
async def ban_provider(flavor: str, name: str, provider: str, service: VerificationProxy = Depends(get_proxy)):
    applied = await service.ban_provider(flavor, name, provider)
    return MutationResponse(provider=provider, operation="ban", applied=applied)


@router.post("/providers/{provider}/unban", response_model=MutationResponse, dependencies=admin)
async def unban_provider(flavor: str, name: str, provider: str, service: VerificationProxy = Depends(get_proxy)):
    applied = await service.unban_provider(flavor, name, provider)
    return MutationResponse(provider=provider, operation="unban", applied=applied)


@router.get("/providers", response_model=ProvidersResponse, dependencies=admin)
async def list_providers(flavor: str, name: str, service: VerificationProxy = Depends(get_proxy)):
    entries = await service.list_providers(flavor, name)
    return ProvidersResponse(
        len=len(entries),
        providers=[
            ProviderInfo(index=e.index, provider=e.provider.as_reference(), active=e.active)
            for e in entries
        ],
    )


@router.post("/is-approved", response_model=DecisionResponse)
async def is_approved(flavor: str, name: str, body: ApprovalQuery, service: VerificationProxy = Depends(get_proxy)):
    result = await service.is_approved(flavor, name, body.account, body.index)
    return DecisionResponse(result=result)


@router.post("/is-allowed", response_model=DecisionResponse)
async def is_allowed(flavor: str, name: str, body: AllowanceQuery, service: VerificationProxy = Depends(get_proxy)):
    result = await service.is_allowed(flavor, name, body.account, body.index, body.amount)
    return DecisionResponse(result=result)
