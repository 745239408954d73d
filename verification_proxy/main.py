import dataclasses
import json
import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from redis.asyncio import Redis

from verification_proxy.clients import HttpProviderClient
from verification_proxy.config import get_settings
from verification_proxy.errors import (
    InvalidProviderReference,
    ProviderInvocationFailure,
    RegistryAlreadyInitialized,
    RegistryError,
    RegistryNotInitialized,
    StorageCorruption,
    UnknownRegistry,
    UnsupportedDecision,
)
from verification_proxy.logging import setup_logging
from verification_proxy.metrics import metrics_content
from verification_proxy.routers import registries
from verification_proxy.schemas import ErrorResponse
from verification_proxy.service import VerificationProxy
from verification_proxy.store import MemoryBackend, RedisStore

settings = get_settings()
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

redis_client: Optional[Redis] = None
http_client: Optional[httpx.AsyncClient] = None

# Looked up along the exception's MRO, so subclasses may override their base
ERROR_STATUS = {
    InvalidProviderReference: status.HTTP_422_UNPROCESSABLE_ENTITY,
    RegistryAlreadyInitialized: status.HTTP_409_CONFLICT,
    RegistryNotInitialized: status.HTTP_404_NOT_FOUND,
    StorageCorruption: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ProviderInvocationFailure: status.HTTP_502_BAD_GATEWAY,
    UnsupportedDecision: status.HTTP_404_NOT_FOUND,
    UnknownRegistry: status.HTTP_404_NOT_FOUND,
}


async def get_redis_client() -> Redis:
    return Redis.from_url(settings.redis_url)


def build_store_factory():
    if settings.storage_backend == "memory":
        return MemoryBackend()
    return lambda namespace: RedisStore(redis_client, namespace, lock_timeout=settings.registry_lock_timeout_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_client, http_client

    logger.info("Starting up verification proxy...")

    if settings.storage_backend != "memory":
        try:
            redis_client = await get_redis_client()
            await redis_client.ping()
            logger.info("Redis client initialized and connected.")
        except Exception as e:
            logger.critical(f"Failed to connect to Redis on startup: {e}", exc_info=True)
            raise

    http_client = httpx.AsyncClient()
    provider_client = HttpProviderClient(
        settings.provider_base_url,
        client=http_client,
        timeout=settings.provider_timeout_seconds,
    )
    service = VerificationProxy(build_store_factory(), provider_client, key_prefix=settings.registry_key_prefix)

    try:
        await service.bootstrap(settings.bootstrap_registries, settings.initial_providers)
        registries.proxy = service
        yield
    finally:
        logger.info("Shutting down verification proxy...")
        registries.proxy = None
        if http_client:
            await http_client.aclose()
            logger.info("Provider HTTP client closed.")
        if redis_client:
            await redis_client.close()
            logger.info("Redis client closed.")


def custom_json_serializer(obj):
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Object of type {obj.__class__.__name__} is not JSON serializable")


def error_content(error_response: ErrorResponse) -> dict:
    content = json.loads(json.dumps(dataclasses.asdict(error_response), default=custom_json_serializer))
    return {k: v for k, v in content.items() if v is not None}


app = FastAPI(
    title="Verification Proxy",
    description="Aggregates verification providers behind a single eligibility gate.",
    version="1.0.0",
    lifespan=lifespan,
    default_response_class=JSONResponse
)

security = HTTPBasic()


def require_metrics_auth(credentials: HTTPBasicCredentials = Depends(security)) -> None:
    """Ensure that requests to the metrics endpoint provide valid Basic Auth credentials."""
    if not settings.metrics_username or not settings.metrics_password:
        logger.error("Metrics authentication credentials are not configured.")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error_code": "INTERNAL_ERROR",
                "message": "Metrics authentication is not configured.",
            },
        )

    username_valid = secrets.compare_digest(credentials.username, settings.metrics_username)
    password_valid = secrets.compare_digest(credentials.password, settings.metrics_password)

    if not (username_valid and password_valid):
        logger.warning("Metrics authentication failed for provided credentials.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "UNAUTHORIZED",
                "message": "Invalid authentication credentials.",
            },
            headers={"WWW-Authenticate": "Basic"},
        )


@app.exception_handler(RegistryError)
async def registry_error_handler(request: Request, exc: RegistryError):
    status_code = next(
        (ERROR_STATUS[cls] for cls in type(exc).__mro__ if cls in ERROR_STATUS),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    details = None
    if isinstance(exc, ProviderInvocationFailure):
        details = {"provider": str(exc.provider), "entrypoint": exc.entrypoint, **exc.details}
    elif isinstance(exc, InvalidProviderReference):
        details = {"reference": str(exc.reference), "reason": exc.reason}

    log = logger.error if status_code >= 500 else logger.warning
    log(
        f"Registry error: {status_code} - {exc.error_code}",
        extra={"path": request.url.path, "error_details": str(exc)},
    )
    error_response = ErrorResponse(error_code=exc.error_code, message=str(exc), details=details)
    return JSONResponse(status_code=status_code, content=error_content(error_response))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if isinstance(exc.detail, dict):
        detail_payload = exc.detail
    else:
        fallback_error_code = (
            "UNAUTHORIZED"
            if exc.status_code == status.HTTP_401_UNAUTHORIZED
            else "INTERNAL_ERROR"
        )
        detail_payload = {
            "error_code": fallback_error_code,
            "message": str(exc.detail) if exc.detail else "An unexpected error occurred.",
        }
    error_response = ErrorResponse(
        error_code=detail_payload.get("error_code", "INTERNAL_ERROR"),
        message=detail_payload.get("message", "An unexpected error occurred."),
        details=detail_payload.get("details"),
    )
    logger.error(
        f"HTTP Exception: {exc.status_code} - {error_response.error_code}",
        extra={"path": request.url.path, "error_details": detail_payload}
    )
    return JSONResponse(status_code=exc.status_code, content=error_content(error_response), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    error_response = ErrorResponse(
        error_code="INVALID_PAYLOAD",
        message="Invalid request payload.",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=error_content(error_response))


app.include_router(registries.router)


@app.get("/healthz", status_code=status.HTTP_200_OK)
async def healthz():
    return {"status": "ok"}


@app.get("/readyz", status_code=status.HTTP_200_OK)
async def readyz():
    try:
        if registries.proxy is None:
            raise ConnectionError("Registry service not started")
        if settings.storage_backend != "memory":
            if not redis_client or not await redis_client.ping():
                raise ConnectionError("Redis not reachable")

        logger.debug("Readiness check passed.")
        return {"status": "ok"}
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error_code": "SERVICE_UNAVAILABLE", "message": f"Dependency not ready: {e}"}
        )


@app.get("/metrics", status_code=status.HTTP_200_OK)
async def get_metrics(_: None = Depends(require_metrics_auth)):
    return metrics_content()
