import base64

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from conftest import ACCOUNT_A, provider_ref
from verification_proxy.main import app, settings


def _encode_basic_auth(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("utf-8")
    return f"Basic {token}"


@pytest.fixture(autouse=True)
def metrics_credentials(monkeypatch):
    monkeypatch.setattr(settings, "metrics_username", "metrics-user")
    monkeypatch.setattr(settings, "metrics_password", "metrics-pass")


def test_metrics_endpoint_requires_authentication():
    client = TestClient(app)

    response = client.get("/metrics")

    assert response.status_code == 401
    assert response.headers.get("www-authenticate") == "Basic"


def test_metrics_endpoint_rejects_invalid_credentials():
    client = TestClient(app)
    headers = {"Authorization": _encode_basic_auth("wrong", "credentials")}

    response = client.get("/metrics", headers=headers)

    assert response.status_code == 401
    assert response.headers.get("www-authenticate") == "Basic"


@pytest.mark.asyncio
async def test_metrics_endpoint_reports_queries(proxy):
    await proxy.init("kyc", "default", [provider_ref(1)])
    await proxy.is_approved("kyc", "default", ACCOUNT_A)

    headers = {"Authorization": _encode_basic_auth("metrics-user", "metrics-pass")}
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/metrics", headers=headers)

    assert response.status_code == 200
    assert response.headers.get("content-type", "").startswith("text/plain")
    assert 'verification_queries_total{flavor="kyc",decision="is_approved",outcome="denied"}' in response.text
    assert 'verification_provider_calls_total{flavor="kyc",outcome="denied"}' in response.text
