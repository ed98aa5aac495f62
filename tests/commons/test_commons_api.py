# tests/commons/test_commons_api.py

import pytest
from rest_framework.test import APIClient

from fila.models import JobTipo
from fila.services.fila_service import enfileirar


@pytest.mark.django_db
def test_liveness_e_readiness(settings):
    settings.FISCAL_SEFAZ_CLIENT = "mock"
    enfileirar(JobTipo.EMIT, {"companyId": "x", "accessKey": "y"})
    client = APIClient()

    assert client.get("/api/v1/commons/health/liveness").json() == {"ok": True}
    assert client.get("/api/v1/commons/health/readiness").json() == {
        "ok": True,
        "fila_pendentes": 1,
        "sefaz_client": "mock",
    }


@pytest.mark.django_db
def test_request_id_e_propagado():
    resp = APIClient().get("/api/v1/commons/health/liveness", HTTP_X_REQUEST_ID="req-123")

    assert resp["X-Request-ID"] == "req-123"


@pytest.mark.django_db
def test_request_id_e_gerado_quando_ausente():
    resp = APIClient().get("/api/v1/commons/time/now")

    assert resp.status_code == 200
    assert len(resp["X-Request-ID"]) == 36
    assert "now" in resp.json()
