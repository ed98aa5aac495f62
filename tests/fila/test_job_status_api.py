# tests/fila/test_job_status_api.py

import pytest
from rest_framework.test import APIClient

from fila.models import JobStatus
from fila.services.fila_service import buscar_proximo_job, falhar_job, enfileirar


@pytest.mark.django_db
def test_status_de_job_pendente(api_client, empresa):
    job = enfileirar("EMIT", {"companyId": str(empresa.id), "accessKey": "x"})

    resp = api_client.get(f"/api/v1/fila/jobs/{job.id}")

    assert resp.status_code == 200
    assert resp.data["status"] == JobStatus.PENDENTE
    assert resp.data["last_error"] is None
    assert resp.data["updated_at"]


@pytest.mark.django_db
def test_status_com_erro_expoe_last_error(api_client, empresa):
    enfileirar("EMIT", {"companyId": str(empresa.id)})
    job = buscar_proximo_job()
    falhar_job(job, "certificado ausente", retentavel=False)

    resp = api_client.get(f"/api/v1/fila/jobs/{job.id}/")

    assert resp.status_code == 200
    assert resp.data["status"] == JobStatus.ERRO
    assert resp.data["last_error"] == "certificado ausente"


@pytest.mark.django_db
@pytest.mark.parametrize("job_id", ["00000000-0000-0000-0000-000000000000", "nao-existe"])
def test_job_desconhecido_devolve_unknown(api_client, job_id):
    resp = api_client.get(f"/api/v1/fila/jobs/{job_id}")

    assert resp.status_code == 200
    assert resp.data == {"status": "unknown"}


@pytest.mark.django_db
def test_job_de_outra_empresa_devolve_unknown(api_client, outra_empresa):
    enfileirar("EMIT", {"companyId": str(outra_empresa.id), "accessKey": "x"})
    job = buscar_proximo_job()
    falhar_job(job, "detalhe interno da outra empresa", retentavel=False)

    resp = api_client.get(f"/api/v1/fila/jobs/{job.id}")

    assert resp.status_code == 200
    assert resp.data == {"status": "unknown"}


@pytest.mark.django_db
def test_job_sem_empresa_no_payload_devolve_unknown(api_client):
    job = enfileirar("EMIT", {"accessKey": "x"})

    resp = api_client.get(f"/api/v1/fila/jobs/{job.id}")

    assert resp.data == {"status": "unknown"}


@pytest.mark.django_db
def test_status_exige_autenticacao():
    resp = APIClient().get("/api/v1/fila/jobs/qualquer")

    assert resp.status_code == 401
