# tests/usuario/test_login_api.py

import pytest
from rest_framework.test import APIClient

URL_LOGIN = "/api/v1/usuario/auth/login"
URL_REFRESH = "/api/v1/usuario/auth/refresh"


@pytest.mark.django_db
def test_login_devolve_tokens_e_empresas(user, empresa):
    resp = APIClient().post(URL_LOGIN, {"username": "operador", "password": "123456"}, format="json")

    assert resp.status_code == 200
    assert resp.data["access"]
    assert resp.data["refresh"]
    assert resp.data["empresa_ids"] == [str(empresa.id)]


@pytest.mark.django_db
def test_login_senha_errada(user):
    resp = APIClient().post(URL_LOGIN, {"username": "operador", "password": "errada"}, format="json")

    assert resp.status_code == 401
    assert resp.data["code"] == "AUTH_1001"


@pytest.mark.django_db
def test_login_em_empresa_sem_vinculo(user, outra_empresa):
    resp = APIClient().post(
        URL_LOGIN,
        {"username": "operador", "password": "123456", "empresa_id": str(outra_empresa.id)},
        format="json",
    )

    assert resp.status_code == 403
    assert resp.data["code"] == "AUTH_1006"


@pytest.mark.django_db
def test_token_acessa_endpoint_protegido(user, empresa):
    client = APIClient()
    tokens = client.post(URL_LOGIN, {"username": "operador", "password": "123456"}, format="json").data

    client.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens['access']}")
    resp = client.get("/api/v1/fila/jobs/qualquer")

    assert resp.status_code == 200
    assert resp.data == {"status": "unknown"}


@pytest.mark.django_db
def test_refresh_invalido():
    resp = APIClient().post(URL_REFRESH, {"refresh": "lixo"}, format="json")

    assert resp.status_code == 401
    assert resp.data["code"] == "AUTH_1011"
