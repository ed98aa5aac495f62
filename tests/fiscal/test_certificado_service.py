# tests/fiscal/test_certificado_service.py

import logging

import pytest

from empresa.models import EmpresaCertificadoA1
from empresa.services import certificado_a1_service
from empresa.services.certificado_a1_service import cifrar, registrar_certificado_a1
from fiscal.exceptions import CredentialUnavailableError
from fiscal.services import certificado_service

from conftest import SENHA_PFX


@pytest.mark.django_db
def test_carregar_devolve_credencial_e_usa_cache(certificado_a1, empresa, monkeypatch):
    chamadas = []
    decifrar_original = certificado_service.decifrar

    def _decifrar_contando(valor):
        chamadas.append(1)
        return decifrar_original(valor)

    monkeypatch.setattr(certificado_service, "decifrar", _decifrar_contando)

    primeira = certificado_service.carregar(empresa.id)
    segunda = certificado_service.carregar(empresa.id)

    assert primeira is segunda
    assert primeira.fingerprint == certificado_a1.fingerprint
    # PFX + senha decifrados uma única vez
    assert len(chamadas) == 2
    assert certificado_service.estatisticas()["validos"] == 1


@pytest.mark.django_db
def test_repr_da_credencial_nao_expoe_chave(certificado_a1, empresa):
    credencial = certificado_service.carregar(empresa.id)

    texto = repr(credencial)

    assert "chave_privada" not in texto
    assert "certificado=" not in texto


@pytest.mark.django_db
def test_rotacao_invalida_cache_pelo_fingerprint(certificado_a1, empresa, pfx_factory):
    antiga = certificado_service.carregar(empresa.id)

    registrar_certificado_a1(empresa=empresa, pfx=pfx_factory(cn="NOVO CERTIFICADO"), senha=SENHA_PFX)
    nova = certificado_service.carregar(empresa.id)

    assert nova is not antiga
    assert nova.fingerprint != antiga.fingerprint
    assert nova.fingerprint == EmpresaCertificadoA1.objects.get(empresa=empresa).fingerprint


@pytest.mark.django_db
def test_ttl_expirado_recarrega(certificado_a1, empresa, settings):
    settings.FISCAL_CERT_CACHE_TTL = -1

    primeira = certificado_service.carregar(empresa.id)
    segunda = certificado_service.carregar(empresa.id)

    assert primeira is not segunda
    assert primeira.fingerprint == segunda.fingerprint


@pytest.mark.django_db
def test_certificado_ausente(empresa, caplog):
    with caplog.at_level(logging.WARNING, logger="nfe.fiscal"):
        with pytest.raises(CredentialUnavailableError) as exc:
            certificado_service.carregar(empresa.id)

    assert exc.value.motivo == "ausente"
    assert exc.value.detail["code"] == "FISCAL_3001"
    assert exc.value.status_code == 422


@pytest.mark.django_db
def test_certificado_expirado(empresa, pfx_factory):
    registrar_certificado_a1(empresa=empresa, pfx=pfx_factory(dias=0), senha=SENHA_PFX)

    with pytest.raises(CredentialUnavailableError) as exc:
        certificado_service.carregar(empresa.id)

    assert exc.value.motivo == "expirado"
    assert certificado_service.estatisticas()["total"] == 0


@pytest.mark.django_db
def test_senha_errada(certificado_a1, empresa):
    certificado_a1.senha_cifrada = cifrar(b"senha-errada")
    certificado_a1.save(update_fields=["senha_cifrada"])

    with pytest.raises(CredentialUnavailableError) as exc:
        certificado_service.carregar(empresa.id)

    assert exc.value.motivo == "senha_invalida"


@pytest.mark.django_db
def test_chave_fernet_trocada_nao_decifra(certificado_a1, empresa, settings):
    from cryptography.fernet import Fernet

    settings.FISCAL_CERT_ENCRYPTION_KEY = Fernet.generate_key().decode()

    with pytest.raises(CredentialUnavailableError) as exc:
        certificado_service.carregar(empresa.id)

    assert exc.value.motivo == "cifra"


@pytest.mark.django_db
def test_logs_nunca_carregam_senha(certificado_a1, empresa, caplog):
    with caplog.at_level(logging.DEBUG):
        certificado_service.carregar(empresa.id)

    for registro in caplog.records:
        assert SENHA_PFX not in str(registro.__dict__)


def test_get_fernet_sem_chave_configurada(settings):
    from django.core.exceptions import ImproperlyConfigured

    settings.FISCAL_CERT_ENCRYPTION_KEY = ""

    with pytest.raises(ImproperlyConfigured):
        certificado_a1_service.get_fernet()
