# conftest.py (na raiz do projeto)

import logging
from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from cryptography import x509
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, pkcs12
from cryptography.x509.oid import NameOID
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from empresa.models import AmbienteNfe, Empresa
from empresa.services.certificado_a1_service import registrar_certificado_a1
from fiscal.sefaz_clients import MockSefazClient
from fiscal.services import certificado_service
from usuario.models import UserEmpresa
from vendas.models import PedidoVenda

logger = logging.getLogger(__name__)

SENHA_PFX = "senha-a1"
CNPJ_EMPRESA = "12345678000195"
CNPJ_OUTRA_EMPRESA = "98765432000110"


# =============================================================================
# CERTIFICADO A1 DE TESTE (autoassinado)
# =============================================================================

@pytest.fixture(scope="session")
def chave_rsa_teste():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def pfx_factory(chave_rsa_teste):
    """
    Gera um PFX autoassinado. dias <= 0 gera certificado já expirado.
    """

    def _gerar(senha: str = SENHA_PFX, *, dias: int = 365, cn: str = "EMPRESA TESTE LTDA") -> bytes:
        agora = datetime.now(dt_timezone.utc)
        if dias > 0:
            inicio, fim = agora - timedelta(days=1), agora + timedelta(days=dias)
        else:
            inicio, fim = agora - timedelta(days=30), agora - timedelta(days=1)

        nome = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, f"{cn}:{CNPJ_EMPRESA}")])
        certificado = (
            x509.CertificateBuilder()
            .subject_name(nome)
            .issuer_name(nome)
            .public_key(chave_rsa_teste.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(inicio)
            .not_valid_after(fim)
            .sign(chave_rsa_teste, hashes.SHA256())
        )
        return pkcs12.serialize_key_and_certificates(
            b"a1-teste",
            chave_rsa_teste,
            certificado,
            None,
            BestAvailableEncryption(senha.encode()),
        )

    return _gerar


# =============================================================================
# AMBIENTE FISCAL ISOLADO POR TESTE
# =============================================================================

@pytest.fixture(autouse=True)
def ambiente_fiscal(settings):
    """
    - Chave Fernet própria do teste.
    - Client SEFAZ mock.
    - Cache de certificados e lotes do mock zerados.
    """
    settings.FISCAL_CERT_ENCRYPTION_KEY = Fernet.generate_key().decode()
    settings.FISCAL_SEFAZ_CLIENT = "mock"
    settings.FISCAL_EXPOR_ERRO_SEFAZ = False
    certificado_service.invalidar_todos()
    MockSefazClient._lotes.clear()
    yield
    certificado_service.invalidar_todos()
    MockSefazClient._lotes.clear()


# =============================================================================
# DADOS BÁSICOS
# =============================================================================

@pytest.fixture
def empresa(db):
    return Empresa.objects.create(
        razao_social="Empresa Teste LTDA",
        cnpj=CNPJ_EMPRESA,
        uf="SP",
        ambiente_nfe=AmbienteNfe.HOMOLOGACAO,
    )


@pytest.fixture
def outra_empresa(db):
    return Empresa.objects.create(
        razao_social="Outra Empresa SA",
        cnpj=CNPJ_OUTRA_EMPRESA,
        uf="MG",
        ambiente_nfe=AmbienteNfe.PRODUCAO,
    )


@pytest.fixture
def certificado_a1(empresa, pfx_factory):
    return registrar_certificado_a1(empresa=empresa, pfx=pfx_factory(), senha=SENHA_PFX)


@pytest.fixture
def user(db, empresa):
    User = get_user_model()
    usuario = User.objects.create_user(username="operador", password="123456")
    UserEmpresa.objects.create(user=usuario, empresa_id=empresa.id)
    return usuario


@pytest.fixture
def pedido(empresa):
    return PedidoVenda.objects.create(empresa=empresa, numero=1001)


@pytest.fixture
def api_client(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


# =============================================================================
# CHAVE DE ACESSO / RASCUNHO
# =============================================================================

@pytest.fixture
def chave_factory():
    """
    Monta uma chave de 44 dígitos:
    cUF(2) AAMM(4) CNPJ(14) mod(2) serie(3) nNF(9) tpEmis(1) cNF(8) cDV(1).
    """

    def _montar(c_uf: str = "35", *, numero: int = 1, serie: int = 1, cnpj: str = CNPJ_EMPRESA) -> str:
        chave = f"{c_uf}2501{cnpj}55{serie:03d}{numero:09d}1{numero:08d}7"
        assert len(chave) == 44
        return chave

    return _montar


@pytest.fixture
def rascunho_factory(chave_factory):
    def _montar(numero: int = 1, serie: int = 1, c_uf: str = "35", **extras) -> dict:
        rascunho = {
            "chave_acesso": chave_factory(c_uf, numero=numero, serie=serie),
            "numero": numero,
            "serie": serie,
            "emitente": {"cnpj": CNPJ_EMPRESA},
            "itens": [{"descricao": "Produto teste", "quantidade": 1, "valor": "10.00"}],
        }
        rascunho.update(extras)
        return rascunho

    return _montar
