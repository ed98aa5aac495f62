# empresa/services/certificado_a1_service.py
"""
Cadastro/rotação do certificado A1 da empresa.

O PFX e a senha são cifrados com Fernet (chave em
settings.FISCAL_CERT_ENCRYPTION_KEY) antes de irem para o banco.
"""

from __future__ import annotations

import logging
from datetime import timezone as dt_timezone

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives.serialization import pkcs12
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.db import transaction

from empresa.models import Empresa, EmpresaCertificadoA1

logger = logging.getLogger("nfe.fiscal")


def get_fernet() -> Fernet:
    chave = getattr(settings, "FISCAL_CERT_ENCRYPTION_KEY", "")
    if not chave:
        raise ImproperlyConfigured("FISCAL_CERT_ENCRYPTION_KEY não configurada.")
    return Fernet(chave.encode() if isinstance(chave, str) else chave)


def cifrar(valor: bytes) -> bytes:
    return get_fernet().encrypt(valor)


def decifrar(valor: bytes) -> bytes:
    return get_fernet().decrypt(bytes(valor))


@transaction.atomic
def registrar_certificado_a1(*, empresa: Empresa, pfx: bytes, senha: str) -> EmpresaCertificadoA1:
    """
    Cadastra ou substitui o certificado A1 da empresa.

    Lê o PFX para extrair validade, número de série e emissor; falha com
    ValueError se a senha não abrir o arquivo.
    """
    _chave, certificado, _extras = pkcs12.load_key_and_certificates(pfx, senha.encode())
    if certificado is None:
        raise ValueError("PFX não contém certificado.")

    expira_em = certificado.not_valid_after_utc.astimezone(dt_timezone.utc)

    cert, created = EmpresaCertificadoA1.objects.update_or_create(
        empresa=empresa,
        defaults={
            "a1_pfx": cifrar(pfx),
            "senha_cifrada": cifrar(senha.encode()),
            "a1_expires_at": expira_em,
            "numero_serie": format(certificado.serial_number, "x"),
            "emissor": certificado.issuer.rfc4514_string()[:200],
        },
    )

    logger.info(
        "certificado_a1_registrado",
        extra={
            "event": "certificado_a1",
            "empresa_id": str(empresa.id),
            "fingerprint": cert.fingerprint,
            "outcome": "criado" if created else "rotacionado",
        },
    )
    return cert
