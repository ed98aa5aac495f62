# fiscal/services/certificado_service.py
"""
Resolução do certificado A1 de assinatura, por empresa.

- Decifra PFX/senha (Fernet) e abre o PKCS#12 com `cryptography`.
- Mantém a credencial decifrada SOMENTE em memória do processo, com
  validade limitada (settings.FISCAL_CERT_CACHE_TTL).
- Detecta rotação pelo fingerprint gravado junto ao material cifrado:
  fingerprint diferente do cacheado → invalida e recarrega.
- Um lock por empresa evita decifrar o mesmo PFX em paralelo; leituras
  de entradas válidas não bloqueiam.

Nunca registra senha, PFX ou chave privada em log.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from cryptography.fernet import InvalidToken
from cryptography.hazmat.primitives.serialization import pkcs12
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone

from empresa.models import EmpresaCertificadoA1
from empresa.services.certificado_a1_service import decifrar
from fiscal.exceptions import CredentialUnavailableError

logger = logging.getLogger("nfe.fiscal")


@dataclass(frozen=True)
class CredencialAssinatura:
    empresa_id: str
    fingerprint: str
    expira_em: datetime
    numero_serie: str
    chave_privada: Any = field(repr=False)
    certificado: Any = field(repr=False)
    cadeia: tuple = field(default=(), repr=False)


@dataclass
class _EntradaCache:
    credencial: CredencialAssinatura
    carregada_em: float


_cache: Dict[str, _EntradaCache] = {}
_cache_lock = threading.Lock()
_locks_empresa: Dict[str, threading.Lock] = {}


def _ttl() -> int:
    return int(getattr(settings, "FISCAL_CERT_CACHE_TTL", 900))


def _lock_da_empresa(empresa_id: str) -> threading.Lock:
    with _cache_lock:
        lock = _locks_empresa.get(empresa_id)
        if lock is None:
            lock = threading.Lock()
            _locks_empresa[empresa_id] = lock
        return lock


def _entrada_valida(entrada: Optional[_EntradaCache], fingerprint_atual: str) -> bool:
    if entrada is None:
        return False
    if entrada.credencial.fingerprint != fingerprint_atual:
        return False
    if time.monotonic() - entrada.carregada_em > _ttl():
        return False
    return entrada.credencial.expira_em > timezone.now()


def _fingerprint_atual(empresa_id: str) -> str:
    fingerprint = (
        EmpresaCertificadoA1.objects
        .filter(empresa_id=empresa_id)
        .values_list("fingerprint", flat=True)
        .first()
    )
    if not fingerprint:
        logger.warning(
            "certificado_a1_ausente",
            extra={"event": "certificado_a1", "empresa_id": empresa_id, "outcome": "ausente"},
        )
        raise CredentialUnavailableError(
            "Empresa não possui certificado A1 configurado.",
            motivo="ausente",
        )
    return fingerprint


def _decifrar_credencial(empresa_id: str) -> CredencialAssinatura:
    registro = EmpresaCertificadoA1.objects.get(empresa_id=empresa_id)

    try:
        pfx = decifrar(registro.a1_pfx)
        senha = decifrar(registro.senha_cifrada)
    except (InvalidToken, ImproperlyConfigured) as exc:
        raise CredentialUnavailableError(
            "Não foi possível decifrar o certificado A1 da empresa.",
            motivo="cifra",
        ) from exc

    try:
        chave, certificado, cadeia = pkcs12.load_key_and_certificates(pfx, senha)
    except ValueError as exc:
        raise CredentialUnavailableError(
            "Senha do certificado A1 inválida ou arquivo PFX corrompido.",
            motivo="senha_invalida",
        ) from exc

    if chave is None or certificado is None:
        raise CredentialUnavailableError(
            "Certificado A1 sem chave privada.",
            motivo="sem_chave_privada",
        )

    expira_em = certificado.not_valid_after_utc
    if expira_em <= timezone.now():
        raise CredentialUnavailableError(
            "Certificado A1 expirado. Emissão bloqueada.",
            motivo="expirado",
        )

    return CredencialAssinatura(
        empresa_id=empresa_id,
        fingerprint=registro.fingerprint,
        expira_em=expira_em,
        numero_serie=format(certificado.serial_number, "x"),
        chave_privada=chave,
        certificado=certificado,
        cadeia=tuple(cadeia or ()),
    )


def carregar(empresa_id) -> CredencialAssinatura:
    """
    Credencial de assinatura da empresa, do cache quando válida.

    Levanta CredentialUnavailableError se o certificado estiver ausente,
    expirado, com senha errada ou sem chave privada.
    """
    empresa_id = str(empresa_id)
    fingerprint = _fingerprint_atual(empresa_id)

    entrada = _cache.get(empresa_id)
    if _entrada_valida(entrada, fingerprint):
        return entrada.credencial

    with _lock_da_empresa(empresa_id):
        # outra thread pode ter carregado enquanto esperávamos
        entrada = _cache.get(empresa_id)
        if _entrada_valida(entrada, fingerprint):
            return entrada.credencial

        motivo_recarga = "rotacao" if entrada is not None and entrada.credencial.fingerprint != fingerprint else "carga"

        try:
            credencial = _decifrar_credencial(empresa_id)
        except CredentialUnavailableError as exc:
            invalidar(empresa_id)
            logger.warning(
                "certificado_a1_indisponivel",
                extra={
                    "event": "certificado_a1",
                    "empresa_id": empresa_id,
                    "motivo": exc.motivo,
                    "outcome": "indisponivel",
                },
            )
            raise

        with _cache_lock:
            _cache[empresa_id] = _EntradaCache(credencial=credencial, carregada_em=time.monotonic())

    logger.info(
        "certificado_a1_carregado",
        extra={
            "event": "certificado_a1",
            "empresa_id": empresa_id,
            "fingerprint": credencial.fingerprint,
            "expira_em": credencial.expira_em.isoformat(),
            "outcome": motivo_recarga,
        },
    )
    return credencial


def invalidar(empresa_id) -> None:
    with _cache_lock:
        _cache.pop(str(empresa_id), None)


def invalidar_todos() -> None:
    with _cache_lock:
        _cache.clear()


def estatisticas() -> dict:
    """Contadores do cache (total, válidos, expirados, carregando)."""
    agora_mono = time.monotonic()
    agora = timezone.now()
    ttl = _ttl()

    with _cache_lock:
        entradas = list(_cache.values())
        carregando = sum(1 for lock in _locks_empresa.values() if lock.locked())

    validos = sum(
        1
        for e in entradas
        if agora_mono - e.carregada_em <= ttl and e.credencial.expira_em > agora
    )
    return {
        "total": len(entradas),
        "validos": validos,
        "expirados": len(entradas) - validos,
        "carregando": carregando,
    }
