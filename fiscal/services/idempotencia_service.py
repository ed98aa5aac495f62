# fiscal/services/idempotencia_service.py

from __future__ import annotations

from typing import Optional

from fiscal.chave_acesso import exigir_valida
from fiscal.models import EmissaoStatus, NfeEmissao


def verificar_idempotencia(chave_acesso: str, empresa_id) -> Optional[NfeEmissao]:
    """
    Registro canônico existente para (empresa, chave), ou None.

    Roda antes de qualquer assinatura ou chamada à SEFAZ. O registro é
    devolvido como está; quem chama trata como sucesso e não reenvia.
    """
    exigir_valida(chave_acesso)
    return (
        NfeEmissao.objects
        .select_related("empresa")
        .filter(empresa_id=empresa_id, chave_acesso=chave_acesso)
        .first()
    )


def pode_retomar(emissao: NfeEmissao) -> bool:
    """
    Registro que nunca chegou à SEFAZ e pode seguir para envio:
    rascunho parado (ex: certificado indisponível) ou falha local de assinatura.
    """
    if emissao.foi_submetida:
        return False
    if emissao.status == EmissaoStatus.RASCUNHO:
        return True
    return emissao.status == EmissaoStatus.REJEITADA and bool(emissao.falha_local)


def sem_resultado_da_sefaz(emissao: NfeEmissao) -> bool:
    """
    Lote reivindicado (tentativas > 0) sem resultado conhecido: falha de
    transporte no envio ou lote ainda sem protocolo. Só é reenviado depois
    que a consulta confirmar que a SEFAZ não tem a NF-e (106/217).
    """
    return emissao.foi_submetida and emissao.status in (EmissaoStatus.RASCUNHO, EmissaoStatus.PROCESSANDO)


def envio_sem_confirmacao(emissao: NfeEmissao) -> bool:
    """Envio reivindicado que terminou em falha técnica, sem recibo nem resultado."""
    return emissao.foi_submetida and emissao.status == EmissaoStatus.RASCUNHO
