# fiscal/services/emissao_store.py
"""
Persistência canônica de NfeEmissao, chaveada por (empresa, chave_acesso).

Toda escrita passa por aqui e resolve conflito de unicidade relendo o
registro vencedor; nenhum caminho faz insert "cego".
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Dict, Optional, Tuple

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from fiscal.exceptions import ConflictAlreadyExistsError
from fiscal.models import FALHA_ASSINATURA, EmissaoStatus, NfeAuditoria, NfeEmissao
from fiscal.services.emissao_state_machine import EmissaoStateMachine
from fiscal.services.status_service import ResultadoInterpretado

logger = logging.getLogger("nfe.fiscal")

NS_NFE = "http://www.portalfiscal.inf.br/nfe"
_RE_DECLARACAO_XML = re.compile(r"^\s*<\?xml[^>]*\?>\s*")

TIPO_EVENTO_POR_STATUS = {
    EmissaoStatus.AUTORIZADA: "EMISSAO_AUTORIZADA",
    EmissaoStatus.PROCESSANDO: "EMISSAO_PROCESSANDO",
    EmissaoStatus.DENEGADA: "EMISSAO_DENEGADA",
    EmissaoStatus.REJEITADA: "EMISSAO_REJEITADA",
    EmissaoStatus.CANCELADA: "EMISSAO_CANCELADA",
}


def gerar_id_lote() -> str:
    """idLote com até 15 dígitos, derivado do relógio em milissegundos."""
    return str(int(time.time() * 1000))[-15:]


def montar_nfe_proc(xml_assinado: str, prot_nfe_xml: str) -> str:
    nfe = _RE_DECLARACAO_XML.sub("", xml_assinado or "")
    prot = _RE_DECLARACAO_XML.sub("", prot_nfe_xml or "")
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<nfeProc versao="4.00" xmlns="{NS_NFE}">{nfe}{prot}</nfeProc>'
    )


# ---------------------------------------------------------------------------
# Criação
# ---------------------------------------------------------------------------


def _inserir(empresa_id, chave_acesso: str, campos: Dict[str, Any]) -> NfeEmissao:
    # savepoint: a violação de unicidade não invalida a transação externa
    try:
        with transaction.atomic():
            return NfeEmissao.objects.create(
                empresa_id=empresa_id,
                chave_acesso=chave_acesso,
                **campos,
            )
    except IntegrityError as exc:
        raise ConflictAlreadyExistsError() from exc


def obter_ou_criar(empresa_id, chave_acesso: str, campos: Dict[str, Any]) -> Tuple[NfeEmissao, bool]:
    """
    Cria o registro se não existir; havendo conflito concorrente, devolve o
    registro vencedor. Retorna (emissao, criada_por_nos).
    """
    existente = NfeEmissao.objects.filter(empresa_id=empresa_id, chave_acesso=chave_acesso).first()
    if existente is not None:
        return existente, False

    try:
        return _inserir(empresa_id, chave_acesso, campos), True
    except ConflictAlreadyExistsError:
        vencedor = NfeEmissao.objects.get(empresa_id=empresa_id, chave_acesso=chave_acesso)
        logger.info(
            "emissao_conflito_unicidade",
            extra={
                "event": "nfe_emitir",
                "empresa_id": str(empresa_id),
                "chave_acesso": chave_acesso,
                "emissao_id": str(vencedor.id),
                "outcome": "conflito_resolvido",
            },
        )
        return vencedor, False


# ---------------------------------------------------------------------------
# Envio
# ---------------------------------------------------------------------------


def registrar_assinatura(emissao: NfeEmissao, xml_assinado: str) -> None:
    emissao.xml_assinado = xml_assinado
    emissao.falha_local = None
    emissao.save(update_fields=["xml_assinado", "falha_local", "updated_at"])


def reivindicar_envio(emissao: NfeEmissao, id_lote: str) -> bool:
    """
    Compare-and-set sobre `tentativas`: só quem incrementa a partir do
    valor observado pode enviar o lote. Retorna False se outro processo
    já reivindicou (o chamador deve reler e devolver o vencedor).
    """
    observado = emissao.tentativas
    atualizados = (
        NfeEmissao.objects
        .filter(pk=emissao.pk, tentativas=observado)
        .update(tentativas=F("tentativas") + 1, id_lote=id_lote, updated_at=timezone.now())
    )
    if not atualizados:
        return False
    emissao.tentativas = observado + 1
    emissao.id_lote = id_lote
    return True


# ---------------------------------------------------------------------------
# Resultado
# ---------------------------------------------------------------------------


def aplicar_resultado(
    emissao: NfeEmissao,
    resultado: ResultadoInterpretado,
    *,
    prot_nfe_xml: Optional[str] = None,
    motivo: str | None = None,
) -> NfeEmissao:
    """
    Persiste status + retorno da SEFAZ numa única escrita.

    xMotivo é gravado literalmente. Protocolo e XML de NF-e autorizada não
    são sobrescritos.
    """
    EmissaoStateMachine.mudar_status(emissao, resultado.status, motivo=motivo)

    emissao.c_stat = resultado.c_stat
    emissao.x_motivo = resultado.x_motivo
    campos = ["status", "c_stat", "x_motivo", "updated_at"]

    if resultado.n_recibo:
        emissao.n_recibo = resultado.n_recibo
        campos.append("n_recibo")
    if resultado.dh_recbto and not (emissao.n_prot and emissao.dh_recbto):
        emissao.dh_recbto = resultado.dh_recbto
        campos.append("dh_recbto")

    if resultado.status == EmissaoStatus.AUTORIZADA:
        if resultado.n_prot and not emissao.n_prot:
            emissao.n_prot = resultado.n_prot
            campos.append("n_prot")
        if emissao.autorizada_em is None:
            emissao.autorizada_em = timezone.now()
            campos.append("autorizada_em")
        if prot_nfe_xml and emissao.xml_assinado and not emissao.xml_nfe_proc:
            emissao.xml_nfe_proc = montar_nfe_proc(emissao.xml_assinado, prot_nfe_xml)
            campos.append("xml_nfe_proc")

    emissao.save(update_fields=campos)
    return emissao


def registrar_falha_assinatura(emissao: NfeEmissao, mensagem: str) -> NfeEmissao:
    EmissaoStateMachine.mudar_status(emissao, EmissaoStatus.REJEITADA, motivo=FALHA_ASSINATURA)
    emissao.falha_local = FALHA_ASSINATURA
    emissao.c_stat = None
    emissao.x_motivo = mensagem
    emissao.save(update_fields=["status", "falha_local", "c_stat", "x_motivo", "updated_at"])
    return emissao


# ---------------------------------------------------------------------------
# Auditoria (não bloqueante)
# ---------------------------------------------------------------------------


def registrar_auditoria(emissao: NfeEmissao, tipo_evento: str, *, user_id=None) -> None:
    try:
        with transaction.atomic():
            NfeAuditoria.objects.create(
                tipo_evento=tipo_evento,
                nfe_emissao=emissao,
                empresa_id=emissao.empresa_id,
                user_id=user_id,
                chave_acesso=emissao.chave_acesso,
                c_stat=emissao.c_stat,
                x_motivo=emissao.x_motivo,
                n_prot=emissao.n_prot,
                tp_amb=emissao.tp_amb,
                uf=emissao.uf,
            )
    except Exception:
        logger.exception(
            "nfe_auditoria_falha",
            extra={
                "event": "nfe_auditoria",
                "emissao_id": str(emissao.id),
                "tipo_evento": tipo_evento,
                "outcome": "failure",
            },
        )
