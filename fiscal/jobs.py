# fiscal/jobs.py
"""
Handlers de job da fila para o pipeline NF-e.

EMIT      → envia o rascunho persistido (emitir_nfe). Se o lote já foi
            reivindicado numa entrega anterior, reconcilia por consulta
            primeiro e só reenvia quando a SEFAZ não conhece a NF-e
            (106/217).
CONSULTA  → consulta o recibo/chave de uma emissão em processing e
            levanta EmissaoPendenteError enquanto a SEFAZ não resolver.

Rejeição/denegação da SEFAZ é resultado de negócio válido: o handler
retorna normalmente e o job termina em done.
"""

from __future__ import annotations

import logging

from django.conf import settings

from fila.models import Job, JobTipo
from fila.services.fila_service import enfileirar
from fiscal.chave_acesso import exigir_valida
from fiscal.exceptions import EmissaoNaoEncontradaError, EmissaoPendenteError
from fiscal.models import EmissaoStatus, NfeEmissao
from fiscal.services.consulta_service import CSTATS_SEM_RESULTADO, consultar_situacao
from fiscal.services.emissao_service import emitir_nfe

logger = logging.getLogger("nfe.fiscal")

STATUS_SEM_RESULTADO = (EmissaoStatus.RASCUNHO, EmissaoStatus.PROCESSANDO)


def _carregar_emissao(payload: dict) -> NfeEmissao:
    chave_acesso = exigir_valida(payload.get("accessKey"))
    emissao = (
        NfeEmissao.objects
        .select_related("empresa")
        .filter(empresa_id=payload.get("companyId"), chave_acesso=chave_acesso)
        .first()
    )
    if emissao is None:
        raise EmissaoNaoEncontradaError()
    return emissao


def _agendar_consulta(job: Job) -> Job:
    atraso = int(getattr(settings, "FILA_CONSULTA_ATRASO_SEGUNDOS", 10))
    return enfileirar(JobTipo.CONSULTA, dict(job.payload), atraso_segundos=atraso)


def _emitir(emissao: NfeEmissao, *, reenviar: bool = False) -> str:
    resultado = emitir_nfe(
        empresa=emissao.empresa,
        rascunho=emissao.rascunho or {},
        tp_amb=emissao.tp_amb,
        pedido_id=emissao.pedido_id,
        reenviar=reenviar,
    )
    return resultado.status


def processar_emit(job: Job) -> None:
    emissao = _carregar_emissao(job.payload)

    if emissao.foi_submetida and emissao.status in STATUS_SEM_RESULTADO:
        # lote já enviado sem resultado conhecido
        logger.info(
            "job_emit_reconciliando",
            extra={
                "event": "nfe_job",
                "job_id": str(job.id),
                "empresa_id": str(emissao.empresa_id),
                "chave_acesso": emissao.chave_acesso,
                "status": emissao.status,
            },
        )
        consulta = consultar_situacao(emissao)
        status = emissao.status
        if status in STATUS_SEM_RESULTADO and consulta.c_stat in CSTATS_SEM_RESULTADO:
            logger.warning(
                "job_emit_reenviando",
                extra={
                    "event": "nfe_job",
                    "job_id": str(job.id),
                    "empresa_id": str(emissao.empresa_id),
                    "chave_acesso": emissao.chave_acesso,
                    "c_stat": consulta.c_stat,
                    "tentativas": emissao.tentativas,
                },
            )
            status = _emitir(emissao, reenviar=True)
    else:
        status = _emitir(emissao)

    if status == EmissaoStatus.PROCESSANDO:
        consulta = _agendar_consulta(job)
        logger.info(
            "job_emit_consulta_agendada",
            extra={
                "event": "nfe_job",
                "job_id": str(job.id),
                "consulta_job_id": str(consulta.id),
                "chave_acesso": emissao.chave_acesso,
                "outcome": "processing",
            },
        )
    elif status == EmissaoStatus.RASCUNHO:
        raise EmissaoPendenteError("Envio anterior sem confirmação da SEFAZ.")


def processar_consulta(job: Job) -> None:
    emissao = _carregar_emissao(job.payload)
    if emissao.status not in STATUS_SEM_RESULTADO:
        return

    consultar_situacao(emissao)
    if emissao.status in STATUS_SEM_RESULTADO:
        raise EmissaoPendenteError()
