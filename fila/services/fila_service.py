# fila/services/fila_service.py

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from fila.models import Job, JobStatus

logger = logging.getLogger("nfe.fila")

TAMANHO_MAX_ERRO = 2000


def calcular_backoff(tentativas: int) -> int:
    """
    Segundos até a próxima tentativa: base * 2^(n-1), limitado ao teto.
    """
    base = int(getattr(settings, "FILA_BACKOFF_BASE_SEGUNDOS", 2))
    teto = int(getattr(settings, "FILA_BACKOFF_MAX_SEGUNDOS", 300))
    expoente = max(tentativas - 1, 0)
    return min(base * (2 ** expoente), teto)


def enfileirar(
    job_type: str,
    payload: Dict[str, Any],
    *,
    atraso_segundos: int = 0,
    max_tentativas: Optional[int] = None,
) -> Job:
    job = Job.objects.create(
        job_type=job_type,
        payload=payload,
        status=JobStatus.PENDENTE,
        max_tentativas=max_tentativas or int(getattr(settings, "FILA_MAX_TENTATIVAS", 5)),
        agendado_para=timezone.now() + timedelta(seconds=atraso_segundos),
    )
    logger.info(
        "job_enfileirado",
        extra={
            "event": "fila_job",
            "job_id": str(job.id),
            "job_type": job_type,
            "empresa_id": payload.get("companyId"),
            "chave_acesso": payload.get("accessKey"),
            "atraso_segundos": atraso_segundos,
            "outcome": "pending",
        },
    )
    return job


def _limite_processamento(agora):
    timeout = int(getattr(settings, "FILA_TIMEOUT_PROCESSAMENTO", 600))
    return agora - timedelta(seconds=timeout)


def _encerrar_abandonados_sem_tentativas(agora) -> int:
    """
    Job abandonado em processing que já gastou todas as tentativas vai
    para error em vez de ser entregue de novo.
    """
    encerrados = (
        Job.objects
        .filter(
            status=JobStatus.PROCESSANDO,
            updated_at__lt=_limite_processamento(agora),
            tentativas__gte=F("max_tentativas"),
        )
        .update(
            status=JobStatus.ERRO,
            last_error="Tempo de processamento esgotado.",
            updated_at=agora,
        )
    )
    if encerrados:
        logger.error(
            "jobs_abandonados_encerrados",
            extra={"event": "fila_job", "quantidade": encerrados, "outcome": "error"},
        )
    return encerrados


def buscar_proximo_job() -> Optional[Job]:
    """
    Reivindica o próximo job entregável: pendente e vencido, ou em
    processing sem atualização há mais de FILA_TIMEOUT_PROCESSAMENTO
    (worker morreu entre a reivindicação e o resultado).

    FOR UPDATE SKIP LOCKED onde o banco suporta; o update condicional em
    status e updated_at garante que só um worker leva o job mesmo sem
    lock de linha.
    """
    agora = timezone.now()
    limite = _limite_processamento(agora)
    with transaction.atomic():
        _encerrar_abandonados_sem_tentativas(agora)

        job = (
            Job.objects
            .select_for_update(skip_locked=True)
            .filter(
                Q(status=JobStatus.PENDENTE, agendado_para__lte=agora)
                | Q(status=JobStatus.PROCESSANDO, updated_at__lt=limite)
            )
            .order_by("agendado_para", "created_at")
            .first()
        )
        if job is None:
            return None

        reivindicados = (
            Job.objects
            .filter(pk=job.pk, status=job.status, updated_at=job.updated_at)
            .update(status=JobStatus.PROCESSANDO, tentativas=F("tentativas") + 1, updated_at=agora)
        )
        if not reivindicados:
            return None

    if job.status == JobStatus.PROCESSANDO:
        logger.warning(
            "job_reentregue_apos_timeout",
            extra={
                "event": "fila_job",
                "job_id": str(job.id),
                "job_type": job.job_type,
                "tentativas": job.tentativas + 1,
                "outcome": "redelivery",
            },
        )

    job.refresh_from_db()
    return job


def concluir_job(job: Job) -> Job:
    job.status = JobStatus.CONCLUIDO
    job.last_error = None
    job.save(update_fields=["status", "last_error", "updated_at"])
    logger.info(
        "job_concluido",
        extra={
            "event": "fila_job",
            "job_id": str(job.id),
            "job_type": job.job_type,
            "tentativas": job.tentativas,
            "outcome": "done",
        },
    )
    return job


def falhar_job(job: Job, erro: BaseException | str, *, retentavel: bool) -> Job:
    """
    Retentável e com tentativas sobrando → volta para pending com backoff.
    Caso contrário → error.
    """
    mensagem = str(erro)[:TAMANHO_MAX_ERRO] or type(erro).__name__
    job.last_error = mensagem

    if retentavel and job.tentativas < job.max_tentativas:
        atraso = calcular_backoff(job.tentativas)
        job.status = JobStatus.PENDENTE
        job.agendado_para = timezone.now() + timedelta(seconds=atraso)
        job.save(update_fields=["status", "last_error", "agendado_para", "updated_at"])
        logger.warning(
            "job_reagendado",
            extra={
                "event": "fila_job",
                "job_id": str(job.id),
                "job_type": job.job_type,
                "tentativas": job.tentativas,
                "atraso_segundos": atraso,
                "erro": mensagem,
                "outcome": "retry",
            },
        )
        return job

    job.status = JobStatus.ERRO
    job.save(update_fields=["status", "last_error", "updated_at"])
    logger.error(
        "job_falhou",
        extra={
            "event": "fila_job",
            "job_id": str(job.id),
            "job_type": job.job_type,
            "tentativas": job.tentativas,
            "retentavel": retentavel,
            "erro": mensagem,
            "outcome": "error",
        },
    )
    return job


def obter_status_job(job_id, *, escopo=None) -> Dict[str, Any]:
    """
    Estado do job para polling; job inexistente vira status "unknown".

    Com `escopo` (qualquer objeto com `permite(empresa_id)`), job de
    empresa fora dele também responde "unknown".
    """
    try:
        job_uuid = uuid.UUID(str(job_id))
    except (TypeError, ValueError):
        return {"status": "unknown"}

    job = Job.objects.filter(id=job_uuid).only("status", "last_error", "updated_at", "payload").first()
    if job is None:
        return {"status": "unknown"}
    if escopo is not None and not escopo.permite((job.payload or {}).get("companyId")):
        return {"status": "unknown"}

    return {
        "status": job.status,
        "last_error": job.last_error,
        "updated_at": job.updated_at,
    }
