# fila/worker.py
"""
Worker da fila de jobs.

Os handlers são resolvidos por settings.FILA_HANDLERS
({job_type: dotted path}). A classificação da falha vem do atributo
``retentavel`` da exceção; exceções sem o atributo são tratadas como
transitórias.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional

from django.conf import settings
from django.utils.module_loading import import_string

from fila.models import Job
from fila.services.fila_service import buscar_proximo_job, concluir_job, falhar_job

logger = logging.getLogger("nfe.fila")

Handler = Callable[[Job], None]


def carregar_handlers() -> Dict[str, Handler]:
    return {
        job_type: import_string(caminho)
        for job_type, caminho in getattr(settings, "FILA_HANDLERS", {}).items()
    }


class JobWorker:
    def __init__(
        self,
        *,
        handlers: Optional[Dict[str, Handler]] = None,
        intervalo: Optional[float] = None,
    ):
        self.handlers = handlers if handlers is not None else carregar_handlers()
        self.intervalo = float(
            intervalo if intervalo is not None else getattr(settings, "FILA_INTERVALO_POLLING", 5)
        )
        self._parar = threading.Event()

    def executar_uma_vez(self) -> Optional[Job]:
        """Processa no máximo um job. Retorna o job processado ou None."""
        job = buscar_proximo_job()
        if job is None:
            return None

        handler = self.handlers.get(job.job_type)
        if handler is None:
            falhar_job(job, f"job_type sem handler: {job.job_type}", retentavel=False)
            return job

        logger.info(
            "job_iniciado",
            extra={
                "event": "fila_job",
                "job_id": str(job.id),
                "job_type": job.job_type,
                "tentativas": job.tentativas,
            },
        )

        try:
            handler(job)
        except Exception as exc:
            retentavel = bool(getattr(exc, "retentavel", True))
            logger.warning(
                "job_handler_falhou",
                exc_info=not hasattr(exc, "retentavel"),
                extra={
                    "event": "fila_job",
                    "job_id": str(job.id),
                    "job_type": job.job_type,
                    "erro": type(exc).__name__,
                    "retentavel": retentavel,
                },
            )
            falhar_job(job, exc, retentavel=retentavel)
        else:
            concluir_job(job)
        return job

    def processar_pendentes(self, limite: Optional[int] = None) -> int:
        processados = 0
        while limite is None or processados < limite:
            if self._parar.is_set() or self.executar_uma_vez() is None:
                break
            processados += 1
        return processados

    def iniciar(self) -> None:
        self._parar.clear()
        logger.info("worker_iniciado", extra={"event": "fila_worker", "intervalo": self.intervalo})
        while not self._parar.is_set():
            if not self.processar_pendentes():
                self._parar.wait(self.intervalo)
        logger.info("worker_parado", extra={"event": "fila_worker"})

    def parar(self) -> None:
        self._parar.set()
