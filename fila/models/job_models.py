import uuid

from django.db import models
from django.utils import timezone


class JobTipo(models.TextChoices):
    EMIT = "EMIT", "Emissão NF-e"
    CONSULTA = "CONSULTA", "Consulta de recibo NF-e"


class JobStatus(models.TextChoices):
    PENDENTE = "pending", "Pendente"
    PROCESSANDO = "processing", "Em processamento"
    CONCLUIDO = "done", "Concluído"
    ERRO = "error", "Erro"


class Job(models.Model):
    """
    Entrada da fila de processamento assíncrono.

    Criada pelo caller e consumida uma única vez por um worker. Depois de
    criada, só o worker altera o registro; o caller apenas consulta.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    job_type = models.CharField(max_length=20, choices=JobTipo.choices)
    payload = models.JSONField(default=dict)

    status = models.CharField(
        max_length=20,
        choices=JobStatus.choices,
        default=JobStatus.PENDENTE,
    )

    tentativas = models.PositiveIntegerField(default=0)
    max_tentativas = models.PositiveIntegerField(default=5)
    last_error = models.TextField(blank=True, null=True)

    agendado_para = models.DateTimeField(
        default=timezone.now,
        help_text="Não é processado antes deste instante (backoff).",
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "fila_job"
        indexes = [
            models.Index(fields=["status", "agendado_para"]),
            models.Index(fields=["job_type"]),
        ]

    def __str__(self):
        return f"Job {self.job_type} {self.id} ({self.status})"
