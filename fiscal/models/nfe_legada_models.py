import uuid

from django.db import models
from django.utils import timezone


class NfeLegada(models.Model):
    """
    Registro de NF-e da geração anterior do schema (por pedido).

    Sem unicidade global de chave. Somente leitura para o pipeline: a única
    escrita derivada dele é o backfill único para NfeEmissao.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    pedido = models.ForeignKey(
        "vendas.PedidoVenda",
        on_delete=models.CASCADE,
        related_name="nfes_legadas",
    )

    chave = models.CharField(
        max_length=60,
        blank=True,
        null=True,
        help_text="Chave de acesso como foi gravada (pode conter máscara).",
    )
    numero = models.PositiveIntegerField(blank=True, null=True)
    serie = models.PositiveIntegerField(blank=True, null=True)
    status = models.CharField(max_length=30, blank=True, null=True)
    emitida_em = models.DateTimeField(blank=True, null=True)

    detalhes = models.JSONField(
        blank=True,
        null=True,
        help_text="Blob livre com a resposta da SEFAZ (formatos variados).",
    )

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "nfe_legada"
        indexes = [
            models.Index(fields=["chave"]),
            models.Index(fields=["pedido"]),
        ]

    def __str__(self):
        return f"NF-e legada {self.numero}/{self.serie} - {self.chave}"
