# vendas/models/pedido_models.py

import uuid

from django.db import models

from empresa.models import Empresa


class StatusFiscalPedido(models.TextChoices):
    NENHUM = "none", "Sem documento fiscal"
    PROCESSANDO = "processing", "Emissão em processamento"
    AUTORIZADO = "authorized", "NF-e autorizada"
    CANCELADO = "cancelled", "NF-e cancelada"
    ERRO = "error", "Erro fiscal"


class PedidoVenda(models.Model):
    """
    Pedido de venda que origina a NF-e.

    O status_fiscal é derivado: espelha o status da emissão após cada
    transição, para que o restante da aplicação não consulte o pipeline
    fiscal diretamente.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    empresa = models.ForeignKey(
        Empresa,
        on_delete=models.PROTECT,
        related_name="pedidos",
        help_text="Empresa emitente do pedido.",
    )

    numero = models.PositiveIntegerField(
        help_text="Número do pedido na empresa.",
    )

    status_fiscal = models.CharField(
        max_length=20,
        choices=StatusFiscalPedido.choices,
        default=StatusFiscalPedido.NENHUM,
        help_text="Espelho do status da NF-e vinculada.",
    )

    codigo_erro_fiscal = models.CharField(
        max_length=20,
        null=True,
        blank=True,
        help_text="Último cStat de falha da emissão vinculada.",
    )

    mensagem_erro_fiscal = models.TextField(
        null=True,
        blank=True,
        help_text="Última mensagem de falha da emissão vinculada.",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "pedido_venda"
        unique_together = (("empresa", "numero"),)
        indexes = [
            models.Index(fields=["empresa", "status_fiscal"]),
        ]

    def __str__(self):
        return f"Pedido {self.numero} ({self.status_fiscal})"
