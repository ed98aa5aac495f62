# vendas/services/status_fiscal_service.py

from __future__ import annotations

import logging
from typing import Optional

from django.db import transaction

from vendas.models import PedidoVenda, StatusFiscalPedido

logger = logging.getLogger("nfe.fiscal")


# status da emissão (fiscal.EmissaoStatus) -> status_fiscal do pedido
MAPA_STATUS_FISCAL: dict[str, str] = {
    "draft": StatusFiscalPedido.PROCESSANDO,
    "processing": StatusFiscalPedido.PROCESSANDO,
    "authorized": StatusFiscalPedido.AUTORIZADO,
    "cancelled": StatusFiscalPedido.CANCELADO,
    "denied": StatusFiscalPedido.ERRO,
    "rejected": StatusFiscalPedido.ERRO,
}


def sincronizar_status_fiscal(
    *,
    pedido_id,
    status_emissao: str,
    codigo: Optional[str] = None,
    mensagem: Optional[str] = None,
) -> bool:
    """
    Atualiza o espelho fiscal do pedido a partir do status da emissão.

    Best-effort: qualquer falha é registrada em log e NÃO é propagada; a
    emissão é a fonte da verdade. Retorna True se o pedido foi atualizado.
    """
    if pedido_id is None:
        return False

    novo = MAPA_STATUS_FISCAL.get(status_emissao, StatusFiscalPedido.ERRO)
    campos = {"status_fiscal": novo}
    if novo == StatusFiscalPedido.ERRO:
        campos["codigo_erro_fiscal"] = codigo
        campos["mensagem_erro_fiscal"] = mensagem
    else:
        campos["codigo_erro_fiscal"] = None
        campos["mensagem_erro_fiscal"] = None

    try:
        with transaction.atomic():
            atualizados = PedidoVenda.objects.filter(pk=pedido_id).update(**campos)
    except Exception:
        logger.exception(
            "pedido_status_fiscal_falha_sync",
            extra={
                "event": "pedido_status_fiscal",
                "pedido_id": str(pedido_id),
                "status_emissao": status_emissao,
                "outcome": "failure",
            },
        )
        return False

    logger.info(
        "pedido_status_fiscal_sincronizado",
        extra={
            "event": "pedido_status_fiscal",
            "pedido_id": str(pedido_id),
            "status_emissao": status_emissao,
            "status_fiscal": novo,
            "outcome": "success" if atualizados else "pedido_nao_encontrado",
        },
    )
    return bool(atualizados)
