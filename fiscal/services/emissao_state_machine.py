# fiscal/services/emissao_state_machine.py

from __future__ import annotations

import logging
from typing import Iterable

from django.core.exceptions import ValidationError

from fiscal.models import EmissaoStatus, NfeEmissao

logger = logging.getLogger("nfe.fiscal")


# draft → processing → {authorized | denied | rejected} → cancelled
# processing também é estado final "ambíguo" (lote na fila da SEFAZ).
TRANSICOES_VALIDAS: dict[str, set[str]] = {
    EmissaoStatus.RASCUNHO: {
        EmissaoStatus.PROCESSANDO,
        EmissaoStatus.AUTORIZADA,
        EmissaoStatus.DENEGADA,
        EmissaoStatus.REJEITADA,
    },
    EmissaoStatus.PROCESSANDO: {
        EmissaoStatus.AUTORIZADA,
        EmissaoStatus.DENEGADA,
        EmissaoStatus.REJEITADA,
    },
    # cancelamento só a partir de autorizada (fluxo de evento separado)
    EmissaoStatus.AUTORIZADA: {
        EmissaoStatus.CANCELADA,
    },
    # rejeitada por falha local (sem envio) pode ser retomada como rascunho
    EmissaoStatus.REJEITADA: {
        EmissaoStatus.RASCUNHO,
    },
    EmissaoStatus.DENEGADA: set(),
    EmissaoStatus.CANCELADA: set(),
}


class EmissaoStateMachine:
    """
    ÚNICO ponto autorizado a trocar o status de NfeEmissao.
    """

    @classmethod
    def pode_transitar(cls, status_atual: str, novo_status: str) -> bool:
        return status_atual == novo_status or novo_status in TRANSICOES_VALIDAS.get(status_atual, set())

    @classmethod
    def mudar_status(
        cls,
        emissao: NfeEmissao,
        novo_status: str,
        *,
        motivo: str | None = None,
        save: bool = False,
    ) -> bool:
        """
        - Valida se a transição é permitida (baseado no status atual).
        - É idempotente (se já estiver no status solicitado, não faz nada).
        - Por padrão só altera o objeto; quem chama persiste junto com os
          demais campos do resultado.

        Retorna True se houve transição.
        """
        status_atual = emissao.status

        if status_atual == novo_status:
            return False

        permitidos: Iterable[str] = TRANSICOES_VALIDAS.get(status_atual, set())
        if novo_status not in permitidos:
            raise ValidationError(
                f"Transição de {status_atual} para {novo_status} não é permitida para NF-e {emissao.chave_acesso}."
            )
        if status_atual == EmissaoStatus.REJEITADA and not emissao.falha_local:
            raise ValidationError(
                f"NF-e {emissao.chave_acesso} rejeitada pela SEFAZ não pode ser reenviada."
            )

        emissao.status = novo_status
        if save:
            emissao.save(update_fields=["status", "updated_at"])

        logger.info(
            "emissao_status_transicao",
            extra={
                "event": "emissao_status_transicao",
                "emissao_id": str(emissao.id),
                "empresa_id": str(emissao.empresa_id),
                "chave_acesso": emissao.chave_acesso,
                "status_anterior": status_atual,
                "status_novo": novo_status,
                "motivo": motivo,
            },
        )
        return True
