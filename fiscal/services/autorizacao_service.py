# fiscal/services/autorizacao_service.py
"""
Entrada assíncrona da autorização de NF-e.

A requisição do caller só valida, persiste o rascunho e enfileira um job
EMIT; o envio à SEFAZ acontece no worker (fila.worker). O caller acompanha
pelo endpoint de status do job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from rest_framework.exceptions import NotFound

from empresa.models import Empresa
from fila.models import JobTipo
from fila.services.fila_service import enfileirar
from fiscal.exceptions import ERR_EMISSAO_NAO_ENCONTRADA
from fiscal.models import EmissaoStatus, NfeEmissao
from fiscal.sefaz_clients import SefazTechnicalError
from fiscal.sefaz_factory import normalizar_tp_amb
from fiscal.services.emissao_service import preparar_rascunho, validar_rascunho
from fiscal.services.idempotencia_service import (
    envio_sem_confirmacao,
    pode_retomar,
    verificar_idempotencia,
)
from fiscal.services.legado_service import EscopoEmpresas, garantir_protocolo
from vendas.models import PedidoVenda
from vendas.services.status_fiscal_service import sincronizar_status_fiscal

logger = logging.getLogger("nfe.fiscal")

MENSAGEM_JA_AUTORIZADA = "already authorized"


@dataclass
class SolicitacaoAutorizacaoResult:
    """
    job_id presente → aceito para processamento (HTTP 202).
    emissao presente → curto-circuito idempotente, nada enfileirado.
    """

    job_id: Optional[str] = None
    emissao: Optional[NfeEmissao] = None
    mensagem: Optional[str] = None

    @property
    def aceita(self) -> bool:
        return self.job_id is not None


def _carregar_empresa(empresa_id) -> Empresa:
    try:
        return Empresa.objects.get(id=empresa_id)
    except Empresa.DoesNotExist:
        raise NotFound(
            detail={
                "code": "EMPRESA_4040",
                "message": "Empresa não encontrada.",
            }
        )


def _validar_pedido(pedido_id, empresa: Empresa) -> None:
    if pedido_id is None:
        return
    if not PedidoVenda.objects.filter(id=pedido_id, empresa=empresa).exists():
        raise NotFound(
            detail={
                "code": "VENDAS_4040",
                "message": "Pedido não encontrado para a empresa informada.",
            }
        )


def _aceita_nova_entrega(emissao: NfeEmissao) -> bool:
    return pode_retomar(emissao) or envio_sem_confirmacao(emissao)


def _curto_circuito(emissao: NfeEmissao) -> SolicitacaoAutorizacaoResult:
    if emissao.status == EmissaoStatus.AUTORIZADA and not emissao.n_prot:
        try:
            garantir_protocolo(emissao)
        except SefazTechnicalError as exc:
            logger.warning(
                "autorizar_nfe_protocolo_indisponivel",
                extra={
                    "event": "nfe_autorizar",
                    "empresa_id": str(emissao.empresa_id),
                    "chave_acesso": emissao.chave_acesso,
                    "codigo": exc.codigo,
                    "outcome": "protocolo_pendente",
                },
            )

    mensagem = MENSAGEM_JA_AUTORIZADA if emissao.status == EmissaoStatus.AUTORIZADA else emissao.status
    logger.info(
        "autorizar_nfe_curto_circuito",
        extra={
            "event": "nfe_autorizar",
            "empresa_id": str(emissao.empresa_id),
            "chave_acesso": emissao.chave_acesso,
            "emissao_id": str(emissao.id),
            "status": emissao.status,
            "outcome": "idempotente",
        },
    )
    return SolicitacaoAutorizacaoResult(emissao=emissao, mensagem=mensagem)


def solicitar_autorizacao(
    *,
    user,
    rascunho: Dict[str, Any],
    empresa_id,
    ambiente: str,
    pedido_id=None,
) -> SolicitacaoAutorizacaoResult:
    """
    Aceita um pedido de autorização.

    1. Exige vínculo do usuário com a empresa.
    2. Valida rascunho (chave, número, série, UF) e ambiente.
    3. Registro já enviado à SEFAZ → devolve sem enfileirar. Envio sem
       confirmação (falha técnica) ganha um novo EMIT, que reconcilia
       antes de qualquer reenvio.
    4. Persiste o `draft` e espelha `processing` no pedido.
    5. Enfileira EMIT {orderId, companyId, accessKey}.
    """
    EscopoEmpresas.do_usuario(user).exigir(empresa_id)

    empresa = _carregar_empresa(empresa_id)
    chave_acesso, _, _, _ = validar_rascunho(rascunho)
    tp_amb = normalizar_tp_amb(ambiente)
    _validar_pedido(pedido_id, empresa)

    existente = verificar_idempotencia(chave_acesso, empresa.id)
    if existente is not None and not _aceita_nova_entrega(existente):
        return _curto_circuito(existente)

    if existente is None:
        emissao, criada = preparar_rascunho(
            empresa=empresa,
            rascunho=rascunho,
            tp_amb=tp_amb,
            pedido_id=pedido_id,
        )
        if not criada and not _aceita_nova_entrega(emissao):
            return _curto_circuito(emissao)
    else:
        emissao = existente

    pedido_vinculado = emissao.pedido_id or pedido_id
    sincronizar_status_fiscal(
        pedido_id=pedido_vinculado,
        status_emissao=EmissaoStatus.PROCESSANDO,
    )

    job = enfileirar(
        JobTipo.EMIT,
        {
            "orderId": str(pedido_vinculado) if pedido_vinculado else None,
            "companyId": str(empresa.id),
            "accessKey": chave_acesso,
        },
    )

    logger.info(
        "autorizar_nfe_enfileirada",
        extra={
            "event": "nfe_autorizar",
            "empresa_id": str(empresa.id),
            "user_id": getattr(user, "id", None),
            "chave_acesso": chave_acesso,
            "emissao_id": str(emissao.id),
            "job_id": str(job.id),
            "tp_amb": emissao.tp_amb,
            "outcome": "enfileirada",
        },
    )
    return SolicitacaoAutorizacaoResult(job_id=str(job.id))
