# fiscal/services/consulta_service.py
"""
Consulta de situação de uma NF-e na SEFAZ e reconciliação do registro.

- Recibo presente → consulta por recibo (NFeRetAutorizacao).
- Sem recibo → consulta por chave (NFeConsultaProtocolo).
- UF e tpAmb vêm sempre do registro canônico, nunca do chamador.

O resultado só é persistido quando a transição é permitida: uma NF-e
autorizada nunca volta para outro status (exceto cancelada) e registros
com rejeição/denegação da SEFAZ são terminais.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fiscal.models import NfeEmissao
from fiscal.sefaz_clients import SefazClientProtocol, SefazTechnicalError
from fiscal.sefaz_factory import get_sefaz_client
from fiscal.services.emissao_state_machine import EmissaoStateMachine
from fiscal.services.emissao_store import (
    TIPO_EVENTO_POR_STATUS,
    aplicar_resultado,
    registrar_auditoria,
)
from fiscal.services.status_service import interpretar_consulta
from vendas.services.status_fiscal_service import sincronizar_status_fiscal

logger = logging.getLogger("nfe.fiscal")

METODO_RECIBO = "receipt"
METODO_PROTOCOLO = "protocol"

# 106 lote não localizado, 217 NF-e não consta na base da SEFAZ:
# a consulta não tem resultado, o registro fica como está
CSTATS_SEM_RESULTADO = frozenset({"106", "217"})


@dataclass
class ConsultaResult:
    success: bool
    status: str
    c_stat: Optional[str]
    x_motivo: Optional[str]
    n_prot: Optional[str]
    dh_recbto: Optional[str]
    metodo: str
    atualizada: bool = False
    emissao: Optional[NfeEmissao] = None


def consultar_situacao(
    emissao: NfeEmissao,
    *,
    sefaz_client: Optional[SefazClientProtocol] = None,
    user=None,
) -> ConsultaResult:
    """
    Consulta a SEFAZ para a emissão e aplica o resultado quando cabível.

    SefazTechnicalError é registrado em log e propagado.
    """
    metodo = METODO_RECIBO if emissao.n_recibo else METODO_PROTOCOLO
    client = sefaz_client or get_sefaz_client(emissao.uf, emissao.tp_amb)

    try:
        if metodo == METODO_RECIBO:
            resposta = client.consultar_recibo(emissao.n_recibo, uf=emissao.uf, tp_amb=emissao.tp_amb)
        else:
            resposta = client.consultar_chave(emissao.chave_acesso, uf=emissao.uf, tp_amb=emissao.tp_amb)
    except SefazTechnicalError as exc:
        logger.error(
            "consultar_nfe_erro_tecnico_sefaz",
            extra={
                "event": "nfe_consultar",
                "empresa_id": str(emissao.empresa_id),
                "chave_acesso": emissao.chave_acesso,
                "metodo": metodo,
                "codigo": exc.codigo,
                "mensagem": str(exc),
                "http_status": exc.http_status,
                "outcome": "erro_tecnico",
            },
        )
        raise

    resultado = interpretar_consulta(resposta, status_atual=emissao.status)
    status_anterior = emissao.status

    aplicar = (
        resultado.c_stat not in CSTATS_SEM_RESULTADO
        and EmissaoStateMachine.pode_transitar(status_anterior, resultado.status)
    )
    if aplicar:
        aplicar_resultado(
            emissao,
            resultado,
            prot_nfe_xml=resposta.prot_nfe_xml,
            motivo=f"consulta por {metodo}",
        )

    user_id = getattr(user, "id", None)
    registrar_auditoria(emissao, "CONSULTA_SITUACAO", user_id=user_id)

    mudou = emissao.status != status_anterior
    if mudou:
        registrar_auditoria(emissao, TIPO_EVENTO_POR_STATUS[emissao.status], user_id=user_id)
        sincronizar_status_fiscal(
            pedido_id=emissao.pedido_id,
            status_emissao=emissao.status,
            codigo=emissao.c_stat,
            mensagem=emissao.x_motivo,
        )

    logger.info(
        "consultar_nfe_finalizada",
        extra={
            "event": "nfe_consultar",
            "empresa_id": str(emissao.empresa_id),
            "chave_acesso": emissao.chave_acesso,
            "metodo": metodo,
            "c_stat": resultado.c_stat,
            "status_anterior": status_anterior,
            "status": emissao.status,
            "outcome": "atualizada" if aplicar else "sem_alteracao",
        },
    )

    return ConsultaResult(
        success=True,
        status=emissao.status,
        c_stat=resultado.c_stat,
        x_motivo=resultado.x_motivo,
        n_prot=emissao.n_prot or resultado.n_prot,
        dh_recbto=emissao.dh_recbto or resultado.dh_recbto,
        metodo=metodo,
        atualizada=aplicar,
        emissao=emissao,
    )
