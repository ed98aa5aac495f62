# fiscal/services/emissao_service.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from empresa.models import Empresa
from fiscal.assinador import AssinadorProtocol, get_assinador
from fiscal.chave_acesso import UfCodigo, derivar_uf, exigir_valida
from fiscal.exceptions import RascunhoInvalidoError, SigningFailedError
from fiscal.models import EmissaoStatus, NfeEmissao
from fiscal.sefaz_clients import SefazClientProtocol, SefazTechnicalError
from fiscal.sefaz_factory import get_sefaz_client, normalizar_tp_amb
from fiscal.services import certificado_service
from fiscal.services.emissao_state_machine import EmissaoStateMachine
from fiscal.services.emissao_store import (
    TIPO_EVENTO_POR_STATUS,
    aplicar_resultado,
    gerar_id_lote,
    obter_ou_criar,
    registrar_assinatura,
    registrar_auditoria,
    registrar_falha_assinatura,
    reivindicar_envio,
)
from fiscal.services.idempotencia_service import (
    pode_retomar,
    sem_resultado_da_sefaz,
    verificar_idempotencia,
)
from fiscal.services.status_service import interpretar
from vendas.services.status_fiscal_service import sincronizar_status_fiscal

logger = logging.getLogger("nfe.fiscal")


# ---------------------------------------------------------------------------
# DTO de saída
# ---------------------------------------------------------------------------

@dataclass
class EmitirNfeResult:
    """
    Retorno da emissão NF-e, sempre construído a partir do registro
    canônico persistido.

    idempotente=True indica que nenhum envio foi feito nesta chamada
    (registro já existente devolvido como está).
    """

    emissao_id: str
    empresa_id: str
    chave_acesso: str
    numero: int
    serie: int
    status: str
    uf: str
    tp_amb: str

    c_stat: Optional[str] = None
    x_motivo: Optional[str] = None
    n_prot: Optional[str] = None
    dh_recbto: Optional[str] = None
    n_recibo: Optional[str] = None
    idempotente: bool = False


def _build_result_from_emissao(emissao: NfeEmissao, *, idempotente: bool = False) -> EmitirNfeResult:
    return EmitirNfeResult(
        emissao_id=str(emissao.id),
        empresa_id=str(emissao.empresa_id),
        chave_acesso=emissao.chave_acesso,
        numero=emissao.numero,
        serie=emissao.serie,
        status=emissao.status,
        uf=emissao.uf,
        tp_amb=emissao.tp_amb,
        c_stat=emissao.c_stat,
        x_motivo=emissao.x_motivo,
        n_prot=emissao.n_prot,
        dh_recbto=emissao.dh_recbto,
        n_recibo=emissao.n_recibo,
        idempotente=idempotente,
    )


# ---------------------------------------------------------------------------
# Helpers internos
# ---------------------------------------------------------------------------

def _exigir_inteiro_positivo(rascunho: Dict[str, Any], campo: str) -> int:
    valor = rascunho.get(campo)
    try:
        numero = int(valor)
    except (TypeError, ValueError):
        raise RascunhoInvalidoError(f"Campo '{campo}' do rascunho deve ser inteiro.")
    if numero <= 0:
        raise RascunhoInvalidoError(f"Campo '{campo}' do rascunho deve ser positivo.")
    return numero


def validar_rascunho(rascunho: Dict[str, Any]) -> Tuple[str, int, int, UfCodigo]:
    """
    Valida o rascunho antes de qualquer escrita ou chamada externa.

    Retorna (chave_acesso, numero, serie, uf).
    """
    if not isinstance(rascunho, dict):
        raise RascunhoInvalidoError("Rascunho da NF-e deve ser um objeto.")

    chave_acesso = exigir_valida(rascunho.get("chave_acesso"))
    numero = _exigir_inteiro_positivo(rascunho, "numero")
    serie = _exigir_inteiro_positivo(rascunho, "serie")
    uf = derivar_uf(chave_acesso)
    return chave_acesso, numero, serie, uf


def preparar_rascunho(
    *,
    empresa: Empresa,
    rascunho: Dict[str, Any],
    tp_amb: str,
    pedido_id=None,
) -> Tuple[NfeEmissao, bool]:
    """
    Persiste o registro `draft` (tentativas = 0) para a chave do rascunho.

    Havendo registro anterior, ele é devolvido sem alteração. Retorna
    (emissao, criada).
    """
    chave_acesso, numero, serie, uf = validar_rascunho(rascunho)
    tp_amb = normalizar_tp_amb(tp_amb)

    return obter_ou_criar(
        empresa.id,
        chave_acesso,
        {
            "numero": numero,
            "serie": serie,
            "status": EmissaoStatus.RASCUNHO,
            "c_uf": uf.codigo,
            "uf": uf.sigla,
            "tp_amb": tp_amb,
            "rascunho": rascunho,
            "pedido_id": pedido_id,
            "tentativas": 0,
        },
    )


def _sincronizar_pedido(emissao: NfeEmissao) -> None:
    sincronizar_status_fiscal(
        pedido_id=emissao.pedido_id,
        status_emissao=emissao.status,
        codigo=emissao.c_stat or emissao.falha_local,
        mensagem=emissao.x_motivo,
    )


def _retorno_idempotente(emissao: NfeEmissao, *, motivo: str, user=None) -> EmitirNfeResult:
    logger.info(
        "emitir_nfe_idempotente_reuso_emissao",
        extra={
            "event": "nfe_emitir",
            "empresa_id": str(emissao.empresa_id),
            "user_id": getattr(user, "id", None),
            "chave_acesso": emissao.chave_acesso,
            "emissao_id": str(emissao.id),
            "status": emissao.status,
            "outcome": motivo,
        },
    )
    return _build_result_from_emissao(emissao, idempotente=True)


# ---------------------------------------------------------------------------
# Função de domínio principal
# ---------------------------------------------------------------------------

def emitir_nfe(
    *,
    empresa: Empresa,
    rascunho: Dict[str, Any],
    tp_amb: str,
    pedido_id=None,
    user=None,
    sefaz_client: Optional[SefazClientProtocol] = None,
    assinador: Optional[AssinadorProtocol] = None,
    reenviar: bool = False,
) -> EmitirNfeResult:
    """
    Fluxo de emissão NF-e.

      1. Valida o rascunho e consulta a idempotência por (empresa, chave):
         registro já enviado é devolvido sem novo envio.
      2. Persiste o `draft` com tentativas = 0 antes de qualquer rede.
      3. Deriva a UF da chave e resolve o certificado A1 (falha aqui
         aborta sem contato com a SEFAZ).
      4. Assina; falha vira `rejected` com falha_local = SIGNING_FAILED.
      5. Reivindica o envio (compare-and-set sobre tentativas) e envia o
         lote com um único idLote.
      6. Interpreta o retorno e persiste status, protocolo e xMotivo.
      7. Espelha o status no pedido (best-effort).

    Falha técnica da SEFAZ (SefazTechnicalError) é propagada: o registro
    fica em `draft` com tentativas > 0. A reentrega do job reconcilia por
    consulta e só chama com reenviar=True quando a SEFAZ responde que não
    conhece a NF-e; nesse caso o lote sai de novo com outro idLote.
    """
    chave_acesso, _, _, uf = validar_rascunho(rascunho)
    tp_amb = normalizar_tp_amb(tp_amb)
    user_id = getattr(user, "id", None)

    logger.info(
        "emitir_nfe_iniciado",
        extra={
            "event": "nfe_emitir",
            "empresa_id": str(empresa.id),
            "user_id": user_id,
            "chave_acesso": chave_acesso,
            "tp_amb": tp_amb,
        },
    )

    # -------------------------------------------------------------------
    # 1) Idempotência
    # -------------------------------------------------------------------
    existente = verificar_idempotencia(chave_acesso, empresa.id)
    if existente is not None and not pode_retomar(existente):
        if not (reenviar and sem_resultado_da_sefaz(existente)):
            return _retorno_idempotente(existente, motivo="idempotente", user=user)

    # -------------------------------------------------------------------
    # 2) Rascunho persistido
    # -------------------------------------------------------------------
    if existente is None:
        emissao, criada = preparar_rascunho(
            empresa=empresa,
            rascunho=rascunho,
            tp_amb=tp_amb,
            pedido_id=pedido_id,
        )
        if not criada and not pode_retomar(emissao):
            return _retorno_idempotente(emissao, motivo="conflito_resolvido", user=user)
    else:
        emissao = existente

    if emissao.status == EmissaoStatus.REJEITADA:
        # falha local anterior (assinatura): retoma como rascunho
        EmissaoStateMachine.mudar_status(emissao, EmissaoStatus.RASCUNHO, motivo="retomada", save=True)

    # -------------------------------------------------------------------
    # 3) Certificado A1
    # -------------------------------------------------------------------
    credencial = certificado_service.carregar(empresa.id)

    # -------------------------------------------------------------------
    # 4) Assinatura
    # -------------------------------------------------------------------
    assinador = assinador or get_assinador()
    dados_assinatura = emissao.rascunho or rascunho
    try:
        xml_assinado = assinador.assinar(dados_assinatura, credencial)
    except Exception as exc:
        mensagem = f"Falha ao assinar o XML da NF-e: {exc}"
        registrar_falha_assinatura(emissao, mensagem)
        registrar_auditoria(emissao, "FALHA_ASSINATURA", user_id=user_id)
        _sincronizar_pedido(emissao)
        logger.error(
            "emitir_nfe_falha_assinatura",
            extra={
                "event": "nfe_emitir",
                "empresa_id": str(empresa.id),
                "chave_acesso": chave_acesso,
                "emissao_id": str(emissao.id),
                "erro": type(exc).__name__,
                "outcome": "signing_failed",
            },
        )
        raise SigningFailedError() from exc

    registrar_assinatura(emissao, xml_assinado)

    # -------------------------------------------------------------------
    # 5) Envio do lote
    # -------------------------------------------------------------------
    id_lote = gerar_id_lote()
    if not reivindicar_envio(emissao, id_lote):
        emissao.refresh_from_db()
        return _retorno_idempotente(emissao, motivo="envio_concorrente", user=user)

    client = sefaz_client or get_sefaz_client(uf.sigla, emissao.tp_amb)
    try:
        resposta = client.enviar_lote(
            xml_assinado,
            uf=uf.sigla,
            tp_amb=emissao.tp_amb,
            id_lote=id_lote,
        )
    except SefazTechnicalError as exc:
        logger.error(
            "emitir_nfe_erro_tecnico_sefaz",
            extra={
                "event": "nfe_emitir",
                "empresa_id": str(empresa.id),
                "chave_acesso": chave_acesso,
                "emissao_id": str(emissao.id),
                "id_lote": id_lote,
                "codigo": exc.codigo,
                "mensagem": str(exc),
                "http_status": exc.http_status,
                "outcome": "erro_tecnico",
            },
        )
        raise

    # -------------------------------------------------------------------
    # 6) Interpretação + persistência do resultado
    # -------------------------------------------------------------------
    resultado = interpretar(resposta)
    aplicar_resultado(emissao, resultado, prot_nfe_xml=resposta.prot_nfe_xml, motivo=f"lote {id_lote}")
    registrar_auditoria(emissao, TIPO_EVENTO_POR_STATUS[emissao.status], user_id=user_id)

    # -------------------------------------------------------------------
    # 7) Espelho no pedido
    # -------------------------------------------------------------------
    _sincronizar_pedido(emissao)

    logger.info(
        "emitir_nfe_finalizada",
        extra={
            "event": "nfe_emitir",
            "empresa_id": str(empresa.id),
            "user_id": user_id,
            "chave_acesso": chave_acesso,
            "emissao_id": str(emissao.id),
            "id_lote": id_lote,
            "status": emissao.status,
            "c_stat": emissao.c_stat,
            "outcome": emissao.status,
        },
    )
    return _build_result_from_emissao(emissao)
