# fiscal/services/legado_service.py
"""
Reconciliação de registros NF-e legados (NfeLegada) com o registro
canônico (NfeEmissao).

O legado nunca recebe escrita nova. Quando uma busca só encontra o
registro legado, ele é canonizado uma única vez (upsert por
(empresa, chave_acesso)); nas buscas seguintes o canônico é devolvido.

Leituras entre empresas passam SEMPRE por um EscopoEmpresas, a lista
explícita de empresas que o chamador pode acessar.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from django.db.models import Q
from rest_framework.exceptions import PermissionDenied

from fiscal.chave_acesso import derivar_uf, normalizar, validar
from fiscal.exceptions import ERR_NO_PERMISSION, EmissaoNaoEncontradaError
from fiscal.models import EmissaoStatus, NfeEmissao, NfeLegada, OrigemEmissao
from fiscal.sefaz_clients import SefazClientProtocol
from fiscal.sefaz_factory import get_sefaz_client
from fiscal.services.emissao_store import obter_ou_criar, registrar_auditoria
from fiscal.services.status_service import extrair_n_prot_texto, interpretar
from usuario.models import UserEmpresa

logger = logging.getLogger("nfe.fiscal")


# ---------------------------------------------------------------------------
# Escopo de empresas (capability)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EscopoEmpresas:
    """
    Conjunto fechado de empresas que o chamador pode ler.

    É o único caminho para consultas que atravessam empresas; não existe
    acesso "admin" implícito.
    """

    empresa_ids: frozenset

    @classmethod
    def do_usuario(cls, user) -> "EscopoEmpresas":
        ids = UserEmpresa.objects.filter(user=user).values_list("empresa_id", flat=True)
        return cls(empresa_ids=frozenset(str(i) for i in ids))

    @classmethod
    def de_ids(cls, empresa_ids: Iterable) -> "EscopoEmpresas":
        return cls(empresa_ids=frozenset(str(i) for i in empresa_ids))

    def permite(self, empresa_id) -> bool:
        return empresa_id is not None and str(empresa_id) in self.empresa_ids

    def exigir(self, empresa_id) -> None:
        if not self.permite(empresa_id):
            raise PermissionDenied(
                detail={
                    "code": ERR_NO_PERMISSION,
                    "message": "Usuário sem permissão para a empresa informada.",
                }
            )

    def emissoes(self):
        return NfeEmissao.objects.filter(empresa_id__in=self.empresa_ids)

    def legadas(self):
        return NfeLegada.objects.select_related("pedido", "pedido__empresa").filter(
            pedido__empresa_id__in=self.empresa_ids
        )


# ---------------------------------------------------------------------------
# Protocolo no blob legado
# ---------------------------------------------------------------------------

# caminhos conhecidos do nProt em `detalhes`, na ordem de preferência
CAMINHOS_N_PROT_LEGADO: Sequence[Sequence[str]] = (
    ("protNFe", "infProt", "nProt"),
    ("retEvento", "infEvento", "nProt"),
    ("authorization", "nProt"),
    ("nProt",),
    ("sefaz", "nProt"),
    ("protCons", "nProt"),
    ("infProt", "nProt"),
)

_RE_N_PROT_LIVRE = re.compile(r'"?nProt"?\s*[:=]\s*"?([0-9]{15})')


def _caminho(dados: Any, caminho: Sequence[str]) -> Optional[str]:
    atual = dados
    for chave in caminho:
        if not isinstance(atual, dict):
            return None
        atual = atual.get(chave)
    if atual in (None, ""):
        return None
    return str(atual).strip() or None


def extrair_n_prot_legado(detalhes: Any) -> Optional[str]:
    """
    nProt do blob legado: caminhos conhecidos primeiro, depois XML/texto
    embutido.
    """
    if not detalhes:
        return None

    if isinstance(detalhes, dict):
        for caminho in CAMINHOS_N_PROT_LEGADO:
            valor = _caminho(detalhes, caminho)
            if valor:
                return valor
        textos = [v for v in detalhes.values() if isinstance(v, str)]
    else:
        textos = [str(detalhes)]

    for texto in textos:
        valor = extrair_n_prot_texto(texto)
        if valor:
            return valor
        match = _RE_N_PROT_LIVRE.search(texto)
        if match:
            return match.group(1)
    return None


# ---------------------------------------------------------------------------
# Status legado
# ---------------------------------------------------------------------------

MAPA_STATUS_LEGADO = {
    "authorized": EmissaoStatus.AUTORIZADA,
    "autorizada": EmissaoStatus.AUTORIZADA,
    "autorizado": EmissaoStatus.AUTORIZADA,
    "cancelled": EmissaoStatus.CANCELADA,
    "canceled": EmissaoStatus.CANCELADA,
    "cancelada": EmissaoStatus.CANCELADA,
    "denied": EmissaoStatus.DENEGADA,
    "denegada": EmissaoStatus.DENEGADA,
    "rejected": EmissaoStatus.REJEITADA,
    "rejeitada": EmissaoStatus.REJEITADA,
    "processing": EmissaoStatus.PROCESSANDO,
    "processando": EmissaoStatus.PROCESSANDO,
}


def mapear_status_legado(status: Optional[str]) -> str:
    # registros legados só eram gravados após a autorização
    return MAPA_STATUS_LEGADO.get((status or "").strip().lower(), EmissaoStatus.AUTORIZADA)


# ---------------------------------------------------------------------------
# Backfill
# ---------------------------------------------------------------------------

def backfill_legada(legada: NfeLegada, escopo: EscopoEmpresas) -> NfeEmissao:
    """
    Canoniza o registro legado. Idempotente: se já existir NfeEmissao para
    (empresa, chave), ela é devolvida sem alteração.
    """
    empresa = legada.pedido.empresa
    escopo.exigir(empresa.id)

    chave_acesso = normalizar(legada.chave)
    if not validar(chave_acesso):
        logger.warning(
            "nfe_legada_chave_invalida",
            extra={
                "event": "nfe_legada_backfill",
                "empresa_id": str(empresa.id),
                "nfe_legada_id": str(legada.id),
                "outcome": "chave_invalida",
            },
        )
        raise EmissaoNaoEncontradaError("Registro legado sem chave de acesso válida.")

    uf = derivar_uf(chave_acesso, fallback=empresa.uf)
    status = mapear_status_legado(legada.status)
    n_prot = extrair_n_prot_legado(legada.detalhes)
    detalhes = legada.detalhes if isinstance(legada.detalhes, dict) else {}

    emissao, criada = obter_ou_criar(
        empresa.id,
        chave_acesso,
        {
            "pedido_id": legada.pedido_id,
            "numero": legada.numero or int(chave_acesso[25:34]),
            "serie": legada.serie if legada.serie is not None else int(chave_acesso[22:25]),
            "status": status,
            "origem": OrigemEmissao.LEGADO,
            "c_uf": uf.codigo,
            "uf": uf.sigla,
            "tp_amb": empresa.tp_amb,
            "c_stat": str(detalhes["cStat"]) if detalhes.get("cStat") else None,
            "x_motivo": detalhes.get("xMotivo"),
            "n_prot": n_prot,
            "dh_recbto": detalhes.get("dhRecbto"),
            "xml_nfe_proc": detalhes.get("xml") if isinstance(detalhes.get("xml"), str) else None,
            # já passou pela SEFAZ: nunca reenviar
            "tentativas": 1,
            "autorizada_em": legada.emitida_em if status == EmissaoStatus.AUTORIZADA else None,
        },
    )

    if criada:
        registrar_auditoria(emissao, "BACKFILL_LEGADO")

    logger.info(
        "nfe_legada_backfill",
        extra={
            "event": "nfe_legada_backfill",
            "empresa_id": str(empresa.id),
            "chave_acesso": chave_acesso,
            "nfe_legada_id": str(legada.id),
            "emissao_id": str(emissao.id),
            "n_prot_encontrado": bool(n_prot),
            "outcome": "criada" if criada else "existente",
        },
    )
    return emissao


# ---------------------------------------------------------------------------
# Resolução de identificadores
# ---------------------------------------------------------------------------

def _como_uuid(valor: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(valor))
    except (TypeError, ValueError):
        return None


def _legada_do_pedido(pedido_id, escopo: EscopoEmpresas, chave: Optional[str] = None) -> Optional[NfeLegada]:
    candidatas = list(escopo.legadas().filter(pedido_id=pedido_id).order_by("-created_at"))
    if not candidatas:
        return None
    if chave:
        for legada in candidatas:
            if normalizar(legada.chave) == chave:
                return legada
    for legada in candidatas:
        if legada.numero and legada.serie is not None:
            return legada
    return candidatas[0]


def resolver_emissao(identificador: str, escopo: EscopoEmpresas) -> NfeEmissao:
    """
    Resolve um identificador (id canônico, chave de acesso, id de pedido
    ou id legado) para o registro canônico, canonizando o legado se for o
    único encontrado.

    Ordem: canônico por id → canônico por chave → legado por chave →
    legado por pedido → legado por id. Registros fora do escopo não são
    vistos.
    """
    identificador = str(identificador or "").strip()
    chave = normalizar(identificador)
    id_uuid = _como_uuid(identificador)

    emissoes = escopo.emissoes()

    if id_uuid is not None:
        emissao = emissoes.filter(id=id_uuid).first()
        if emissao is not None:
            return emissao

    if validar(chave):
        emissao = emissoes.filter(Q(chave_acesso=identificador) | Q(chave_acesso=chave)).first()
        if emissao is not None:
            return emissao

        for legada in escopo.legadas().filter(chave__isnull=False).order_by("-created_at"):
            if normalizar(legada.chave) == chave:
                return backfill_legada(legada, escopo)

    if id_uuid is not None:
        emissao = emissoes.filter(pedido_id=id_uuid).order_by("-created_at").first()
        if emissao is not None:
            return emissao

        legada = _legada_do_pedido(id_uuid, escopo)
        if legada is None:
            legada = escopo.legadas().filter(id=id_uuid).first()
        if legada is not None:
            return backfill_legada(legada, escopo)

    logger.info(
        "resolver_emissao_nao_encontrada",
        extra={
            "event": "nfe_resolver",
            "identificador": identificador,
            "outcome": "nao_encontrada",
        },
    )
    raise EmissaoNaoEncontradaError()


# ---------------------------------------------------------------------------
# Recuperação de protocolo
# ---------------------------------------------------------------------------

def garantir_protocolo(
    emissao: NfeEmissao,
    *,
    sefaz_client: Optional[SefazClientProtocol] = None,
) -> Optional[str]:
    """
    Garante o nProt de uma NF-e autorizada: nfeProc → blob legado →
    consulta por chave na SEFAZ. O valor encontrado é persistido uma vez.
    """
    if emissao.n_prot or emissao.status != EmissaoStatus.AUTORIZADA:
        return emissao.n_prot

    origem = "nfe_proc"
    n_prot = extrair_n_prot_texto(emissao.xml_nfe_proc)

    if not n_prot and emissao.pedido_id:
        origem = "legado"
        for legada in NfeLegada.objects.filter(pedido_id=emissao.pedido_id):
            if normalizar(legada.chave) == emissao.chave_acesso:
                n_prot = extrair_n_prot_legado(legada.detalhes)
                if n_prot:
                    break

    if not n_prot:
        origem = "sefaz"
        client = sefaz_client or get_sefaz_client(emissao.uf, emissao.tp_amb)
        resposta = client.consultar_chave(emissao.chave_acesso, uf=emissao.uf, tp_amb=emissao.tp_amb)
        resultado = interpretar(resposta)
        # só protocolo de autorização; protocolo de evento (cancelamento) não serve
        n_prot = resultado.n_prot if resultado.autorizada else None
        if not resultado.autorizada:
            logger.warning(
                "garantir_protocolo_consulta_nao_autorizada",
                extra={
                    "event": "nfe_protocolo",
                    "empresa_id": str(emissao.empresa_id),
                    "chave_acesso": emissao.chave_acesso,
                    "c_stat": resultado.c_stat,
                    "outcome": "ignorado",
                },
            )

    if not n_prot:
        logger.warning(
            "garantir_protocolo_nao_encontrado",
            extra={
                "event": "nfe_protocolo",
                "empresa_id": str(emissao.empresa_id),
                "chave_acesso": emissao.chave_acesso,
                "outcome": "nao_encontrado",
            },
        )
        return None

    emissao.n_prot = n_prot
    emissao.save(update_fields=["n_prot", "updated_at"])
    logger.info(
        "garantir_protocolo_recuperado",
        extra={
            "event": "nfe_protocolo",
            "empresa_id": str(emissao.empresa_id),
            "chave_acesso": emissao.chave_acesso,
            "origem": origem,
            "outcome": "recuperado",
        },
    )
    return n_prot
