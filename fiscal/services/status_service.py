# fiscal/services/status_service.py
"""
Interpretação das respostas da SEFAZ.

Converte RespostaSefaz em ResultadoInterpretado (status interno + metadados
de protocolo). A função é total: todo cStat cai em exatamente um status,
e códigos desconhecidos viram "rejected" com a mensagem original
preservada. Nunca assume autorização por omissão.

A tabela de cStat é configurável (settings.FISCAL_CSTAT_TABELA e
settings.FISCAL_CSTAT_PREFIXO_DENEGADA) e não pretende ser exaustiva.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

from django.conf import settings

from fiscal.models import EmissaoStatus
from fiscal.sefaz_clients import RespostaSefaz

CSTAT_LOTE_PROCESSADO = "104"
CSTAT_DUPLICIDADE = "204"
CSTATS_CANCELAMENTO = frozenset({"101", "151", "155"})

TABELA_PADRAO = {
    EmissaoStatus.AUTORIZADA: ["100", "150"],
    EmissaoStatus.PROCESSANDO: ["103", "105"],
}

_RE_N_PROT = re.compile(r"<(?:\w+:)?nProt>\s*([0-9]+)\s*</(?:\w+:)?nProt>")
_RE_DH_RECBTO = re.compile(r"<(?:\w+:)?dhRecbto>\s*([^<\s]+)\s*</(?:\w+:)?dhRecbto>")
_RE_C_STAT = re.compile(r"<(?:\w+:)?cStat>\s*([0-9]+)\s*</(?:\w+:)?cStat>")
_RE_X_MOTIVO = re.compile(r"<(?:\w+:)?xMotivo>([\s\S]*?)</(?:\w+:)?xMotivo>")
# duplicidade: "Duplicidade de NF-e [nProt:135240000000001][dhAut:2024-...]"
_RE_N_PROT_MOTIVO = re.compile(r"\[nProt:\s*([0-9]+)\s*\]")
_RE_DH_AUT_MOTIVO = re.compile(r"\[dhAut:\s*([^\]\s]+)\s*\]")


@dataclass(frozen=True)
class ResultadoInterpretado:
    status: str
    c_stat: str
    x_motivo: str
    n_prot: Optional[str] = None
    dh_recbto: Optional[str] = None
    n_recibo: Optional[str] = None

    @property
    def autorizada(self) -> bool:
        return self.status == EmissaoStatus.AUTORIZADA


# ---------------------------------------------------------------------------
# Extratores: tentados em ordem, o primeiro que devolver valor vence.
# ---------------------------------------------------------------------------

Extrator = Callable[[RespostaSefaz], Optional[str]]


def _campo_prot(nome: str) -> Extrator:
    def _extrair(resposta: RespostaSefaz) -> Optional[str]:
        valor = (resposta.prot or {}).get(nome)
        return str(valor).strip() if valor else None

    return _extrair


def _regex_prot_xml(padrao: re.Pattern) -> Extrator:
    def _extrair(resposta: RespostaSefaz) -> Optional[str]:
        if not resposta.prot_nfe_xml:
            return None
        match = padrao.search(resposta.prot_nfe_xml)
        return match.group(1).strip() if match else None

    return _extrair


def _regex_motivo(resposta: RespostaSefaz) -> Optional[str]:
    if not resposta.prot_nfe_xml:
        return None
    match = _RE_X_MOTIVO.search(resposta.prot_nfe_xml)
    return match.group(1) if match else None


def _regex_motivo_prot(padrao: re.Pattern) -> Extrator:
    def _extrair(resposta: RespostaSefaz) -> Optional[str]:
        motivo = (resposta.prot or {}).get("x_motivo") or _regex_motivo(resposta)
        match = padrao.search(motivo or "")
        return match.group(1) if match else None

    return _extrair


def _regex_motivo_retorno(padrao: re.Pattern) -> Extrator:
    def _extrair(resposta: RespostaSefaz) -> Optional[str]:
        match = padrao.search(resposta.x_motivo or "")
        return match.group(1) if match else None

    return _extrair


EXTRATORES_N_PROT: Sequence[Extrator] = (
    _campo_prot("n_prot"),
    _regex_prot_xml(_RE_N_PROT),
    _regex_motivo_prot(_RE_N_PROT_MOTIVO),
    _regex_motivo_retorno(_RE_N_PROT_MOTIVO),
)

EXTRATORES_DH_RECBTO: Sequence[Extrator] = (
    _campo_prot("dh_recbto"),
    _regex_prot_xml(_RE_DH_RECBTO),
    _regex_motivo_prot(_RE_DH_AUT_MOTIVO),
    _regex_motivo_retorno(_RE_DH_AUT_MOTIVO),
    lambda r: r.dh_recbto or None,
)

EXTRATORES_C_STAT_PROT: Sequence[Extrator] = (
    _campo_prot("c_stat"),
    _regex_prot_xml(_RE_C_STAT),
)

EXTRATORES_X_MOTIVO_PROT: Sequence[Extrator] = (
    _campo_prot("x_motivo"),
    _regex_motivo,
)


def primeiro(extratores: Iterable[Extrator], resposta: RespostaSefaz) -> Optional[str]:
    for extrator in extratores:
        valor = extrator(resposta)
        if valor:
            return valor
    return None


def extrair_n_prot_texto(texto: Optional[str]) -> Optional[str]:
    """nProt por regex em qualquer XML (nfeProc, protNFe, retorno)."""
    if not texto:
        return None
    match = _RE_N_PROT.search(texto)
    return match.group(1) if match else None


# ---------------------------------------------------------------------------
# Classificação
# ---------------------------------------------------------------------------


def _tabela() -> dict:
    tabela = getattr(settings, "FISCAL_CSTAT_TABELA", None) or TABELA_PADRAO
    return {status: {str(c) for c in codigos} for status, codigos in tabela.items()}


def classificar(c_stat: Optional[str]) -> str:
    """
    cStat → status interno.

    Ordem: tabela configurada → família de denegação (prefixo) → rejected.
    """
    codigo = str(c_stat or "").strip()
    if not codigo.isdigit():
        return EmissaoStatus.REJEITADA

    for status, codigos in _tabela().items():
        if codigo in codigos:
            return status

    prefixo = getattr(settings, "FISCAL_CSTAT_PREFIXO_DENEGADA", "1")
    if prefixo and len(codigo) == 3 and codigo.startswith(prefixo):
        return EmissaoStatus.DENEGADA

    return EmissaoStatus.REJEITADA


def interpretar(resposta: RespostaSefaz) -> ResultadoInterpretado:
    """
    Interpreta a resposta de envio de lote ou de consulta.

    - 104 (lote processado): vale o cStat do protNFe interno; sem protNFe,
      o lote ainda não tem resultado → processing.
    - 204 (duplicidade) com protocolo: a NF-e já está autorizada. O nProt
      pode vir só embutido no xMotivo ("[nProt:...]").
    """
    c_stat = str(resposta.c_stat or "").strip()
    x_motivo = resposta.x_motivo or ""

    c_stat_prot = primeiro(EXTRATORES_C_STAT_PROT, resposta)
    n_prot = primeiro(EXTRATORES_N_PROT, resposta)
    dh_recbto = primeiro(EXTRATORES_DH_RECBTO, resposta)

    if c_stat == CSTAT_LOTE_PROCESSADO:
        if not c_stat_prot:
            return ResultadoInterpretado(
                status=EmissaoStatus.PROCESSANDO,
                c_stat=c_stat,
                x_motivo=x_motivo,
                n_recibo=resposta.n_recibo,
            )
        c_stat = c_stat_prot
        x_motivo = primeiro(EXTRATORES_X_MOTIVO_PROT, resposta) or x_motivo

    if c_stat == CSTAT_DUPLICIDADE and n_prot:
        status = EmissaoStatus.AUTORIZADA
    else:
        status = classificar(c_stat)

    return ResultadoInterpretado(
        status=status,
        c_stat=c_stat,
        x_motivo=x_motivo,
        n_prot=n_prot if status == EmissaoStatus.AUTORIZADA else None,
        dh_recbto=dh_recbto,
        n_recibo=resposta.n_recibo,
    )


def interpretar_consulta(resposta: RespostaSefaz, *, status_atual: str) -> ResultadoInterpretado:
    """
    Igual a interpretar(), mas reconhece cancelamento (101/151/155).

    Cancelamento só é aceito para NF-e já autorizada; em qualquer outro
    status o código segue a classificação normal.
    """
    resultado = interpretar(resposta)
    if status_atual == EmissaoStatus.AUTORIZADA and resultado.c_stat in CSTATS_CANCELAMENTO:
        return ResultadoInterpretado(
            status=EmissaoStatus.CANCELADA,
            c_stat=resultado.c_stat,
            x_motivo=resultado.x_motivo,
            n_prot=None,
            dh_recbto=resultado.dh_recbto,
            n_recibo=resultado.n_recibo,
        )
    return resultado
