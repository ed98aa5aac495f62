# fiscal/chave_acesso.py
"""
Chave de acesso da NF-e (44 dígitos).

Posições 0-1: código IBGE da UF emitente. As funções aqui são puras e
não consultam banco.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from fiscal.exceptions import InvalidAccessKeyError, UnknownJurisdictionError

logger = logging.getLogger("nfe.fiscal")

TAMANHO_CHAVE = 44

# Código IBGE -> sigla (27 unidades federativas)
UF_POR_CODIGO_IBGE: dict[str, str] = {
    "11": "RO", "12": "AC", "13": "AM", "14": "RR", "15": "PA", "16": "AP", "17": "TO",
    "21": "MA", "22": "PI", "23": "CE", "24": "RN", "25": "PB", "26": "PE", "27": "AL",
    "28": "SE", "29": "BA",
    "31": "MG", "32": "ES", "33": "RJ", "35": "SP",
    "41": "PR", "42": "SC", "43": "RS",
    "50": "MS", "51": "MT", "52": "GO", "53": "DF",
}

CODIGO_IBGE_POR_UF: dict[str, str] = {sigla: codigo for codigo, sigla in UF_POR_CODIGO_IBGE.items()}

_RE_CHAVE = re.compile(r"^\d{44}$")


@dataclass(frozen=True)
class UfCodigo:
    codigo: str  # IBGE, ex: "35"
    sigla: str  # ex: "SP"


def validar(chave_acesso: Optional[str]) -> bool:
    return isinstance(chave_acesso, str) and bool(_RE_CHAVE.match(chave_acesso))


def exigir_valida(chave_acesso: Optional[str]) -> str:
    if not validar(chave_acesso):
        raise InvalidAccessKeyError()
    return chave_acesso


def normalizar(chave_acesso: Optional[str]) -> str:
    """Remove máscara/espaços (chaves legadas às vezes vêm formatadas)."""
    return re.sub(r"\D", "", chave_acesso or "")


def derivar_uf(chave_acesso: str, *, fallback: Optional[str] = None) -> UfCodigo:
    """
    UF emitente a partir dos dois primeiros dígitos da chave.

    Sem ``fallback``, prefixo fora da tabela é erro. O fallback (sigla)
    existe só para a reconciliação de registros legados e é sempre logado.
    """
    codigo = (chave_acesso or "")[:2]
    sigla = UF_POR_CODIGO_IBGE.get(codigo)
    if sigla is not None:
        return UfCodigo(codigo=codigo, sigla=sigla)

    if fallback is None:
        raise UnknownJurisdictionError(f"Código de UF '{codigo}' da chave de acesso não reconhecido.")

    sigla_fallback = fallback.strip().upper()
    codigo_fallback = CODIGO_IBGE_POR_UF.get(sigla_fallback)
    if codigo_fallback is None:
        raise UnknownJurisdictionError(f"UF de fallback '{fallback}' inválida.")

    logger.warning(
        "chave_acesso_uf_fallback",
        extra={
            "event": "chave_acesso_uf",
            "prefixo": codigo,
            "uf_fallback": sigla_fallback,
            "outcome": "fallback",
        },
    )
    return UfCodigo(codigo=codigo_fallback, sigla=sigla_fallback)


def partes(chave_acesso: str) -> dict:
    """
    Campos posicionais da chave (cUF, AAMM, CNPJ, mod, serie, nNF, tpEmis, cNF, cDV).
    """
    exigir_valida(chave_acesso)
    return {
        "cUF": chave_acesso[0:2],
        "AAMM": chave_acesso[2:6],
        "CNPJ": chave_acesso[6:20],
        "mod": chave_acesso[20:22],
        "serie": int(chave_acesso[22:25]),
        "nNF": int(chave_acesso[25:34]),
        "tpEmis": chave_acesso[34:35],
        "cNF": chave_acesso[35:43],
        "cDV": chave_acesso[43:44],
    }
