# fiscal/sefaz_factory.py
"""
Factory de clients SEFAZ por UF / ambiente.

Objetivos:
- Isolar a escolha do client SEFAZ (mock ou SOAP) em um único ponto.
- Normalizar UF (sigla) e ambiente (tpAmb "1"/"2") vindos de registros
  e de payloads de API.

settings.FISCAL_SEFAZ_CLIENT:
  - "mock" → MockSefazClient (padrão em desenvolvimento/testes);
  - "soap" → SefazSoapClient.
"""

from __future__ import annotations

from typing import Optional

import requests
from django.conf import settings

from fiscal.chave_acesso import UF_POR_CODIGO_IBGE
from fiscal.sefaz_clients import (
    MockSefazClient,
    MockSefazClientAlwaysFail,
    SefazClientProtocol,
)
from fiscal.sefaz_soap_client import SefazSoapClient

UFS_SUPORTADAS = set(UF_POR_CODIGO_IBGE.values())


def normalizar_tp_amb(ambiente: str | None) -> str:
    """
    Normaliza o ambiente para o tpAmb da NF-e.

    Aceitamos variações comuns e convertemos para:
      - "1" (produção)
      - "2" (homologação)
    """
    if not ambiente:
        return "2"

    amb = str(ambiente).strip().lower()
    if amb in {"1", "prod", "producao", "produção"}:
        return "1"
    if amb in {"2", "homolog", "homologacao", "homologação", "teste"}:
        return "2"

    raise ValueError(f"Ambiente NF-e inválido: {ambiente!r}")


def normalizar_uf(uf: str | None) -> str:
    """
    Normaliza a UF para duas letras maiúsculas.
    """
    sigla = (uf or "").strip().upper()
    if sigla not in UFS_SUPORTADAS:
        raise ValueError(f"UF inválida: {uf!r}")
    return sigla


def get_sefaz_client(
    uf: str,
    tp_amb: str,
    *,
    force_technical_fail: bool = False,
    session: Optional[requests.Session] = None,
) -> SefazClientProtocol:
    """
    Retorna o client SEFAZ para a UF/ambiente informados.

    force_technical_fail=True força MockSefazClientAlwaysFail (testes de
    falha técnica).
    """
    uf = normalizar_uf(uf)
    tp_amb = normalizar_tp_amb(tp_amb)

    if force_technical_fail:
        return MockSefazClientAlwaysFail(tp_amb=tp_amb, uf=uf)

    tipo = getattr(settings, "FISCAL_SEFAZ_CLIENT", "mock")
    if tipo == "soap":
        return SefazSoapClient(uf=uf, tp_amb=tp_amb, session=session)
    if tipo == "mock":
        return MockSefazClient(tp_amb=tp_amb, uf=uf)

    raise ValueError(f"FISCAL_SEFAZ_CLIENT inválido: {tipo!r}")
