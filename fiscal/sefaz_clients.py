"""
Camada de client SEFAZ.

Este módulo define:

- Contrato (SefazClientProtocol) das três operações que o pipeline usa:
  envio de lote, consulta por recibo e consulta por chave.
- DTO RespostaSefaz, formato único de retorno das três operações.
- SefazTechnicalError, falha técnica/estrutural da comunicação.
- MockSefazClient, usado em desenvolvimento/teste.
- MockSefazClientAlwaysFail, usado em testes de falha técnica.

O client real (SOAP) fica em fiscal.sefaz_soap_client.

Nenhum client faz retry: cada chamada é uma tentativa, com timeout
limitado. Reprocessamento é responsabilidade da fila de jobs.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from django.utils import timezone


# ---------------------------------------------------------------------------
# Exceções específicas
# ---------------------------------------------------------------------------


class SefazTechnicalError(Exception):
    """
    Erro técnico/estrutural na comunicação com a SEFAZ (timeout, conexão,
    SOAP Fault, HTTP != 2xx, resposta ilegível).

    Distingue problemas de infraestrutura (reprocessáveis pela fila) de
    rejeições fiscais normais, que chegam como RespostaSefaz com cStat.
    """

    retentavel = True

    def __init__(
        self,
        message: str,
        *,
        codigo: str | None = None,
        hint: str | None = None,
        http_status: int | None = None,
        raw: Dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.codigo = codigo
        self.hint = hint
        self.http_status = http_status
        self.raw: Dict[str, Any] = raw or {}

    def detalhe_interno(self) -> Dict[str, Any]:
        return {
            "codigo": self.codigo,
            "mensagem": str(self),
            "hint": self.hint,
            "http_status": self.http_status,
        }


# ---------------------------------------------------------------------------
# DTO de resposta da SEFAZ
# ---------------------------------------------------------------------------


@dataclass
class RespostaSefaz:
    """
    Resposta normalizada de qualquer operação da SEFAZ.

    - c_stat / x_motivo: retorno do nível do lote/consulta.
    - n_recibo: recibo do lote (processamento assíncrono).
    - prot_nfe_xml: bloco protNFe como texto, quando presente.
    - prot: campos estruturados do infProt, quando o parser conseguiu lê-los.
    """

    c_stat: str
    x_motivo: str
    n_recibo: Optional[str] = None
    dh_recbto: Optional[str] = None
    prot_nfe_xml: Optional[str] = None
    prot: Optional[Dict[str, Optional[str]]] = None
    raw: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Contrato do client SEFAZ
# ---------------------------------------------------------------------------


class SefazClientProtocol(Protocol):
    """
    Contrato mínimo que um client SEFAZ deve cumprir.

    uf é a sigla (SP, MG, ...) e tp_amb é "1" (produção) ou "2" (homologação).
    Falhas técnicas levantam SefazTechnicalError.
    """

    def enviar_lote(
        self,
        xml_assinado: str,
        *,
        uf: str,
        tp_amb: str,
        id_lote: str,
    ) -> RespostaSefaz:
        ...

    def consultar_recibo(self, n_recibo: str, *, uf: str, tp_amb: str) -> RespostaSefaz:
        ...

    def consultar_chave(self, chave_acesso: str, *, uf: str, tp_amb: str) -> RespostaSefaz:
        ...


# ---------------------------------------------------------------------------
# Helpers de montagem de protNFe (usados pelos mocks)
# ---------------------------------------------------------------------------

_RE_CHAVE_NO_XML = re.compile(r'Id="NFe(\d{44})"')


def montar_prot_nfe_xml(
    *,
    chave_acesso: str,
    tp_amb: str,
    c_stat: str,
    x_motivo: str,
    n_prot: Optional[str],
    dh_recbto: str,
) -> str:
    n_prot_tag = f"<nProt>{n_prot}</nProt>" if n_prot else ""
    return (
        '<protNFe versao="4.00"><infProt>'
        f"<tpAmb>{tp_amb}</tpAmb><verAplic>MOCK</verAplic>"
        f"<chNFe>{chave_acesso}</chNFe><dhRecbto>{dh_recbto}</dhRecbto>"
        f"{n_prot_tag}<cStat>{c_stat}</cStat><xMotivo>{x_motivo}</xMotivo>"
        "</infProt></protNFe>"
    )


# ---------------------------------------------------------------------------
# Implementação mock de client SEFAZ
# ---------------------------------------------------------------------------


class MockSefazClient:
    """
    Implementação mock de client SEFAZ.

    Simula o fluxo assíncrono real:
      - enviar_lote → 103 (lote recebido) com recibo;
      - consultar_recibo → 104 (lote processado) com protNFe 100;
      - consultar_chave → 100 com protNFe.

    Os recibos emitidos (recibo → chave) ficam num dicionário de classe,
    compartilhado pelas instâncias do processo: a factory cria um client
    novo a cada chamada e a consulta do recibo acontece em outro job.
    """

    _lotes: Dict[str, str] = {}

    def __init__(self, *, tp_amb: str = "2", uf: Optional[str] = None):
        self.tp_amb = tp_amb
        self.uf = uf or "SP"

    def _agora(self) -> str:
        return timezone.localtime().isoformat(timespec="seconds")

    def _protocolo(self) -> str:
        return "1" + str(uuid.uuid4().int)[:14]

    def enviar_lote(self, xml_assinado: str, *, uf: str, tp_amb: str, id_lote: str) -> RespostaSefaz:
        match = _RE_CHAVE_NO_XML.search(xml_assinado or "")
        chave = match.group(1) if match else ""
        n_recibo = str(uuid.uuid4().int)[:15]
        self._lotes[n_recibo] = chave

        return RespostaSefaz(
            c_stat="103",
            x_motivo="Lote recebido com sucesso (mock).",
            n_recibo=n_recibo,
            dh_recbto=self._agora(),
            raw={"tipo": "retEnviNFe", "uf": uf, "tpAmb": tp_amb, "idLote": id_lote},
        )

    def _autorizada(self, chave: str, tp_amb: str, tipo: str) -> RespostaSefaz:
        dh = self._agora()
        n_prot = self._protocolo()
        prot_xml = montar_prot_nfe_xml(
            chave_acesso=chave,
            tp_amb=tp_amb,
            c_stat="100",
            x_motivo="Autorizado o uso da NF-e (mock).",
            n_prot=n_prot,
            dh_recbto=dh,
        )
        return RespostaSefaz(
            c_stat="104" if tipo == "retConsReciNFe" else "100",
            x_motivo="Lote processado (mock)." if tipo == "retConsReciNFe" else "Autorizado o uso da NF-e (mock).",
            prot_nfe_xml=prot_xml,
            prot={
                "ch_nfe": chave,
                "c_stat": "100",
                "x_motivo": "Autorizado o uso da NF-e (mock).",
                "n_prot": n_prot,
                "dh_recbto": dh,
            },
            raw={"tipo": tipo, "tpAmb": tp_amb},
        )

    def consultar_recibo(self, n_recibo: str, *, uf: str, tp_amb: str) -> RespostaSefaz:
        chave = self._lotes.get(n_recibo)
        if chave is None:
            return RespostaSefaz(
                c_stat="106",
                x_motivo="Lote não localizado (mock).",
                raw={"tipo": "retConsReciNFe", "tpAmb": tp_amb},
            )
        return self._autorizada(chave, tp_amb, "retConsReciNFe")

    def consultar_chave(self, chave_acesso: str, *, uf: str, tp_amb: str) -> RespostaSefaz:
        return self._autorizada(chave_acesso, tp_amb, "retConsSitNFe")


class MockSefazClientAlwaysFail(MockSefazClient):
    """
    Mock de client SEFAZ que SEMPRE falha tecnicamente.

    Usado em testes para validar que falhas de comunicação não alteram o
    status da emissão e voltam para a fila como reprocessáveis.
    """

    def _raise_technical_error(self, operacao: str) -> None:
        raise SefazTechnicalError(
            "Falha técnica simulada na comunicação com a SEFAZ (mock).",
            codigo="TECH_FAIL",
            hint=operacao,
            http_status=503,
            raw={"uf": self.uf, "tpAmb": self.tp_amb},
        )

    def enviar_lote(self, xml_assinado: str, *, uf: str, tp_amb: str, id_lote: str) -> RespostaSefaz:
        self._raise_technical_error("enviar_lote")

    def consultar_recibo(self, n_recibo: str, *, uf: str, tp_amb: str) -> RespostaSefaz:
        self._raise_technical_error("consultar_recibo")

    def consultar_chave(self, chave_acesso: str, *, uf: str, tp_amb: str) -> RespostaSefaz:
        self._raise_technical_error("consultar_chave")
