# fiscal/sefaz_soap_client.py
"""
Client SOAP 1.2 da SEFAZ (NF-e 4.00) sobre requests.

- Endpoints por UF/ambiente vêm de settings.FISCAL_SEFAZ_ENDPOINTS
  (UFs sem entrada própria usam SVRS).
- A sessão HTTP é injetada já configurada com o certificado do cliente
  (mTLS); este módulo não manipula material criptográfico.
- Timeout limitado (settings.FISCAL_SEFAZ_TIMEOUT) e nenhuma retentativa.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

import requests
from django.conf import settings

from fiscal.sefaz_clients import RespostaSefaz, SefazTechnicalError
from fiscal.sefaz_parser import parse_resposta

logger = logging.getLogger("nfe.fiscal")

NS_NFE = "http://www.portalfiscal.inf.br/nfe"
NS_SOAP12 = "http://www.w3.org/2003/05/soap-envelope"

WSDL_AUTORIZACAO = "http://www.portalfiscal.inf.br/nfe/wsdl/NFeAutorizacao4"
WSDL_RET_AUTORIZACAO = "http://www.portalfiscal.inf.br/nfe/wsdl/NFeRetAutorizacao4"
WSDL_CONSULTA_PROTOCOLO = "http://www.portalfiscal.inf.br/nfe/wsdl/NFeConsultaProtocolo4"

_RE_DECLARACAO_XML = re.compile(r"^\s*<\?xml[^>]*\?>\s*")


def _envelope(wsdl: str, corpo: str) -> str:
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        f'<soap12:Envelope xmlns:soap12="{NS_SOAP12}">'
        "<soap12:Body>"
        f'<nfeDadosMsg xmlns="{wsdl}">{corpo}</nfeDadosMsg>'
        "</soap12:Body>"
        "</soap12:Envelope>"
    )


class SefazSoapClient:
    def __init__(
        self,
        *,
        uf: str,
        tp_amb: str,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self.uf = uf
        self.tp_amb = tp_amb
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else settings.FISCAL_SEFAZ_TIMEOUT

    # -------------------------
    # Endpoints
    # -------------------------
    def _endpoint(self, servico: str, uf: str, tp_amb: str) -> str:
        endpoints = settings.FISCAL_SEFAZ_ENDPOINTS
        por_uf = endpoints.get(uf) or endpoints["SVRS"]
        try:
            return por_uf[tp_amb][servico]
        except KeyError as exc:
            raise SefazTechnicalError(
                f"Endpoint SEFAZ não configurado para {uf}/{tp_amb}/{servico}.",
                codigo="ENDPOINT",
            ) from exc

    # -------------------------
    # Transporte
    # -------------------------
    def _post(self, url: str, wsdl: str, corpo: str, *, operacao: str) -> RespostaSefaz:
        envelope = _envelope(wsdl, corpo)
        headers = {"Content-Type": f'application/soap+xml; charset=utf-8; action="{wsdl}/nfeDadosMsg"'}

        try:
            resp = self.session.post(
                url,
                data=envelope.encode("utf-8"),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise SefazTechnicalError(
                f"Timeout na comunicação com a SEFAZ ({operacao}).",
                codigo="TIMEOUT",
                hint=url,
            ) from exc
        except requests.RequestException as exc:
            raise SefazTechnicalError(
                f"Falha de conexão com a SEFAZ ({operacao}).",
                codigo="CONEXAO",
                hint=str(exc),
            ) from exc

        logger.debug(
            "sefaz_soap_resposta",
            extra={
                "event": "sefaz_soap",
                "operacao": operacao,
                "uf": self.uf,
                "http_status": resp.status_code,
            },
        )

        # SOAP 1.2 devolve Fault com HTTP 500: o Fault detalhado tem prioridade
        if resp.status_code >= 400:
            try:
                parse_resposta(resp.content, http_status=resp.status_code)
            except SefazTechnicalError as exc:
                if exc.codigo == "SOAP":
                    raise
            raise SefazTechnicalError(
                f"SEFAZ respondeu HTTP {resp.status_code} ({operacao}).",
                codigo="HTTP",
                http_status=resp.status_code,
            )

        return parse_resposta(resp.content, http_status=resp.status_code)

    # -------------------------
    # Operações
    # -------------------------
    def enviar_lote(self, xml_assinado: str, *, uf: str, tp_amb: str, id_lote: str) -> RespostaSefaz:
        nfe = _RE_DECLARACAO_XML.sub("", xml_assinado)
        corpo = (
            f'<enviNFe xmlns="{NS_NFE}" versao="4.00">'
            f"<idLote>{id_lote}</idLote><indSinc>0</indSinc>{nfe}"
            "</enviNFe>"
        )
        url = self._endpoint("autorizacao", uf, tp_amb)
        return self._post(url, WSDL_AUTORIZACAO, corpo, operacao="enviar_lote")

    def consultar_recibo(self, n_recibo: str, *, uf: str, tp_amb: str) -> RespostaSefaz:
        corpo = (
            f'<consReciNFe xmlns="{NS_NFE}" versao="4.00">'
            f"<tpAmb>{tp_amb}</tpAmb><nRec>{n_recibo}</nRec>"
            "</consReciNFe>"
        )
        url = self._endpoint("ret_autorizacao", uf, tp_amb)
        return self._post(url, WSDL_RET_AUTORIZACAO, corpo, operacao="consultar_recibo")

    def consultar_chave(self, chave_acesso: str, *, uf: str, tp_amb: str) -> RespostaSefaz:
        corpo = (
            f'<consSitNFe xmlns="{NS_NFE}" versao="4.00">'
            f"<tpAmb>{tp_amb}</tpAmb><xServ>CONSULTAR</xServ><chNFe>{chave_acesso}</chNFe>"
            "</consSitNFe>"
        )
        url = self._endpoint("consulta_protocolo", uf, tp_amb)
        return self._post(url, WSDL_CONSULTA_PROTOCOLO, corpo, operacao="consultar_chave")
