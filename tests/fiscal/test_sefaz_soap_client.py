# tests/fiscal/test_sefaz_soap_client.py

import pytest
import requests

from fiscal.sefaz_clients import SefazTechnicalError
from fiscal.sefaz_parser import parse_resposta
from fiscal.sefaz_soap_client import WSDL_AUTORIZACAO, SefazSoapClient
from fiscal.services.status_service import interpretar

CHAVE = "35250112345678000195550010000000011000000017"


def _envelope(corpo: str) -> bytes:
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<soap:Envelope xmlns:soap="http://www.w3.org/2003/05/soap-envelope"><soap:Body>'
        '<nfeResultMsg xmlns="http://www.portalfiscal.inf.br/nfe/wsdl/NFeAutorizacao4">'
        f"{corpo}"
        "</nfeResultMsg></soap:Body></soap:Envelope>"
    ).encode("utf-8")


RET_ENVI_NFE = _envelope(
    '<retEnviNFe xmlns="http://www.portalfiscal.inf.br/nfe" versao="4.00">'
    "<tpAmb>2</tpAmb><verAplic>SP_NFE_PL009</verAplic><cStat>103</cStat>"
    "<xMotivo>Lote recebido com sucesso</xMotivo><cUF>35</cUF>"
    "<dhRecbto>2025-01-10T10:00:00-03:00</dhRecbto>"
    "<infRec><nRec>351000000000001</nRec><tMed>1</tMed></infRec>"
    "</retEnviNFe>"
)

RET_CONS_RECI_NFE = _envelope(
    '<retConsReciNFe xmlns="http://www.portalfiscal.inf.br/nfe" versao="4.00">'
    "<tpAmb>2</tpAmb><nRec>351000000000001</nRec><cStat>104</cStat>"
    "<xMotivo>Lote processado</xMotivo><cUF>35</cUF>"
    '<protNFe versao="4.00"><infProt>'
    f"<tpAmb>2</tpAmb><chNFe>{CHAVE}</chNFe><dhRecbto>2025-01-10T10:00:05-03:00</dhRecbto>"
    "<nProt>135250000000001</nProt><cStat>100</cStat><xMotivo>Autorizado o uso da NF-e</xMotivo>"
    "</infProt></protNFe>"
    "</retConsReciNFe>"
)

SOAP_FAULT = (
    b'<?xml version="1.0" encoding="utf-8"?>'
    b'<soap:Envelope xmlns:soap="http://www.w3.org/2003/05/soap-envelope"><soap:Body>'
    b"<soap:Fault><soap:Code><soap:Value>soap:Receiver</soap:Value></soap:Code>"
    b'<soap:Reason><soap:Text xml:lang="pt">Servidor indisponivel</soap:Text></soap:Reason>'
    b"</soap:Fault></soap:Body></soap:Envelope>"
)


class FakeResponse:
    def __init__(self, status_code=200, content=b""):
        self.status_code = status_code
        self.content = content


class FakeSession:
    def __init__(self, resposta=None, erro=None):
        self.resposta = resposta
        self.erro = erro
        self.posts = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.posts.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        if self.erro is not None:
            raise self.erro
        return self.resposta


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def test_parse_ret_envi_nfe():
    resposta = parse_resposta(RET_ENVI_NFE, http_status=200)

    assert resposta.c_stat == "103"
    assert resposta.x_motivo == "Lote recebido com sucesso"
    assert resposta.n_recibo == "351000000000001"
    assert resposta.dh_recbto == "2025-01-10T10:00:00-03:00"
    assert resposta.prot is None
    assert resposta.raw["tipo"] == "retEnviNFe"
    assert resposta.raw["cUF"] == "35"


def test_parse_ret_cons_reci_com_protnfe():
    resposta = parse_resposta(RET_CONS_RECI_NFE)

    assert resposta.c_stat == "104"
    assert resposta.n_recibo == "351000000000001"
    assert resposta.prot["c_stat"] == "100"
    assert resposta.prot["n_prot"] == "135250000000001"
    assert resposta.prot["ch_nfe"] == CHAVE
    assert "<protNFe" in resposta.prot_nfe_xml or ":protNFe" in resposta.prot_nfe_xml

    resultado = interpretar(resposta)
    assert resultado.status == "authorized"
    assert resultado.n_prot == "135250000000001"
    assert resultado.dh_recbto == "2025-01-10T10:00:05-03:00"


def test_parse_soap_fault():
    with pytest.raises(SefazTechnicalError) as exc:
        parse_resposta(SOAP_FAULT, http_status=500)

    assert exc.value.codigo == "SOAP"
    assert "Servidor indisponivel" in str(exc.value)
    assert exc.value.hint == "soap:Receiver"
    assert exc.value.http_status == 500


@pytest.mark.parametrize(
    "conteudo, codigo",
    [
        (b"isso nao e xml", "XML_INVALIDO"),
        (b"<html><body>manutencao</body></html>", "RESPOSTA_INVALIDA"),
        (_envelope('<retEnviNFe xmlns="http://www.portalfiscal.inf.br/nfe"><xMotivo>x</xMotivo></retEnviNFe>'),
         "RESPOSTA_INVALIDA"),
    ],
)
def test_parse_resposta_invalida(conteudo, codigo):
    with pytest.raises(SefazTechnicalError) as exc:
        parse_resposta(conteudo)

    assert exc.value.codigo == codigo


def test_parse_nao_resolve_entidades_externas():
    conteudo = (
        b'<?xml version="1.0"?><!DOCTYPE r [<!ENTITY e SYSTEM "file:///etc/passwd">]>'
        b'<retEnviNFe xmlns="http://www.portalfiscal.inf.br/nfe"><cStat>103</cStat>'
        b"<xMotivo>&e;</xMotivo></retEnviNFe>"
    )

    resposta = parse_resposta(conteudo)

    assert "root:" not in resposta.x_motivo


# ---------------------------------------------------------------------------
# Client SOAP
# ---------------------------------------------------------------------------


def test_enviar_lote_monta_envelope_e_usa_endpoint_da_uf(settings):
    settings.FISCAL_SEFAZ_TIMEOUT = 7
    session = FakeSession(FakeResponse(200, RET_ENVI_NFE))
    client = SefazSoapClient(uf="SP", tp_amb="2", session=session)

    resposta = client.enviar_lote(
        f'<?xml version="1.0"?><NFe><infNFe Id="NFe{CHAVE}"/></NFe>',
        uf="SP",
        tp_amb="2",
        id_lote="123",
    )

    assert resposta.c_stat == "103"
    post = session.posts[0]
    assert post["url"] == settings.FISCAL_SEFAZ_ENDPOINTS["SP"]["2"]["autorizacao"]
    assert post["timeout"] == 7
    assert WSDL_AUTORIZACAO in post["headers"]["Content-Type"]
    corpo = post["data"].decode("utf-8")
    assert "<idLote>123</idLote>" in corpo
    assert corpo.count("<?xml") == 1


def test_uf_sem_endpoint_proprio_usa_svrs(settings):
    session = FakeSession(FakeResponse(200, RET_CONS_RECI_NFE))
    client = SefazSoapClient(uf="RS", tp_amb="1", session=session)

    client.consultar_recibo("351000000000001", uf="RS", tp_amb="1")

    assert session.posts[0]["url"] == settings.FISCAL_SEFAZ_ENDPOINTS["SVRS"]["1"]["ret_autorizacao"]


def test_consultar_chave_envia_chave_e_ambiente():
    session = FakeSession(FakeResponse(200, RET_CONS_RECI_NFE))
    client = SefazSoapClient(uf="SP", tp_amb="2", session=session)

    client.consultar_chave(CHAVE, uf="SP", tp_amb="2")

    corpo = session.posts[0]["data"].decode("utf-8")
    assert f"<chNFe>{CHAVE}</chNFe>" in corpo
    assert "<tpAmb>2</tpAmb>" in corpo


def test_http_500_com_fault_preserva_detalhe():
    client = SefazSoapClient(uf="SP", tp_amb="2", session=FakeSession(FakeResponse(500, SOAP_FAULT)))

    with pytest.raises(SefazTechnicalError) as exc:
        client.consultar_chave(CHAVE, uf="SP", tp_amb="2")

    assert exc.value.codigo == "SOAP"


@pytest.mark.parametrize("conteudo", [b"", b"Service Unavailable", RET_ENVI_NFE])
def test_http_erro_sem_fault(conteudo):
    client = SefazSoapClient(uf="SP", tp_amb="2", session=FakeSession(FakeResponse(503, conteudo)))

    with pytest.raises(SefazTechnicalError) as exc:
        client.consultar_chave(CHAVE, uf="SP", tp_amb="2")

    assert exc.value.codigo == "HTTP"
    assert exc.value.http_status == 503


def test_timeout_vira_erro_tecnico():
    client = SefazSoapClient(uf="SP", tp_amb="2", session=FakeSession(erro=requests.Timeout("lento")))

    with pytest.raises(SefazTechnicalError) as exc:
        client.enviar_lote("<NFe/>", uf="SP", tp_amb="2", id_lote="1")

    assert exc.value.codigo == "TIMEOUT"
    assert exc.value.retentavel is True


def test_falha_de_conexao_vira_erro_tecnico():
    client = SefazSoapClient(
        uf="SP", tp_amb="2", session=FakeSession(erro=requests.ConnectionError("recusada"))
    )

    with pytest.raises(SefazTechnicalError) as exc:
        client.consultar_recibo("1", uf="SP", tp_amb="2")

    assert exc.value.codigo == "CONEXAO"


def test_endpoint_nao_configurado(settings):
    settings.FISCAL_SEFAZ_ENDPOINTS = {"SVRS": {"1": {}}}
    session = FakeSession(FakeResponse(200, RET_ENVI_NFE))
    client = SefazSoapClient(uf="SP", tp_amb="2", session=session)

    with pytest.raises(SefazTechnicalError) as exc:
        client.enviar_lote("<NFe/>", uf="SP", tp_amb="2", id_lote="1")

    assert exc.value.codigo == "ENDPOINT"
    assert session.posts == []
