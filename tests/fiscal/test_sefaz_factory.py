# tests/fiscal/test_sefaz_factory.py

import pytest

from fiscal.sefaz_clients import MockSefazClient, MockSefazClientAlwaysFail
from fiscal.sefaz_factory import get_sefaz_client, normalizar_tp_amb, normalizar_uf
from fiscal.sefaz_soap_client import SefazSoapClient


@pytest.mark.parametrize(
    "entrada, esperado",
    [
        ("1", "1"),
        ("producao", "1"),
        ("Produção", "1"),
        ("2", "2"),
        ("homologacao", "2"),
        (" HOMOLOG ", "2"),
        (None, "2"),
        ("", "2"),
    ],
)
def test_normalizar_tp_amb(entrada, esperado):
    assert normalizar_tp_amb(entrada) == esperado


def test_normalizar_tp_amb_invalido():
    with pytest.raises(ValueError):
        normalizar_tp_amb("3")


def test_normalizar_uf():
    assert normalizar_uf(" sp ") == "SP"
    with pytest.raises(ValueError):
        normalizar_uf("XX")
    with pytest.raises(ValueError):
        normalizar_uf(None)


def test_factory_mock_por_padrao():
    client = get_sefaz_client("mg", "producao")

    assert isinstance(client, MockSefazClient)
    assert (client.uf, client.tp_amb) == ("MG", "1")


def test_factory_soap(settings):
    settings.FISCAL_SEFAZ_CLIENT = "soap"

    client = get_sefaz_client("SP", "2")

    assert isinstance(client, SefazSoapClient)
    assert (client.uf, client.tp_amb) == ("SP", "2")


def test_factory_falha_forcada():
    assert isinstance(get_sefaz_client("SP", "2", force_technical_fail=True), MockSefazClientAlwaysFail)


def test_factory_tipo_invalido(settings):
    settings.FISCAL_SEFAZ_CLIENT = "zeep"

    with pytest.raises(ValueError):
        get_sefaz_client("SP", "2")


def test_mock_recibo_leva_a_chave_enviada():
    chave = "35250112345678000195550010000000011000000017"
    client = MockSefazClient()

    envio = client.enviar_lote(f'<NFe><infNFe Id="NFe{chave}"/></NFe>', uf="SP", tp_amb="2", id_lote="1")
    consulta = MockSefazClient().consultar_recibo(envio.n_recibo, uf="SP", tp_amb="2")

    assert envio.c_stat == "103"
    assert len(envio.n_recibo) == 15
    assert consulta.c_stat == "104"
    assert consulta.prot["ch_nfe"] == chave
    assert consulta.prot["c_stat"] == "100"
