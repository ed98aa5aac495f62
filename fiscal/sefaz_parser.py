# fiscal/sefaz_parser.py
"""
Parser das respostas SOAP da SEFAZ (NF-e 4.00).

Converte o envelope em RespostaSefaz. SOAP Fault e XML inválido viram
SefazTechnicalError; rejeições de negócio (cStat != 100) NÃO são erro
aqui, ficam a cargo do interpretador de status.
"""

from __future__ import annotations

from typing import Optional

from lxml import etree

from fiscal.sefaz_clients import RespostaSefaz, SefazTechnicalError

_RETORNOS = ("retEnviNFe", "retConsReciNFe", "retConsSitNFe")

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)


def _primeiro(el, nome: str):
    achados = el.xpath(f".//*[local-name()='{nome}']")
    return achados[0] if achados else None


def _texto_filho(el, nome: str) -> Optional[str]:
    if el is None:
        return None
    for filho in el:
        if etree.QName(filho).localname == nome:
            texto = (filho.text or "").strip()
            return texto or None
    return None


def _texto(el, nome: str) -> Optional[str]:
    alvo = _primeiro(el, nome) if el is not None else None
    if alvo is None:
        return None
    texto = (alvo.text or "").strip()
    return texto or None


def parse_resposta(conteudo: bytes, *, http_status: Optional[int] = None) -> RespostaSefaz:
    try:
        raiz = etree.fromstring(conteudo, parser=_PARSER)
    except etree.XMLSyntaxError as exc:
        raise SefazTechnicalError(
            "Resposta da SEFAZ não é um XML válido.",
            codigo="XML_INVALIDO",
            hint=str(exc),
            http_status=http_status,
        ) from exc

    fault = _primeiro(raiz, "Fault")
    if fault is not None:
        motivo = _texto(fault, "Text") or _texto(fault, "faultstring") or "SOAP Fault"
        raise SefazTechnicalError(
            f"SOAP Fault: {motivo}",
            codigo="SOAP",
            hint=_texto(fault, "Value") or _texto(fault, "faultcode"),
            http_status=http_status,
        )

    ret = None
    for nome in _RETORNOS:
        ret = _primeiro(raiz, nome)
        if ret is not None:
            break
    if ret is None:
        raise SefazTechnicalError(
            "Resposta da SEFAZ sem retEnviNFe/retConsReciNFe/retConsSitNFe.",
            codigo="RESPOSTA_INVALIDA",
            http_status=http_status,
        )

    c_stat = _texto_filho(ret, "cStat")
    if c_stat is None:
        raise SefazTechnicalError(
            "Resposta da SEFAZ sem cStat.",
            codigo="RESPOSTA_INVALIDA",
            http_status=http_status,
        )

    inf_rec = _primeiro(ret, "infRec")
    n_recibo = _texto_filho(inf_rec, "nRec") or _texto_filho(ret, "nRec")

    prot_nfe = _primeiro(ret, "protNFe")
    prot = None
    prot_nfe_xml = None
    if prot_nfe is not None:
        prot_nfe_xml = etree.tostring(prot_nfe, encoding="unicode")
        inf_prot = _primeiro(prot_nfe, "infProt")
        prot = {
            "ch_nfe": _texto_filho(inf_prot, "chNFe"),
            "c_stat": _texto_filho(inf_prot, "cStat"),
            "x_motivo": _texto_filho(inf_prot, "xMotivo"),
            "n_prot": _texto_filho(inf_prot, "nProt"),
            "dh_recbto": _texto_filho(inf_prot, "dhRecbto"),
        }

    return RespostaSefaz(
        c_stat=c_stat,
        x_motivo=_texto_filho(ret, "xMotivo") or "",
        n_recibo=n_recibo,
        dh_recbto=_texto_filho(ret, "dhRecbto"),
        prot_nfe_xml=prot_nfe_xml,
        prot=prot,
        raw={
            "tipo": etree.QName(ret).localname,
            "tpAmb": _texto_filho(ret, "tpAmb"),
            "cUF": _texto_filho(ret, "cUF"),
            "http_status": http_status,
        },
    )
