# fiscal/assinador.py
"""
Assinatura do rascunho da NF-e.

O pipeline trata o assinador como função pura
``(rascunho, credencial) -> xml_assinado`` e não conhece a estrutura
interna do XML. A implementação é escolhida por settings.FISCAL_ASSINADOR
(dotted path), permitindo plugar um assinador XMLDSig completo.

AssinadorEnvelopeRSA (padrão) monta um envelope NFe com o rascunho
canônico e uma assinatura RSA-SHA256 real feita com a chave do A1.
"""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Any, Dict, Protocol

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from django.conf import settings
from django.utils.module_loading import import_string

from fiscal.services.certificado_service import CredencialAssinatura

NS_NFE = "http://www.portalfiscal.inf.br/nfe"


class AssinadorProtocol(Protocol):
    def assinar(self, rascunho: Dict[str, Any], credencial: CredencialAssinatura) -> str:
        ...


def _canonico(rascunho: Dict[str, Any]) -> bytes:
    return json.dumps(rascunho, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class AssinadorEnvelopeRSA:
    def assinar(self, rascunho: Dict[str, Any], credencial: CredencialAssinatura) -> str:
        chave_privada = credencial.chave_privada
        if not isinstance(chave_privada, rsa.RSAPrivateKey):
            raise TypeError("Certificado A1 sem chave RSA.")

        chave_acesso = rascunho["chave_acesso"]
        conteudo = _canonico(rascunho)

        digest = base64.b64encode(hashlib.sha256(conteudo).digest()).decode()
        assinatura = chave_privada.sign(conteudo, padding.PKCS1v15(), hashes.SHA256())
        certificado_der = credencial.certificado.public_bytes(serialization.Encoding.DER)

        return (
            f'<NFe xmlns="{NS_NFE}">'
            f'<infNFe Id="NFe{chave_acesso}" versao="4.00">'
            f"<conteudo>{base64.b64encode(conteudo).decode()}</conteudo>"
            "</infNFe>"
            "<Signature>"
            f"<DigestValue>{digest}</DigestValue>"
            f"<SignatureValue>{base64.b64encode(assinatura).decode()}</SignatureValue>"
            f"<X509Certificate>{base64.b64encode(certificado_der).decode()}</X509Certificate>"
            "</Signature>"
            "</NFe>"
        )


def get_assinador() -> AssinadorProtocol:
    return import_string(settings.FISCAL_ASSINADOR)()
