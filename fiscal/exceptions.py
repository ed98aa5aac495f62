# fiscal/exceptions.py
"""
Exceções do domínio fiscal.

Todas carregam um detail no formato {"code": "FISCAL_xxxx", "message": ...},
o mesmo contrato usado pelas views, para poderem ser levantadas da
service e propagadas pelo DRF sem tradução.

O atributo ``retentavel`` é lido pelo worker da fila: falhas locais
(chave inválida, certificado, assinatura) não melhoram com reprocessamento.
"""

from rest_framework import status
from rest_framework.exceptions import APIException

ERR_CHAVE_INVALIDA = "FISCAL_4201"
ERR_UF_DESCONHECIDA = "FISCAL_4202"
ERR_CERTIFICADO_INDISPONIVEL = "FISCAL_3001"
ERR_ASSINATURA = "FISCAL_5002"
ERR_SEFAZ = "FISCAL_5999"
ERR_CONFLITO = "FISCAL_4090"
ERR_NO_PERMISSION = "AUTH_1006"
ERR_EMISSAO_NAO_ENCONTRADA = "FISCAL_4100"
ERR_RASCUNHO_INVALIDO = "FISCAL_4001"


class FiscalError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "fiscal_error"
    codigo = "FISCAL_0000"
    mensagem_padrao = "Erro fiscal."
    retentavel = False

    def __init__(self, message: str | None = None):
        self.message = message or self.mensagem_padrao
        super().__init__(detail={"code": self.codigo, "message": self.message})

    def __str__(self):
        return self.message


class InvalidAccessKeyError(FiscalError):
    codigo = ERR_CHAVE_INVALIDA
    default_code = "invalid_access_key"
    mensagem_padrao = "Chave de acesso deve ter exatamente 44 dígitos numéricos."


class RascunhoInvalidoError(FiscalError):
    codigo = ERR_RASCUNHO_INVALIDO
    default_code = "invalid_draft"
    mensagem_padrao = "Rascunho da NF-e inválido."


class UnknownJurisdictionError(FiscalError):
    codigo = ERR_UF_DESCONHECIDA
    default_code = "unknown_jurisdiction"
    mensagem_padrao = "Código de UF da chave de acesso não reconhecido."


class CredentialUnavailableError(FiscalError):
    """
    Certificado A1 ausente, expirado ou com senha inválida.

    Aborta a emissão antes da assinatura; nunca é confundido com uma
    rejeição da SEFAZ.
    """

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    codigo = ERR_CERTIFICADO_INDISPONIVEL
    default_code = "credential_unavailable"
    mensagem_padrao = "Certificado A1 indisponível para a empresa."

    def __init__(self, message: str | None = None, *, motivo: str = "indisponivel"):
        self.motivo = motivo
        super().__init__(message)


class SigningFailedError(FiscalError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    codigo = ERR_ASSINATURA
    default_code = "signing_failed"
    mensagem_padrao = "Falha ao assinar o XML da NF-e."


class ConflictAlreadyExistsError(FiscalError):
    """
    Violação de unicidade (empresa, chave_acesso) em submissões concorrentes.

    Uso interno: quem recebe relê o registro vencedor e devolve como sucesso.
    """

    status_code = status.HTTP_409_CONFLICT
    codigo = ERR_CONFLITO
    default_code = "conflict"
    mensagem_padrao = "Emissão já registrada para a chave de acesso."


class SefazIndisponivelError(FiscalError):
    """
    Face HTTP de um SefazTechnicalError.

    A mensagem pública é sempre genérica; os detalhes internos vão em
    ``detalhe_interno`` e só são expostos pelo exception handler para
    quem pode vê-los.
    """

    status_code = status.HTTP_502_BAD_GATEWAY
    codigo = ERR_SEFAZ
    default_code = "authority_error"
    mensagem_padrao = "Erro ao comunicar com a SEFAZ."
    retentavel = True

    def __init__(self, *, detalhe_interno: dict | None = None):
        self.detalhe_interno = detalhe_interno or {}
        super().__init__()


class EmissaoNaoEncontradaError(FiscalError):
    status_code = status.HTTP_404_NOT_FOUND
    codigo = ERR_EMISSAO_NAO_ENCONTRADA
    default_code = "not_found"
    mensagem_padrao = "Emissão NF-e não encontrada para o identificador informado."


class EmissaoPendenteError(FiscalError):
    """
    Lote ainda sem resultado na SEFAZ (processing) ou envio anterior sem
    confirmação. Usado pela fila para reagendar a consulta.
    """

    status_code = status.HTTP_409_CONFLICT
    codigo = "FISCAL_4091"
    default_code = "pending"
    mensagem_padrao = "NF-e ainda em processamento na SEFAZ."
    retentavel = True
