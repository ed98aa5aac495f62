# commons/exceptions.py
"""
Exception handler do DRF para o domínio fiscal.

Erros de comunicação com a SEFAZ podem carregar detalhes internos
(código, hint, status HTTP). Em produção esses detalhes só são devolvidos
a usuários staff; os demais recebem apenas a mensagem genérica. O detalhe
completo sempre fica disponível nos logs para operação.
"""

from django.conf import settings
from rest_framework.views import exception_handler


def _pode_ver_detalhe_interno(request) -> bool:
    if getattr(settings, "FISCAL_EXPOR_ERRO_SEFAZ", False):
        return True
    user = getattr(request, "user", None)
    return bool(user is not None and getattr(user, "is_staff", False))


def fiscal_exception_handler(exc, context):
    response = exception_handler(exc, context)
    if response is None:
        return None

    detalhe_interno = getattr(exc, "detalhe_interno", None)
    if detalhe_interno:
        request = context.get("request")
        if _pode_ver_detalhe_interno(request):
            data = dict(response.data) if isinstance(response.data, dict) else {"detail": response.data}
            data["sefaz"] = detalhe_interno
            response.data = data

    request = context.get("request")
    request_id = getattr(request, "request_id", None)
    if request_id:
        response["X-Request-ID"] = request_id
    return response
