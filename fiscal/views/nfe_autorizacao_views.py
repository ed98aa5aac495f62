# fiscal/views/nfe_autorizacao_views.py

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import (
    APIException,
    PermissionDenied,
    ValidationError as DRFValidationError,
)
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from fiscal.exceptions import FiscalError
from fiscal.serializers_nfe import AutorizarNfeInputSerializer, NfeEmissaoSerializer
from fiscal.services.autorizacao_service import solicitar_autorizacao

logger = logging.getLogger("nfe.fiscal")


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def autorizar_nfe_view(request):
    """
    POST /api/v1/fiscal/nfe/autorizar

    Aceita o rascunho e enfileira o envio (202 + jobId). Se a chave já foi
    enviada à SEFAZ, devolve o registro existente (200) sem novo envio.
    """
    user = request.user

    try:
        ser_in = AutorizarNfeInputSerializer(data=request.data)
        ser_in.is_valid(raise_exception=True)
        dados = ser_in.validated_data

        result = solicitar_autorizacao(
            user=user,
            rascunho=dados["draft"],
            empresa_id=dados["companyId"],
            ambiente=dados["environment"],
            pedido_id=dados.get("linkedDocumentId"),
        )

        if result.aceita:
            return Response(
                {"success": True, "jobId": result.job_id},
                status=status.HTTP_202_ACCEPTED,
            )

        return Response(
            {
                "success": True,
                "message": result.mensagem,
                "emission": NfeEmissaoSerializer(result.emissao).data,
            },
            status=status.HTTP_200_OK,
        )

    except DRFValidationError as exc:
        logger.warning(
            "nfe_autorizar_validacao",
            extra={
                "event": "nfe_autorizar",
                "user_id": getattr(user, "id", None),
                "errors": exc.detail,
                "outcome": "validation_error",
            },
        )
        raise

    except PermissionDenied as exc:
        logger.warning(
            "nfe_autorizar_permission_denied",
            extra={
                "event": "nfe_autorizar",
                "user_id": getattr(user, "id", None),
                "empresa_id": str(request.data.get("companyId")),
                "detail": str(exc.detail),
                "outcome": "forbidden",
            },
        )
        raise

    except FiscalError as exc:
        logger.warning(
            "nfe_autorizar_erro_fiscal",
            extra={
                "event": "nfe_autorizar",
                "user_id": getattr(user, "id", None),
                "code": exc.codigo,
                "detail": exc.message,
                "outcome": "fiscal_error",
            },
        )
        raise

    except DjangoValidationError as exc:
        logger.warning(
            "nfe_autorizar_validacao_django",
            extra={
                "event": "nfe_autorizar",
                "user_id": getattr(user, "id", None),
                "errors": exc.messages,
                "outcome": "validation_error",
            },
        )
        raise DRFValidationError(detail=exc.messages)

    except APIException as exc:
        logger.error(
            "nfe_autorizar_api_exception",
            extra={
                "event": "nfe_autorizar",
                "user_id": getattr(user, "id", None),
                "detail": str(exc.detail),
                "outcome": "api_exception",
            },
        )
        raise
