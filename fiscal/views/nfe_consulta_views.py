# fiscal/views/nfe_consulta_views.py

import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import APIException, ValidationError as DRFValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from fiscal.exceptions import SefazIndisponivelError
from fiscal.sefaz_clients import SefazTechnicalError
from fiscal.serializers_nfe import ConsultarNfeInputSerializer, ConsultarNfeOutputSerializer
from fiscal.services.consulta_service import consultar_situacao
from fiscal.services.legado_service import EscopoEmpresas, resolver_emissao

logger = logging.getLogger("nfe.fiscal")


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def consultar_nfe_view(request):
    """
    POST /api/v1/fiscal/nfe/consultar

    Resolve o id (canônico, chave, pedido ou legado) dentro das empresas do
    usuário, consulta a SEFAZ por recibo ou por chave e devolve a situação.
    """
    user = request.user

    try:
        ser_in = ConsultarNfeInputSerializer(data=request.data)
        ser_in.is_valid(raise_exception=True)

        escopo = EscopoEmpresas.do_usuario(user)
        emissao = resolver_emissao(ser_in.validated_data["id"], escopo)
        resultado = consultar_situacao(emissao, user=user)

        ser_out = ConsultarNfeOutputSerializer(
            {
                "success": resultado.success,
                "status": resultado.status,
                "responseCode": resultado.c_stat,
                "responseMessage": resultado.x_motivo,
                "protocolNumber": resultado.n_prot,
                "protocolTimestamp": resultado.dh_recbto,
                "method": resultado.metodo,
            }
        )
        return Response(ser_out.data, status=status.HTTP_200_OK)

    except SefazTechnicalError as exc:
        logger.error(
            "nfe_consultar_erro_sefaz",
            extra={
                "event": "nfe_consultar",
                "user_id": getattr(user, "id", None),
                "codigo": exc.codigo,
                "mensagem": str(exc),
                "hint": exc.hint,
                "http_status": exc.http_status,
                "outcome": "authority_error",
            },
        )
        raise SefazIndisponivelError(detalhe_interno=exc.detalhe_interno()) from exc

    except DRFValidationError as exc:
        logger.warning(
            "nfe_consultar_validacao",
            extra={
                "event": "nfe_consultar",
                "user_id": getattr(user, "id", None),
                "errors": exc.detail,
                "outcome": "validation_error",
            },
        )
        raise

    except APIException as exc:
        logger.warning(
            "nfe_consultar_api_exception",
            extra={
                "event": "nfe_consultar",
                "user_id": getattr(user, "id", None),
                "detail": str(exc.detail),
                "outcome": "api_exception",
            },
        )
        raise
