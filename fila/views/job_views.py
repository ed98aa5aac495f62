from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from fila.services.fila_service import obter_status_job
from fiscal.services.legado_service import EscopoEmpresas


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def status_job(request, job_id):
    """
    Polling do job: {status, last_error, updated_at}.

    Job inexistente ou de empresa sem vínculo com o usuário devolve
    {"status": "unknown"} com 200.
    """
    escopo = EscopoEmpresas.do_usuario(request.user)
    return Response(obter_status_job(job_id, escopo=escopo), status=status.HTTP_200_OK)
