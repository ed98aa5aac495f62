from datetime import datetime, timezone

from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse

from fila.models import Job, JobStatus


def liveness(request):
    return JsonResponse({"ok": True})


def readiness(request):
    """
    Banco acessível e fila legível. Informa o backlog da fila e qual
    client SEFAZ está configurado (mock ou soap).
    """
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()
        pendentes = Job.objects.filter(status=JobStatus.PENDENTE).count()
    except DatabaseError as e:
        return JsonResponse({"ok": False, "error": str(e)}, status=503)

    return JsonResponse(
        {
            "ok": True,
            "fila_pendentes": pendentes,
            "sefaz_client": getattr(settings, "FISCAL_SEFAZ_CLIENT", "mock"),
        }
    )


def time_now(request):
    now = datetime.now(timezone.utc).astimezone()
    return JsonResponse({"now": now.isoformat()})
