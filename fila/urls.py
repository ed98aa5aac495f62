from django.urls import path

from fila.views.job_views import status_job

app_name = "fila"

urlpatterns = [
    path("jobs/<str:job_id>", status_job, name="job_status"),
    path("jobs/<str:job_id>/", status_job),
]
