# fiscal/urls.py

from django.urls import path

from fiscal.views.nfe_autorizacao_views import autorizar_nfe_view
from fiscal.views.nfe_consulta_views import consultar_nfe_view

app_name = "fiscal"

urlpatterns = [
    # nfe - autorização assíncrona
    path("nfe/autorizar", autorizar_nfe_view, name="nfe_autorizar"),
    path("nfe/autorizar/", autorizar_nfe_view),

    # nfe - consulta de situação
    path("nfe/consultar", consultar_nfe_view, name="nfe_consultar"),
    path("nfe/consultar/", consultar_nfe_view),
]
