from django.urls import path
from .views.usuario_views import login, refresh

urlpatterns = [
    path("auth/login", login),
    path("auth/refresh", refresh),
]
