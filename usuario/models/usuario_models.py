import uuid

from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    # username/email padrões do Django
    pass


class UserEmpresa(models.Model):
    """
    Vínculo usuário ↔ empresa.

    O conjunto de empresas vinculadas define o escopo de acesso do usuário
    a emissões, pedidos e registros fiscais legados.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, on_delete=models.CASCADE)
    empresa_id = models.UUIDField()

    class Meta:
        db_table = "user_empresa"
        unique_together = ("user", "empresa_id")

    def __str__(self):
        return f"{self.user_id} → {self.empresa_id}"
