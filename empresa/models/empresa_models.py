import uuid

from django.core.validators import MinLengthValidator
from django.db import models


class AmbienteNfe(models.TextChoices):
    PRODUCAO = "producao", "Produção"
    HOMOLOGACAO = "homologacao", "Homologação"


class Empresa(models.Model):
    """
    Empresa emitente de NF-e.
    Identidade e configuração de ambiente; o certificado fica em EmpresaCertificadoA1.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
    )

    razao_social = models.CharField(
        max_length=120,
        help_text="Razão social da empresa emitente (xNome).",
    )

    cnpj = models.CharField(
        max_length=14,
        unique=True,
        validators=[MinLengthValidator(14)],
        db_index=True,
        help_text="CNPJ da empresa (somente números, 14 dígitos).",
    )

    uf = models.CharField(
        max_length=2,
        default="SP",
        help_text="Sigla da UF do emitente.",
    )

    ambiente_nfe = models.CharField(
        max_length=20,
        choices=AmbienteNfe.choices,
        default=AmbienteNfe.HOMOLOGACAO,
        help_text="Ambiente configurado para emissão de NF-e.",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "empresa"
        verbose_name = "Empresa"
        verbose_name_plural = "Empresas"
        ordering = ["razao_social"]

    def __str__(self):
        return f"{self.razao_social} ({self.cnpj})"

    @property
    def tp_amb(self) -> str:
        """tpAmb da NF-e: "1" produção, "2" homologação."""
        return "1" if self.ambiente_nfe == AmbienteNfe.PRODUCAO else "2"
