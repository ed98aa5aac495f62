import hashlib

from django.db import models

from empresa.models.empresa_models import Empresa


class EmpresaCertificadoA1(models.Model):
    """
    Armazena (cifrado) o certificado digital A1 da empresa.
    Separado da Empresa para facilitar rotação/gestão de certificados.
    """

    empresa = models.OneToOneField(
        Empresa,
        on_delete=models.CASCADE,
        related_name="certificado_a1",
        help_text="Empresa cujo certificado A1 é usado para assinar NF-e.",
    )

    a1_pfx = models.BinaryField(
        help_text="Arquivo PFX do certificado A1, cifrado com Fernet.",
    )

    senha_cifrada = models.BinaryField(
        help_text="Senha do PFX cifrada com Fernet.",
    )

    a1_expires_at = models.DateTimeField(
        help_text="Data de expiração do certificado A1.",
    )

    numero_serie = models.CharField(
        max_length=100,
        blank=True,
        help_text="Número de série do certificado (opcional, para conferência).",
    )

    emissor = models.CharField(
        max_length=200,
        blank=True,
        help_text="Emissor (CA) do certificado (opcional).",
    )

    fingerprint = models.CharField(
        max_length=64,
        editable=False,
        help_text="SHA-256 do material cifrado; muda a cada rotação do certificado.",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "empresa_certificado_a1"
        verbose_name = "Certificado A1 da Empresa"
        verbose_name_plural = "Certificados A1 das Empresas"

    def __str__(self):
        return f"Certificado A1 - {self.empresa} (expira em {self.a1_expires_at.date()})"

    def calcular_fingerprint(self) -> str:
        h = hashlib.sha256()
        h.update(bytes(self.a1_pfx or b""))
        h.update(bytes(self.senha_cifrada or b""))
        return h.hexdigest()

    def save(self, *args, **kwargs):
        self.fingerprint = self.calcular_fingerprint()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "fingerprint" not in update_fields:
            kwargs["update_fields"] = [*update_fields, "fingerprint"]
        super().save(*args, **kwargs)
