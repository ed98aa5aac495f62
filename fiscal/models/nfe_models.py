import uuid

from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone


class EmissaoStatus(models.TextChoices):
    RASCUNHO = "draft", "Rascunho"
    PROCESSANDO = "processing", "Em processamento"
    AUTORIZADA = "authorized", "Autorizada"
    DENEGADA = "denied", "Denegada"
    REJEITADA = "rejected", "Rejeitada"
    CANCELADA = "cancelled", "Cancelada"


class OrigemEmissao(models.TextChoices):
    PIPELINE = "pipeline", "Pipeline de emissão"
    LEGADO = "legado", "Backfill de registro legado"


FALHA_ASSINATURA = "SIGNING_FAILED"


class NfeEmissao(models.Model):
    """
    Registro canônico de emissão NF-e.

    - Um registro por (empresa, chave_acesso): chave de idempotência.
    - Único alvo de escrita do pipeline; registros legados entram aqui
      apenas via backfill (origem = legado).
    - Depois de autorizada, xml_assinado e n_prot não mudam mais.
    """

    CAMPOS_IMUTAVEIS_APOS_AUTORIZACAO = ("xml_assinado", "n_prot")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    empresa = models.ForeignKey(
        "empresa.Empresa",
        on_delete=models.PROTECT,
        related_name="nfe_emissoes",
    )
    pedido = models.ForeignKey(
        "vendas.PedidoVenda",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="nfe_emissoes",
        help_text="Documento de negócio que originou a emissão (opcional).",
    )

    chave_acesso = models.CharField(max_length=44)
    numero = models.PositiveIntegerField()
    serie = models.PositiveIntegerField()

    status = models.CharField(
        max_length=20,
        choices=EmissaoStatus.choices,
        default=EmissaoStatus.RASCUNHO,
    )
    origem = models.CharField(
        max_length=20,
        choices=OrigemEmissao.choices,
        default=OrigemEmissao.PIPELINE,
    )

    # UF emitente: código IBGE (cUF) e sigla
    c_uf = models.CharField(max_length=2)
    uf = models.CharField(max_length=2)

    # "1" produção / "2" homologação; propagado a todas as consultas da chave
    tp_amb = models.CharField(max_length=1)

    rascunho = models.JSONField(
        blank=True,
        null=True,
        help_text="Snapshot do rascunho usado para assinar (processamento assíncrono).",
    )
    xml_assinado = models.TextField(blank=True, default="")
    xml_nfe_proc = models.TextField(
        blank=True,
        null=True,
        help_text="nfeProc (NFe assinada + protNFe) montado na autorização.",
    )

    # Retorno da SEFAZ, mensagem preservada literalmente
    c_stat = models.CharField(max_length=10, blank=True, null=True)
    x_motivo = models.TextField(blank=True, null=True)
    n_recibo = models.CharField(max_length=20, blank=True, null=True)
    n_prot = models.CharField(max_length=20, blank=True, null=True)
    dh_recbto = models.CharField(max_length=40, blank=True, null=True)

    id_lote = models.CharField(max_length=15, blank=True, null=True)
    tentativas = models.PositiveIntegerField(
        default=0,
        help_text="Quantidade de envios à SEFAZ. > 0 significa que o lote já saiu.",
    )

    falha_local = models.CharField(
        max_length=40,
        blank=True,
        null=True,
        help_text="Motivo de falha local sem contato com a SEFAZ (ex: SIGNING_FAILED).",
    )

    autorizada_em = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "nfe_emissao"
        constraints = [
            models.UniqueConstraint(
                fields=["empresa", "chave_acesso"],
                name="uniq_nfe_emissao_empresa_chave",
            ),
        ]
        indexes = [
            models.Index(fields=["chave_acesso"]),
            models.Index(fields=["empresa", "status"]),
            models.Index(fields=["pedido"]),
        ]

    def __str__(self):
        return f"NF-e {self.numero}/{self.serie} - {self.chave_acesso} ({self.status})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._estado_carregado = {
            campo: getattr(instance, campo, None)
            for campo in ("status", *cls.CAMPOS_IMUTAVEIS_APOS_AUTORIZACAO)
            if campo in field_names
        }
        return instance

    @property
    def foi_submetida(self) -> bool:
        return (self.tentativas or 0) > 0

    def _validar_imutabilidade(self):
        carregado = getattr(self, "_estado_carregado", None)
        if not carregado or carregado.get("status") != EmissaoStatus.AUTORIZADA:
            return
        # preencher um campo vazio é permitido (recuperação de protocolo)
        for campo in self.CAMPOS_IMUTAVEIS_APOS_AUTORIZACAO:
            if carregado.get(campo) and getattr(self, campo) != carregado[campo]:
                raise ValidationError(
                    f"NF-e {self.chave_acesso} autorizada: campo '{campo}' é imutável."
                )

    def save(self, *args, **kwargs):
        self._validar_imutabilidade()
        super().save(*args, **kwargs)
        self._estado_carregado = {
            campo: getattr(self, campo)
            for campo in ("status", *self.CAMPOS_IMUTAVEIS_APOS_AUTORIZACAO)
        }


class NfeAuditoria(models.Model):
    """
    Trilha de auditoria de eventos da NF-e.

    Exemplos de tipo_evento:
      - EMISSAO_AUTORIZADA
      - EMISSAO_PROCESSANDO
      - EMISSAO_REJEITADA / EMISSAO_DENEGADA
      - FALHA_ASSINATURA
      - CONSULTA_SITUACAO
      - BACKFILL_LEGADO
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tipo_evento = models.CharField(max_length=50)

    nfe_emissao = models.ForeignKey(
        "fiscal.NfeEmissao",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="auditorias",
    )

    empresa_id = models.UUIDField()
    user_id = models.IntegerField(blank=True, null=True)
    chave_acesso = models.CharField(max_length=44)

    c_stat = models.CharField(max_length=10, blank=True, null=True)
    x_motivo = models.TextField(blank=True, null=True)
    n_prot = models.CharField(max_length=20, blank=True, null=True)

    tp_amb = models.CharField(max_length=1, blank=True, null=True)
    uf = models.CharField(max_length=2, blank=True, null=True)

    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "nfe_auditoria"
        indexes = [
            models.Index(fields=["chave_acesso"]),
            models.Index(fields=["tipo_evento"]),
            models.Index(fields=["empresa_id"]),
        ]

    def __str__(self):
        return f"[{self.tipo_evento}] chave={self.chave_acesso} cStat={self.c_stat}"
