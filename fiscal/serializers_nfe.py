# fiscal/serializers_nfe.py
from rest_framework import serializers

from fiscal.models import NfeEmissao


class AutorizarNfeInputSerializer(serializers.Serializer):
    """
    Pedido de autorização NF-e.

    draft precisa conter ao menos chave_acesso, numero e serie; o restante
    do rascunho é repassado ao assinador sem interpretação.
    """

    draft = serializers.DictField()
    companyId = serializers.UUIDField()
    environment = serializers.ChoiceField(choices=["1", "2"])
    linkedDocumentId = serializers.UUIDField(required=False, allow_null=True)

    def validate_draft(self, value):
        faltando = [campo for campo in ("chave_acesso", "numero", "serie") if value.get(campo) in (None, "")]
        if faltando:
            raise serializers.ValidationError(f"Campos obrigatórios ausentes no draft: {', '.join(faltando)}.")
        return value


class NfeEmissaoSerializer(serializers.ModelSerializer):
    empresa_id = serializers.UUIDField(read_only=True)
    pedido_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = NfeEmissao
        fields = [
            "id",
            "empresa_id",
            "pedido_id",
            "chave_acesso",
            "numero",
            "serie",
            "status",
            "origem",
            "uf",
            "tp_amb",
            "c_stat",
            "x_motivo",
            "n_recibo",
            "n_prot",
            "dh_recbto",
            "tentativas",
            "autorizada_em",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class ConsultarNfeInputSerializer(serializers.Serializer):
    """id canônico, chave de acesso, id de pedido ou id legado."""

    id = serializers.CharField(max_length=60)


class ConsultarNfeOutputSerializer(serializers.Serializer):
    success = serializers.BooleanField()
    status = serializers.CharField()
    responseCode = serializers.CharField(allow_null=True)
    responseMessage = serializers.CharField(allow_null=True, allow_blank=True)
    protocolNumber = serializers.CharField(allow_null=True, required=False)
    protocolTimestamp = serializers.CharField(allow_null=True, required=False)
    method = serializers.ChoiceField(choices=["receipt", "protocol"])
