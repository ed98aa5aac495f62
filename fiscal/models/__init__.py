from .nfe_models import (
    EmissaoStatus,
    FALHA_ASSINATURA,
    NfeAuditoria,
    NfeEmissao,
    OrigemEmissao,
)
from .nfe_legada_models import NfeLegada


__all__ = [
    "EmissaoStatus",
    "FALHA_ASSINATURA",
    "NfeAuditoria",
    "NfeEmissao",
    "NfeLegada",
    "OrigemEmissao",
]
