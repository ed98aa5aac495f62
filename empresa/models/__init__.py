from .empresa_models import Empresa, AmbienteNfe
from .empresa_certificado_models import EmpresaCertificadoA1

__all__ = ["Empresa", "AmbienteNfe", "EmpresaCertificadoA1"]
