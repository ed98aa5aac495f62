from .usuario_models import User, UserEmpresa

__all__ = ["User", "UserEmpresa"]
