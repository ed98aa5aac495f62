from pathlib import Path
from datetime import timedelta
import os
import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(nome: str, default: bool) -> bool:
    valor = os.getenv(nome)
    if valor is None:
        return default
    return valor.strip().lower() in {"1", "true", "sim", "yes", "on"}


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only")
DEBUG = _env_bool("DJANGO_DEBUG", True)
APPEND_SLASH = True

ALLOWED_HOSTS = os.getenv("DJANGO_ALLOWED_HOSTS", "*,localhost,127.0.0.1").split(",")


INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.admin",

    "corsheaders",
    "rest_framework",
    "drf_spectacular",

    "commons",
    "usuario",   # AUTH_USER_MODEL
    "empresa",
    "vendas",
    "fiscal",
    "fila",
]


MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "commons.middleware.RequestLogMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]


ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

CORS_ALLOW_ALL_ORIGINS = True

# PostgreSQL quando PGDATABASE estiver definido; SQLite local/testes caso contrário.
if os.getenv("PGDATABASE"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("PGDATABASE"),
            "USER": os.getenv("PGUSER", "postgres"),
            "PASSWORD": os.getenv("PGPASSWORD", ""),
            "HOST": os.getenv("PGHOST", "127.0.0.1"),
            "PORT": os.getenv("PGPORT", "5432"),
            "CONN_MAX_AGE": int(os.getenv("DB_CONN_MAX_AGE", "60")),
            "TEST": {
                "NAME": "test_nfedados",
            },
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

AUTH_USER_MODEL = "usuario.User"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
    ),
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "EXCEPTION_HANDLER": "commons.exceptions.fiscal_exception_handler",
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=30),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=7),
    "SIGNING_KEY": SECRET_KEY,
    "AUTH_HEADER_TYPES": ("Bearer",),
}

LANGUAGE_CODE = "pt-br"
TIME_ZONE = "America/Sao_Paulo"
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"

SPECTACULAR_SETTINGS = {
    "TITLE": "GetStart NF-e API",
    "VERSION": "1.0",
    "SERVE_INCLUDE_SCHEMA": False,
}

sentry_sdk.init(
    dsn=os.getenv("SENTRY_DSN", ""),
    integrations=[DjangoIntegration()],
    traces_sample_rate=0.1,
    send_default_pii=False,
)

# =============================
# 🧱 Templates
# =============================
TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "nfe-default",
    }
}

# =============================
# 🧾 Fiscal / NF-e
# =============================

# Chave Fernet usada para cifrar PFX e senha do certificado A1 em repouso.
FISCAL_CERT_ENCRYPTION_KEY = os.getenv("FISCAL_CERT_ENCRYPTION_KEY", "")

# Validade (segundos) da credencial decifrada no cache em memória do processo.
FISCAL_CERT_CACHE_TTL = int(os.getenv("FISCAL_CERT_CACHE_TTL", "900"))

# "mock" (dev/testes) ou "soap" (SefazSoapClient).
FISCAL_SEFAZ_CLIENT = os.getenv("FISCAL_SEFAZ_CLIENT", "mock")
FISCAL_SEFAZ_TIMEOUT = float(os.getenv("FISCAL_SEFAZ_TIMEOUT", "30"))

# Endpoints por UF/ambiente. UFs não listadas usam "SVRS".
FISCAL_SEFAZ_ENDPOINTS = {
    "SVRS": {
        "1": {
            "autorizacao": "https://nfe.svrs.rs.gov.br/ws/NfeAutorizacao/NFeAutorizacao4.asmx",
            "ret_autorizacao": "https://nfe.svrs.rs.gov.br/ws/NfeRetAutorizacao/NFeRetAutorizacao4.asmx",
            "consulta_protocolo": "https://nfe.svrs.rs.gov.br/ws/NfeConsulta/NfeConsulta4.asmx",
        },
        "2": {
            "autorizacao": "https://nfe-homologacao.svrs.rs.gov.br/ws/NfeAutorizacao/NFeAutorizacao4.asmx",
            "ret_autorizacao": "https://nfe-homologacao.svrs.rs.gov.br/ws/NfeRetAutorizacao/NFeRetAutorizacao4.asmx",
            "consulta_protocolo": "https://nfe-homologacao.svrs.rs.gov.br/ws/NfeConsulta/NfeConsulta4.asmx",
        },
    },
    "SP": {
        "1": {
            "autorizacao": "https://nfe.fazenda.sp.gov.br/ws/nfeautorizacao4.asmx",
            "ret_autorizacao": "https://nfe.fazenda.sp.gov.br/ws/nferetautorizacao4.asmx",
            "consulta_protocolo": "https://nfe.fazenda.sp.gov.br/ws/nfeconsultaprotocolo4.asmx",
        },
        "2": {
            "autorizacao": "https://homologacao.nfe.fazenda.sp.gov.br/ws/nfeautorizacao4.asmx",
            "ret_autorizacao": "https://homologacao.nfe.fazenda.sp.gov.br/ws/nferetautorizacao4.asmx",
            "consulta_protocolo": "https://homologacao.nfe.fazenda.sp.gov.br/ws/nfeconsultaprotocolo4.asmx",
        },
    },
}

FISCAL_ASSINADOR = os.getenv("FISCAL_ASSINADOR", "fiscal.assinador.AssinadorEnvelopeRSA")

# Tabela cStat -> status. Códigos não listados caem na regra do prefixo
# de denegação e, por fim, em "rejected".
FISCAL_CSTAT_TABELA = {
    "authorized": ["100", "150"],
    "processing": ["103", "105"],
}
FISCAL_CSTAT_PREFIXO_DENEGADA = "1"

# Em produção, detalhes brutos da SEFAZ só aparecem para staff.
FISCAL_EXPOR_ERRO_SEFAZ = _env_bool("FISCAL_EXPOR_ERRO_SEFAZ", DEBUG)

# =============================
# 📬 Fila de jobs
# =============================
FILA_MAX_TENTATIVAS = int(os.getenv("FILA_MAX_TENTATIVAS", "5"))
FILA_BACKOFF_BASE_SEGUNDOS = int(os.getenv("FILA_BACKOFF_BASE_SEGUNDOS", "2"))
FILA_BACKOFF_MAX_SEGUNDOS = int(os.getenv("FILA_BACKOFF_MAX_SEGUNDOS", "300"))
FILA_INTERVALO_POLLING = float(os.getenv("FILA_INTERVALO_POLLING", "5"))
FILA_CONSULTA_ATRASO_SEGUNDOS = int(os.getenv("FILA_CONSULTA_ATRASO_SEGUNDOS", "10"))
# job em processing sem atualização há mais que isso volta a ser entregue
FILA_TIMEOUT_PROCESSAMENTO = int(os.getenv("FILA_TIMEOUT_PROCESSAMENTO", "600"))

# job_type -> handler (dotted path)
FILA_HANDLERS = {
    "EMIT": "fiscal.jobs.processar_emit",
    "CONSULTA": "fiscal.jobs.processar_consulta",
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "class": "pythonjsonlogger.json.JsonFormatter",
        },
        "simple": {
            "format": "{levelname} {asctime} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "level": "INFO",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": True,
        },
        "nfe.fiscal": {
            "handlers": ["console"],
            "level": "DEBUG",
            "propagate": True,
        },
        "nfe.fila": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": True,
        },
    },
}

if not DEBUG:
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True
    SECURE_HSTS_SECONDS = 63072000
    SECURE_CONTENT_TYPE_NOSNIFF = True
