import os
from pathlib import Path
from dotenv import load_dotenv # Cargador de secretos

BASE_DIR = Path(__file__).resolve().parent.parent

# --- CARGAR VARIABLES DE ENTORNO ---
# Carga el archivo .env desde la raíz del proyecto
load_dotenv(BASE_DIR / '.env')


def _env_bool(nombre, default):
    return os.getenv(nombre, str(default)).strip().lower() in ('1', 'true', 'yes', 'si')


# --- SEGURIDAD ---
SECRET_KEY = os.getenv('SECRET_KEY', 'facturacion-sri-insecure-dev-key')
DEBUG = _env_bool('DEBUG', False)
ALLOWED_HOSTS = [h for h in os.getenv('ALLOWED_HOSTS', '').split(',') if h]

# -------------------------------------------------
# Apps Instaladas
# -------------------------------------------------
INSTALLED_APPS = [
    'django.contrib.contenttypes',

    # Cliente del protocolo de autorización SRI
    'facturacion',
]

LANGUAGE_CODE = 'es-ec'
TIME_ZONE = 'America/Guayaquil'
USE_I18N = True
USE_TZ = True

# Sin modelos propios: sqlite solo para el runner de tests
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# -------------------------------------------------
# SRI – Web Services Offline
# -------------------------------------------------
SRI_TEST_RECEPCION_WSDL = os.getenv(
    'SRI_TEST_RECEPCION_WSDL',
    'https://celcer.sri.gob.ec/comprobantes-electronicos-ws/RecepcionComprobantesOffline?wsdl',
)
SRI_TEST_AUTORIZACION_WSDL = os.getenv(
    'SRI_TEST_AUTORIZACION_WSDL',
    'https://celcer.sri.gob.ec/comprobantes-electronicos-ws/AutorizacionComprobantesOffline?wsdl',
)
SRI_PROD_RECEPCION_WSDL = os.getenv(
    'SRI_PROD_RECEPCION_WSDL',
    'https://cel.sri.gob.ec/comprobantes-electronicos-ws/RecepcionComprobantesOffline?wsdl',
)
SRI_PROD_AUTORIZACION_WSDL = os.getenv(
    'SRI_PROD_AUTORIZACION_WSDL',
    'https://cel.sri.gob.ec/comprobantes-electronicos-ws/AutorizacionComprobantesOffline?wsdl',
)

SRI_SSL_VERIFY = _env_bool('SRI_SSL_VERIFY', True)
SRI_REQUEST_TIMEOUT = float(os.getenv('SRI_REQUEST_TIMEOUT', 15))
SRI_RETRY_MAX = int(os.getenv('SRI_RETRY_MAX', 3))
SRI_RETRY_BACKOFF = float(os.getenv('SRI_RETRY_BACKOFF', 2))

# Consulta de autorización: 10 intentos cada 2.5 s
SRI_POLL_INTERVAL = float(os.getenv('SRI_POLL_INTERVAL', 2.5))
SRI_POLL_MAX_ATTEMPTS = int(os.getenv('SRI_POLL_MAX_ATTEMPTS', 10))

# Reintentos de Recepción ante errores de red (espera x2 en cada intento)
SRI_RECEPCION_MAX_ATTEMPTS = int(os.getenv('SRI_RECEPCION_MAX_ATTEMPTS', 3))
SRI_RECEPCION_RETRY_DELAY = float(os.getenv('SRI_RECEPCION_RETRY_DELAY', 2.0))

# Ficha técnica SRI: RSA-SHA1
SRI_DIGEST_ALGORITHM = os.getenv('SRI_DIGEST_ALGORITHM', 'sha1')

SRI_CODIGOS_EN_PROCESO = ('70',)
SRI_MARCADORES_EN_PROCESO = ('EN PROCESAMIENTO', 'PROCESAMIENTO')
SRI_CODIGOS_CLAVE_REGISTRADA = ('43',)

SRI_VALIDAR_ESTRUCTURA = _env_bool('SRI_VALIDAR_ESTRUCTURA', False)

# --- Celery (re-consulta de comprobantes PENDIENTES) ---
CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.getenv('CELERY_RESULT_BACKEND', CELERY_BROKER_URL)
CELERY_TASK_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TIMEZONE = TIME_ZONE

# --- LOGGING ---
LOG_DIR = BASE_DIR / 'logs'
LOG_DIR.mkdir(exist_ok=True)

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '%(asctime)s %(levelname)s %(name)s %(message)s',
        },
    },
    'handlers': {
        'console': {
            'level': 'INFO',
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
        'file': {
            'level': 'INFO',
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': LOG_DIR / 'django.log',
            'maxBytes': 1024 * 1024 * 5,  # 5MB
            'backupCount': 5,
            'formatter': 'verbose',
        },
        'sri_file': {
            'level': 'INFO',
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': LOG_DIR / 'sri.log',
            'maxBytes': 1024 * 1024 * 5,  # 5MB
            'backupCount': 5,
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'django': {
            'handlers': ['file'],
            'level': 'INFO',
            'propagate': True,
        },
        'facturacion': {
            'handlers': ['console', 'sri_file'],
            'level': os.getenv('SRI_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
