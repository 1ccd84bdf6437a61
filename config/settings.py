"""
Django settings for the Retail Stock Ledger service.

All deployment-specific values come from the environment (or a .env file)
through django-environ.
"""
import sys
from datetime import timedelta
from pathlib import Path

import environ

BASE_DIR = Path(__file__).resolve().parent.parent

TESTING = 'test' in sys.argv or 'pytest' in sys.modules

env = environ.Env(
    DEBUG=(bool, False),
    SECRET_KEY=(str, ''),
    ALLOWED_HOSTS=(list, ['localhost', '127.0.0.1']),
    DATABASE_URL=(str, f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
    REDIS_URL=(str, 'redis://localhost:6379/0'),
    CELERY_BROKER_URL=(str, ''),
    CELERY_RESULT_BACKEND=(str, ''),
    RATE_LIMIT_ENABLED=(bool, not TESTING),
    INVENTORY_API_BASE_URL=(str, 'http://localhost:8000/api/integration'),
    INVENTORY_API_TIMEOUT=(float, 5.0),
    INTEGRATION_MAX_ATTEMPTS=(int, 5),
    INTEGRATION_RECONCILE_INTERVAL=(int, 300),
    INTEGRATION_PENDING_GRACE=(int, 120),
    INTEGRATION_RETRY_ASYNC=(bool, not TESTING),
    WISHLIST_CONVERSION_DECREMENTS_STOCK=(bool, False),
    LOG_LEVEL=(str, 'INFO'),
)

env_file = BASE_DIR / '.env'
if env_file.exists():
    env.read_env(str(env_file))

# =============================================================================
# Core
# =============================================================================

SECRET_KEY = env('SECRET_KEY') or 'dev-insecure-change-me'
DEBUG = env('DEBUG')
ALLOWED_HOSTS = env('ALLOWED_HOSTS')

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'inventory.apps.InventoryConfig',
    'sales.apps.SalesConfig',
    'customers.apps.CustomersConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'config.urls'
WSGI_APPLICATION = 'config.wsgi.application'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

DATABASES = {
    'default': env.db('DATABASE_URL'),
}

if DATABASES['default']['ENGINE'] == 'django.db.backends.sqlite3':
    # Writers take the write lock at BEGIN and queue behind each other.
    # Row-level locking (select_for_update) needs PostgreSQL.
    DATABASES['default'].setdefault('OPTIONS', {}).update({
        'timeout': 20,
        'transaction_mode': 'IMMEDIATE',
    })
    # Threaded tests need a file database
    DATABASES['default'].setdefault('TEST', {}).setdefault('NAME', str(BASE_DIR / 'test_db.sqlite3'))

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

# =============================================================================
# REST framework
# =============================================================================

REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': ('rest_framework.renderers.JSONRenderer',),
    'DEFAULT_PARSER_CLASSES': ('rest_framework.parsers.JSONParser',),
    'DEFAULT_AUTHENTICATION_CLASSES': (),
    'DEFAULT_PERMISSION_CLASSES': ('rest_framework.permissions.AllowAny',),
    'EXCEPTION_HANDLER': 'core.exceptions.api_exception_handler',
    'UNAUTHENTICATED_USER': None,
}

# =============================================================================
# Redis / rate limiting
# =============================================================================

REDIS_URL = env('REDIS_URL')
RATE_LIMIT_ENABLED = env('RATE_LIMIT_ENABLED')

# =============================================================================
# Celery
# =============================================================================

CELERY_BROKER_URL = env('CELERY_BROKER_URL') or REDIS_URL
CELERY_RESULT_BACKEND = env('CELERY_RESULT_BACKEND') or REDIS_URL
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE
CELERY_BEAT_SCHEDULE = {
    'reconcile-failed-integrations': {
        'task': 'sales.tasks.reconcile_failed_integrations',
        'schedule': timedelta(seconds=env('INTEGRATION_RECONCILE_INTERVAL')),
    },
    'verify-stock-ledger': {
        'task': 'inventory.tasks.verify_stock_ledger',
        'schedule': timedelta(hours=1),
    },
}

# =============================================================================
# Inventory integration
# =============================================================================

INVENTORY_API_BASE_URL = env('INVENTORY_API_BASE_URL').rstrip('/')
INVENTORY_API_TIMEOUT = env('INVENTORY_API_TIMEOUT')
INTEGRATION_MAX_ATTEMPTS = env('INTEGRATION_MAX_ATTEMPTS')
# Seconds a PENDING sale is left to its own request before the sweep takes it
INTEGRATION_PENDING_GRACE = env('INTEGRATION_PENDING_GRACE')
# Queue retry_failed_integration right after a retryable failure
INTEGRATION_RETRY_ASYNC = env('INTEGRATION_RETRY_ASYNC')

# Wishlist conversion leaves stock untouched unless enabled.
WISHLIST_CONVERSION_DECREMENTS_STOCK = env('WISHLIST_CONVERSION_DECREMENTS_STOCK')

# =============================================================================
# Logging
# =============================================================================

LOG_LEVEL = env('LOG_LEVEL').upper()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'django': {'handlers': ['console'], 'level': 'WARNING', 'propagate': False},
        'core': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'inventory': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'sales': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'customers': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
    },
}
