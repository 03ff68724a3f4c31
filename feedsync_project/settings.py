import os
from pathlib import Path

from celery.schedules import crontab

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_int(name, default):
    value = os.environ.get(name)
    return int(value) if value not in (None, '') else default


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'feedsync-dev-secret')
DEBUG = os.environ.get('DJANGO_DEBUG', '0') == '1'
ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost').split(',')

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'feedsync',
]

DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DATABASE_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.environ.get('DATABASE_NAME', str(BASE_DIR / 'feedsync.sqlite3')),
        'USER': os.environ.get('DATABASE_USER', ''),
        'PASSWORD': os.environ.get('DATABASE_PASSWORD', ''),
        'HOST': os.environ.get('DATABASE_HOST', ''),
        'PORT': os.environ.get('DATABASE_PORT', ''),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'
USE_TZ = True
TIME_ZONE = 'UTC'

# Catalog API
CATALOG_REQUEST_TIMEOUT = _env_int('CATALOG_REQUEST_TIMEOUT', 30)
CATALOG_PER_PAGE = _env_int('CATALOG_PER_PAGE', 100)
CATALOG_MAX_RETRIES = _env_int('CATALOG_MAX_RETRIES', 3)

# Blob storage for feed artifacts
BLOB_STORAGE_BASE_URL = os.environ.get('BLOB_STORAGE_BASE_URL', '')
BLOB_STORAGE_API_KEY = os.environ.get('BLOB_STORAGE_API_KEY', '')
BLOB_STORAGE_TIMEOUT = _env_int('BLOB_STORAGE_TIMEOUT', 60)

# Feed lifecycle
FEED_RETENTION_DAYS = _env_int('FEED_RETENTION_DAYS', 7)
SYNC_STAGGER_SECONDS = _env_int('SYNC_STAGGER_SECONDS', 5)
FEED_AFTER_SYNC_DELAY = _env_int('FEED_AFTER_SYNC_DELAY', 120)
STUCK_SYNC_TIMEOUT = _env_int('STUCK_SYNC_TIMEOUT', 300)

# Celery
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', None)
CELERY_TASK_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']
CELERY_WORKER_CONCURRENCY = _env_int('CELERY_WORKER_CONCURRENCY', 2)
CELERY_TASK_ACKS_LATE = True
CELERY_WORKER_PREFETCH_MULTIPLIER = 1
CELERY_BEAT_SCHEDULE = {
    'periodic-sync': {
        'task': 'feedsync.periodic_sync',
        'schedule': crontab(minute=0),
    },
    'recover-stuck-syncs': {
        'task': 'feedsync.recover_stuck_syncs',
        'schedule': crontab(),
    },
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'default': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'default',
        },
    },
    'loggers': {
        'feedsync': {
            'handlers': ['console'],
            'level': os.environ.get('FEEDSYNC_LOG_LEVEL', 'INFO'),
        },
    },
}
