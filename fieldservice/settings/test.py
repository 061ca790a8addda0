"""
Settings for the pytest suite (pytest-django).
File-backed SQLite so threaded tests share one database, quiet logging.
"""

from .base import *

DEPLOYMENT_MODE = 'test'

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'test.sqlite3',
        'OPTIONS': {
            'timeout': 20,
            'transaction_mode': 'IMMEDIATE',
        },
        'TEST': {
            'NAME': BASE_DIR / 'test_fieldservice.sqlite3',
        },
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {
        'null': {'class': 'logging.NullHandler'},
    },
    'loggers': {
        'parts': {'handlers': ['null'], 'level': 'DEBUG', 'propagate': True},
        'jobs': {'handlers': ['null'], 'level': 'DEBUG', 'propagate': True},
    },
}
