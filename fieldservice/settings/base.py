"""
Base settings for the fieldservice project.
Shared between local (technician laptop / office) and cloud deployments.
"""

from pathlib import Path
import os

from django.urls import reverse_lazy

BASE_DIR = Path(__file__).resolve().parent.parent.parent


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-k2w!3r#fieldservice-parts-ledger-dev-only-key')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv('DEBUG', 'True').lower() == 'true'

ALLOWED_HOSTS = os.getenv('ALLOWED_HOSTS', '*').split(',')


# Application definition
INSTALLED_APPS = [
    "unfold",
    "unfold.contrib.filters",
    "unfold.contrib.forms",
    "unfold.contrib.inlines",
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'jobs',
    'parts',
    'corsheaders',
    'rest_framework',
    'drf_spectacular',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'fieldservice.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [BASE_DIR / 'templates'],
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

WSGI_APPLICATION = 'fieldservice.wsgi.application'


# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]


# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.getenv('TIME_ZONE', 'UTC')
USE_I18N = True
USE_TZ = True


# Static files
STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'


# CORS
CORS_ALLOW_ALL_ORIGINS = True


# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# =============================================================================
# PARTS LEDGER - bootstrap defaults for PartsSettings.load()
# =============================================================================
# Only used when the singleton row is created for the first time; after that
# the values are edited through the admin or the settings endpoint.
PARTS_DEFAULT_MARKUP_PERCENT = os.getenv('PARTS_DEFAULT_MARKUP_PERCENT', '20')
PARTS_DEFAULT_LEAD_TIME_DAYS = int(os.getenv('PARTS_DEFAULT_LEAD_TIME_DAYS', '3'))
PARTS_MAX_CONFLICT_RETRIES = int(os.getenv('PARTS_MAX_CONFLICT_RETRIES', '3'))


# Unfold Admin Configuration
UNFOLD = {
    "SITE_TITLE": "Field Service Parts Admin",
    "SITE_HEADER": "Field Service Parts",
    "SITE_URL": "/",
    "SITE_SYMBOL": "build",

    "SIDEBAR": {
        "show_search": True,
        "show_all_applications": True,
        "navigation": [
            {
                "title": "Parts",
                "separator": True,
                "items": [
                    {
                        "title": "Catalog",
                        "icon": "inventory_2",
                        "link": reverse_lazy("admin:parts_part_changelist"),
                    },
                    {
                        "title": "Ledger",
                        "icon": "receipt_long",
                        "link": reverse_lazy("admin:parts_ledgertransaction_changelist"),
                    },
                    {
                        "title": "Storage Locations",
                        "icon": "local_shipping",
                        "link": reverse_lazy("admin:parts_storagelocation_changelist"),
                    },
                    {
                        "title": "Settings",
                        "icon": "settings",
                        "link": reverse_lazy("admin:parts_partssettings_changelist"),
                    },
                ],
            },
            {
                "title": "Jobs",
                "separator": True,
                "items": [
                    {
                        "title": "Jobs",
                        "icon": "handyman",
                        "link": reverse_lazy("admin:jobs_job_changelist"),
                    },
                    {
                        "title": "Job Parts",
                        "icon": "build_circle",
                        "link": reverse_lazy("admin:parts_jobpart_changelist"),
                    },
                ],
            },
        ],
    },
}

REST_FRAMEWORK = {
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',

    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
        'rest_framework.renderers.BrowsableAPIRenderer',
    ],
}


SPECTACULAR_SETTINGS = {
    'TITLE': 'Field Service Parts',
    'DESCRIPTION': 'Parts inventory ledger and FIFO costing API',
    'VERSION': '1.0.0',
}
