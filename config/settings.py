"""
Django settings for the plant hierarchy access control API.
"""
import os
from pathlib import Path
import environ
import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration

# Build paths inside the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Initialize environment variables
env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, ['localhost', '127.0.0.1']),
    DB_CONN_MAX_AGE=(int, 600),
    JSON_LOGS=(bool, False),
    LOG_LEVEL=(str, 'INFO'),
    PERMISSION_CACHE_TTL=(int, 300),
    AUDIT_SYSTEM_ACTOR_ID=(int, 0),
    RBAC_INSTALL_DB_TRIGGERS=(bool, True),
)

# Read .env file if it exists
environ.Env.read_env(os.path.join(BASE_DIR, '.env'))

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = env('SECRET_KEY', default='insecure-development-secret-key-change-me')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = env('DEBUG')

ALLOWED_HOSTS = env('ALLOWED_HOSTS')

# Application definition
INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',

    # Third-party apps
    'rest_framework',
    'drf_spectacular',

    # Local apps
    'apps.core',
    'apps.rbac',
    'apps.hierarchy',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',

    # Custom middleware
    'apps.core.middleware.RequestIDMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'

# Database
DATABASES = {
    'default': env.db('DATABASE_URL', default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
}
DATABASES['default']['CONN_MAX_AGE'] = env('DB_CONN_MAX_AGE')

# Configure based on database engine
if 'postgresql' in DATABASES['default']['ENGINE']:
    DATABASES['default']['OPTIONS'] = {
        'connect_timeout': 10,
    }

# Password hashing uses Django's default hashers
AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
]

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Custom User Model
# Soft-deletable users from apps.rbac; authentication is JWT only
AUTH_USER_MODEL = 'rbac.User'

# REST Framework
REST_FRAMEWORK = {
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
    'DEFAULT_PAGINATION_CLASS': 'apps.core.pagination.StandardResultsSetPagination',
    'PAGE_SIZE': 50,
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_PARSER_CLASSES': [
        'rest_framework.parsers.JSONParser',
    ],
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'apps.core.authentication.JWTAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'apps.core.permissions.IsAuthenticatedUser',
    ],
    'EXCEPTION_HANDLER': 'apps.core.exceptions.custom_exception_handler',
    'UNAUTHENTICATED_USER': 'django.contrib.auth.models.AnonymousUser',
}

# DRF Spectacular (OpenAPI)
SPECTACULAR_SETTINGS = {
    'TITLE': 'Plant Hierarchy Access Control API',
    'DESCRIPTION': '''
Hierarchical, scope-qualified access control over plants, areas, sectors and assets.

## Authentication

All API requests require JWT authentication:
- `Authorization: Bearer <token>` - JWT token obtained from `/v1/auth/login`

## Permission names

| Form | Example | Meaning |
|------|---------|---------|
| `{resource}.{action}.{id}` | `sectors.view.42` | Action on one entity |
| `{resource}.{action}.{scope}.{id}` | `assets.create.plant.7` | Action on a resource inside an entity |
| `system.{action}-{resource}` | `system.create-plants` | Global capability |

Grants on an entity are inherited by everything below it: `assets.manage.plant.7`
covers every asset of plant 7. `manage` implies `view`, `create` and `update`;
`viewAny` implies `view`. `delete` is never implied.

## Administrators

Users with the Administrator role bypass every check. The system always keeps at
least one active administrator: deleting the last one, or removing their role,
fails with `409 Conflict`.
    ''',
    'VERSION': '1.0.0',
    'SERVE_INCLUDE_SCHEMA': False,
    'COMPONENT_SPLIT_REQUEST': True,
    'SCHEMA_PATH_PREFIX': r'/v1/',
    'SWAGGER_UI_SETTINGS': {
        'deepLinking': True,
        'persistAuthorization': True,
        'displayOperationId': True,
        'filter': True,
    },
    'SECURITY': [
        {
            'JWTAuth': []
        }
    ],
    'APPEND_COMPONENTS': {
        'securitySchemes': {
            'JWTAuth': {
                'type': 'http',
                'scheme': 'bearer',
                'bearerFormat': 'JWT',
                'description': 'JWT token obtained from /v1/auth/login. Include as: Authorization: Bearer <token>.',
            }
        }
    },
    'TAGS': [
        {'name': 'Authentication', 'description': 'Login and current user'},
        {'name': 'Plants', 'description': 'Top level of the asset hierarchy'},
        {'name': 'Areas', 'description': 'Areas inside a plant'},
        {'name': 'Sectors', 'description': 'Sectors inside an area'},
        {'name': 'Assets', 'description': 'Assets inside a sector'},
        {'name': 'Users', 'description': 'User administration and role assignments'},
        {'name': 'Administrators', 'description': 'Administrator health'},
        {'name': 'Audit', 'description': 'Audit log viewing'},
    ],
}

# Security Settings
if not DEBUG:
    SECURE_HSTS_SECONDS = 31536000  # 1 year
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SECURE_HSTS_PRELOAD = True
else:
    SECURE_HSTS_SECONDS = 0

SECURE_CONTENT_TYPE_NOSNIFF = True  # Prevent MIME type sniffing
X_FRAME_OPTIONS = 'DENY'            # Prevent clickjacking

# Cache: Redis when REDIS_URL is set, process-local memory otherwise
REDIS_URL = env('REDIS_URL', default=None)

if REDIS_URL:
    CACHES = {
        'default': {
            'BACKEND': 'django_redis.cache.RedisCache',
            'LOCATION': REDIS_URL,
            'OPTIONS': {
                'CLIENT_CLASS': 'django_redis.client.DefaultClient',
                'SOCKET_CONNECT_TIMEOUT': 5,
                'SOCKET_TIMEOUT': 5,
                'CONNECTION_POOL_KWARGS': {
                    'max_connections': 50,
                    'retry_on_timeout': True,
                },
            },
            'KEY_PREFIX': 'hierarchy',
            'TIMEOUT': 300,
        }
    }
else:
    CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'hierarchy',
            'TIMEOUT': 300,
        }
    }

# Authorization
# Seconds a user's effective permission set stays cached
PERMISSION_CACHE_TTL = env('PERMISSION_CACHE_TTL')

# Actor id recorded on audit entries without an authenticated user
AUDIT_SYSTEM_ACTOR_ID = env('AUDIT_SYSTEM_ACTOR_ID')

# Install the PostgreSQL administrator protection triggers after migrate
RBAC_INSTALL_DB_TRIGGERS = env('RBAC_INSTALL_DB_TRIGGERS')

# Logging Configuration
LOG_LEVEL = env('LOG_LEVEL')
JSON_LOGS = env('JSON_LOGS')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'json': {
            '()': 'apps.core.logging.JSONFormatter',
        },
        'verbose': {
            '()': 'apps.core.logging.MaskingFormatter',
            'format': '{levelname} {asctime} {name} [{request_id}] {message}',
            'style': '{',
        },
    },
    'filters': {
        'request_context': {
            '()': 'apps.core.logging.RequestContextFilter',
        },
    },
    'handlers': {
        'console': {
            'level': LOG_LEVEL,
            'class': 'logging.StreamHandler',
            'formatter': 'json' if JSON_LOGS else 'verbose',
            'filters': ['request_context'],
        },
        'security': {
            'level': 'INFO',
            'class': 'logging.StreamHandler',
            'formatter': 'json' if JSON_LOGS else 'verbose',
            'filters': ['request_context'],
        },
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'apps': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'security': {
            'handlers': ['security'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}

# Sentry Configuration
SENTRY_DSN = env('SENTRY_DSN', default=None)
SENTRY_ENVIRONMENT = env('SENTRY_ENVIRONMENT', default='development')
SENTRY_RELEASE = env('SENTRY_RELEASE', default=None)

if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[
            DjangoIntegration(),
        ],
        environment=SENTRY_ENVIRONMENT,
        release=SENTRY_RELEASE,
        traces_sample_rate=0.1 if not DEBUG else 1.0,
        send_default_pii=False,
        attach_stacktrace=True,
        max_breadcrumbs=50,
    )

# JWT Authentication Configuration
# SECURITY: JWT_SECRET_KEY must differ from SECRET_KEY outside development
JWT_SECRET_KEY = env('JWT_SECRET_KEY', default='insecure-development-jwt-key-change-me-please')
JWT_ALGORITHM = env('JWT_ALGORITHM', default='HS256')
JWT_EXPIRATION_HOURS = env.int('JWT_EXPIRATION_HOURS', default=24)
