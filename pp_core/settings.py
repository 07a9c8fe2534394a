from pathlib import Path
import os
import dj_database_url

# Optional: load local .env (keeps secrets out of code)
try:
    import environ

    env = environ.Env()
    _env_path = Path(__file__).resolve().parent.parent / '.env'
    if _env_path.exists():
        environ.Env.read_env(str(_env_path))
except ImportError:
    pass

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not str(raw).strip():
        return default
    return int(raw)


ENVIRONMENT = os.environ.get("ENVIRONMENT", "development").strip().lower()

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.environ.get(
    "SECRET_KEY",
    "django-insecure-change-me-in-env",
)

if ENVIRONMENT != "production":
    DEBUG = True
else:
    DEBUG = _env_bool("DEBUG", default=False)

ALLOWED_HOSTS = ['localhost', '127.0.0.1']
_extra_allowed_hosts = os.environ.get("ALLOWED_HOSTS", "").strip()
if _extra_allowed_hosts:
    ALLOWED_HOSTS += [h.strip() for h in _extra_allowed_hosts.split(',') if h.strip()]
if DEBUG:
    ALLOWED_HOSTS += ['testserver']

INSTALLED_APPS = [
    'daphne',
    'channels',
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'pp_games',
    'pp_challenges',
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

ROOT_URLCONF = 'pp_core.urls'

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

ASGI_APPLICATION = 'pp_core.asgi.application'

REDIS_URL = os.environ.get('REDIS_URL')

# Local/dev: don't depend on Redis.
if ENVIRONMENT == 'production' and REDIS_URL:
    CHANNEL_LAYERS = {
        'default': {
            'BACKEND': 'channels_redis.core.RedisChannelLayer',
            'CONFIG': {
                'hosts': [REDIS_URL],
            },
        },
    }
else:
    # Note: InMemory channel layer works only within a single process.
    CHANNEL_LAYERS = {
        'default': {
            'BACKEND': 'channels.layers.InMemoryChannelLayer',
        },
    }

if ENVIRONMENT == 'production':
    DATABASES = {
        'default': dj_database_url.parse(os.environ.get('DATABASE_URL'), conn_max_age=60)
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
            # select_for_update is a no-op on SQLite; writers serialize at BEGIN.
            'OPTIONS': {
                'transaction_mode': 'IMMEDIATE',
                'timeout': 20,
            },
            # File backed so threads in tests share one database and wait on its lock.
            'TEST': {
                'NAME': BASE_DIR / 'test_db.sqlite3',
            },
        }
    }

# Game status snapshots are cached per process; freshness is checked against
# each snapshot's observed_at, so this alias must not be shared.
CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'puckpool-default',
    },
    'game_status': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'puckpool-game-status',
    },
}
if ENVIRONMENT == 'production' and REDIS_URL:
    CACHES['default'] = {
        'BACKEND': 'django.core.cache.backends.redis.RedisCache',
        'LOCATION': REDIS_URL,
    }

STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

USE_TZ = True
TIME_ZONE = 'UTC'

# --- NHL upstream ---
NHL_API_BASE_URL = os.environ.get('NHL_API_BASE_URL', 'https://api-web.nhle.com/v1').rstrip('/')
NHL_API_TIMEOUT_SECONDS = _env_int('NHL_API_TIMEOUT_SECONDS', 10)
NHL_API_USER_AGENT = os.environ.get('NHL_API_USER_AGENT', 'Puckpool/1.0')
GAME_STATUS_CACHE_TTL_SECONDS = _env_int('GAME_STATUS_CACHE_TTL_SECONDS', 30)

# --- Challenge status sync ---
CHALLENGE_SYNC_INTERVAL_SECONDS = _env_int('CHALLENGE_SYNC_INTERVAL_SECONDS', 60)
CHALLENGE_SYNC_BATCH_LIMIT = _env_int('CHALLENGE_SYNC_BATCH_LIMIT', 1000)
CHALLENGE_SYNC_ADAPTIVE = _env_bool('CHALLENGE_SYNC_ADAPTIVE', default=False)

# --- Celery ---
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL') or REDIS_URL or 'memory://'
CELERY_TASK_IGNORE_RESULT = True
CELERY_TIMEZONE = TIME_ZONE
CELERY_WORKER_HIJACK_ROOT_LOGGER = False
CELERY_TASK_ALWAYS_EAGER = _env_bool('CELERY_TASK_ALWAYS_EAGER', default=False)

# --- Logging ---
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').strip().upper()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '%(levelname)s %(asctime)s %(name)s %(process)d %(message)s',
        },
    },
    'handlers': {
        'console': {
            'level': 'DEBUG',
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {'level': 'WARNING', 'handlers': ['console']},
    'loggers': {
        'pp_games': {'level': LOG_LEVEL, 'handlers': ['console'], 'propagate': False},
        'pp_challenges': {'level': LOG_LEVEL, 'handlers': ['console'], 'propagate': False},
        'django.request': {'level': 'ERROR', 'handlers': ['console'], 'propagate': False},
    },
}
