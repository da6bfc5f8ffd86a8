"""
Application configuration and constants for the Dispatch API Server.

This module centralizes environment-based configuration, token lifetimes,
integration switches, regular expressions, file constraints, and other constants.

Configuration values can be overridden via environment variables.
"""

from os import environ


def _flag(name: str, default: str) -> bool:
    return environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# Application metadata
# ---------------------------------------------------------------------------
API_TITLE = "Dispatch API Server"
API_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# PostgreSQL configuration
# ---------------------------------------------------------------------------
PSQL_DB_DRIVER = environ.get("PSQL_DB_DRIVER", "postgresql")
PSQL_DB_USERNAME = environ.get("PSQL_DB_USERNAME", "postgres")
PSQL_DB_PORT = environ.get("PSQL_DB_PORT", "5432")
PSQL_DB_PASSWORD = environ.get("PSQL_DB_PASSWORD", "password")
PSQL_DB_HOST = environ.get("PSQL_DB_HOST", "localhost")
PSQL_DB_NAME = environ.get("PSQL_DB_NAME", "postgres")
# Complete SQLAlchemy URL, takes precedence over the PSQL_DB_* values
DB_URL = environ.get("DB_URL")


# ---------------------------------------------------------------------------
# OpenObserve configuration
# ---------------------------------------------------------------------------
OPENOBSERVE_ENABLED = _flag("OPENOBSERVE_ENABLED", "true")
OPENOBSERVE_PROTOCOL = environ.get("OPENOBSERVE_PROTOCOL", "http")
OPENOBSERVE_HOST = environ.get("OPENOBSERVE_HOST", "localhost")
OPENOBSERVE_PORT = environ.get("OPENOBSERVE_PORT", "5080")
OPENOBSERVE_USERNAME = environ.get("OPENOBSERVE_USERNAME", "admin@dispatch.local")
OPENOBSERVE_PASSWORD = environ.get("OPENOBSERVE_PASSWORD", "password")
OPENOBSERVE_ORG = environ.get("OPENOBSERVE_ORG", "dispatch")
OPENOBSERVE_STREAM = environ.get("OPENOBSERVE_STREAM", "dispatch-core-server")


# ---------------------------------------------------------------------------
# Redis configuration
# ---------------------------------------------------------------------------
REDIS_HOST = environ.get("REDIS_HOST", "localhost")
REDIS_PORT = environ.get("REDIS_PORT", "6379")
REDIS_PASSWORD = environ.get("REDIS_PASSWORD", "password")

# Pub/sub channels used by the event emitter
CHANNEL_DRIVER_LOCATION = "dispatch:driver-location"
CHANNEL_STOP_STATUS = "dispatch:stop-status"
CHANNEL_ROUTE_STATUS = "dispatch:route-status"
CHANNEL_STOP_NOTE = "dispatch:stop-note"


# ---------------------------------------------------------------------------
# MinIO configuration
# ---------------------------------------------------------------------------
MINIO_HOST = environ.get("MINIO_HOST", "localhost")
MINIO_PORT = environ.get("MINIO_PORT", "9000")
MINIO_USERNAME = environ.get("MINIO_USERNAME", "minio")
MINIO_PASSWORD = environ.get("MINIO_PASSWORD", "password")

# MinIO buckets
STOP_IMAGES = "stop-images"
SYSTEM_DOCUMENTS = "system-documents"
CUSTOMER_DOCUMENTS = "customer-documents"


# ---------------------------------------------------------------------------
# Token configuration
# ---------------------------------------------------------------------------
JWT_SECRET = environ.get("JWT_SECRET", "change-this-secret-in-production")
JWT_ALGORITHM = "HS256"
JWT_ISSUER = environ.get("JWT_ISSUER", "dispatch-core-server")
JWT_AUDIENCE = environ.get("JWT_AUDIENCE", "dispatch-clients")
LOGIN_TOKEN_VALIDITY = 8 * 60 * 60  # Login token validity (in seconds, 8 hours)
DRIVER_REFRESH_TOKEN_VALIDITY = 12 * 60 * 60  # Driver refresh (in seconds, 12 hours)
REFRESH_TOKEN_VALIDITY = 2 * 60 * 60  # Non-driver refresh (in seconds, 2 hours)


# ---------------------------------------------------------------------------
# Stop lifecycle
# ---------------------------------------------------------------------------
# strict: only the documented transitions are accepted
# permissive: any change is accepted except leaving a terminal state
STOP_TRANSITION_MODE = environ.get("STOP_TRANSITION_MODE", "strict")


# ---------------------------------------------------------------------------
# Attendance service
# ---------------------------------------------------------------------------
ATTENDANCE_ENABLED = _flag("ATTENDANCE_ENABLED", "false")
ATTENDANCE_API_URL = environ.get("ATTENDANCE_API_URL", "http://localhost:8080/api")
ATTENDANCE_API_KEY = environ.get("ATTENDANCE_API_KEY", "")
ATTENDANCE_TIMEOUT = 5  # Request timeout (in seconds)
ATTENDANCE_CACHE_DURATION = int(environ.get("ATTENDANCE_CACHE_DURATION", "300"))
ATTENDANCE_ENFORCEMENT_MODE = environ.get("ATTENDANCE_ENFORCEMENT_MODE", "permissive")
ATTENDANCE_FALLBACK_MODE = environ.get("ATTENDANCE_FALLBACK_MODE", "permissive")


# ---------------------------------------------------------------------------
# CSRF and metrics stores
# ---------------------------------------------------------------------------
CSRF_ENABLED = _flag("CSRF_ENABLED", "false")
CSRF_TOKEN_VALIDITY = 60 * 60  # CSRF token validity (in seconds, 1 hour)
METRICS_ENABLED = _flag("METRICS_ENABLED", "true")
METRICS_RETENTION = 24 * 60 * 60  # Metrics retention (in seconds, 1 day)


# ---------------------------------------------------------------------------
# Regex constants (input validation)
# ---------------------------------------------------------------------------
REGEX_USERNAME = r"^[a-zA-Z][a-zA-Z0-9-.@_]*$"
REGEX_PASSWORD = r"^[a-zA-Z0-9-+,.@_$%&*#!^=/?]*$"
REGEX_EMAIL_LIKE = r"[^\s@]+@[^\s@]+\.[^\s@]+"


# ---------------------------------------------------------------------------
# File constraints
# ---------------------------------------------------------------------------
MAX_IMAGE_SIZE = 10 * 1024 * 1024  # Max proof image size (10 MB)
MAX_IMAGES_PER_UPLOAD = 10  # Max images in a single upload
MAX_DOCUMENT_SIZE = 25 * 1024 * 1024  # Max document size (25 MB)


# ---------------------------------------------------------------------------
# Location retention
# ---------------------------------------------------------------------------
LOCATION_RETENTION_DAYS = int(environ.get("LOCATION_RETENTION_DAYS", "90"))


# ---------------------------------------------------------------------------
# Redis mutex lock constants
# ---------------------------------------------------------------------------
MUTEX_LOCK_TIMEOUT = 10  # Lock timeout (in seconds)
MUTEX_LOCK_MAX_WAIT_TIME = 60  # Max blocking wait time (in seconds)
