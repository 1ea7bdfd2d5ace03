"""
Configuration for the Location Engine

All settings come from environment variables with sane defaults.
Nothing here touches the database; the connection string is only
resolved when a Database handle is built at startup.
"""

import os


# =============================================================================
# DATABASE
# =============================================================================

# Checked in order, first non-empty wins (hosted Postgres providers
# expose the same database under several names)
DATABASE_URL_KEYS = (
    "DATABASE_URL",
    "POSTGRES_URL",
    "POSTGRES_PRISMA_URL",
    "POSTGRES_URL_NON_POOLING",
    "DATABASE_URL_UNPOOLED",
    "POSTGRES_URL_NO_SSL",
)

DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "20"))
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "1800"))


def get_database_url() -> str:
    """
    Resolve the database connection string from the environment.
    Raises RuntimeError if none of the known keys is set.
    """
    for key in DATABASE_URL_KEYS:
        value = os.environ.get(key)
        if value:
            # SQLAlchemy no longer accepts the bare postgres:// scheme
            if value.startswith("postgres://"):
                value = "postgresql://" + value[len("postgres://"):]
            return value
    raise RuntimeError(
        "Database connection string is not configured. "
        "Set DATABASE_URL (or POSTGRES_URL) in your environment."
    )


# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


# =============================================================================
# LOCATIONS
# =============================================================================

# New locations created from a marker with a city string get a parent city
AUTO_PARENT_CITY = os.getenv("LOCATION_AUTO_PARENT_CITY", "true").lower() in ("true", "1", "yes")

LOCATION_NAME_MAX_LENGTH = 200
