"""Redis connection utilities."""

from app.config.settings import settings


def get_redis_url_masked() -> str:
    """
    Build the Redis URL with the password masked, for logging.

    Returns:
        str: redis://[:****@]host:port/db
    """
    auth = ":****@" if settings.redis_password else ""
    return f"redis://{auth}{settings.redis_host}:{settings.redis_port}/{settings.redis_db}"
