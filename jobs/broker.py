"""
Dramatiq broker configuration.

Redis-based message broker for the indexing work queues. In the test
environment a StubBroker is used so actors can be declared and
inspected without Redis.
"""

import dramatiq
import redis
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import (
    AgeLimit,
    Callbacks,
    CurrentMessage,
    Pipelines,
    Retries,
    ShutdownNotifications,
    TimeLimit,
)
from loguru import logger

from app.config.settings import settings
from app.utils.redis_utils import get_redis_url_masked
from jobs.middleware import CancellationRegistry, InFlightTracker, PendingCancellation

# Shared by the work queue facade
inflight_tracker = InFlightTracker()

redis_client = redis.Redis(
    host=settings.redis_host,
    port=settings.redis_port,
    password=settings.redis_password or None,
    db=settings.redis_db,
)
cancellation_registry = CancellationRegistry(redis_client)

# Retries: per-actor max_retries/min_backoff apply; no global retry_when,
# which would override them
middleware = [
    AgeLimit(),
    TimeLimit(),
    ShutdownNotifications(),
    Callbacks(),
    Pipelines(),
    Retries(
        max_retries=3,
        min_backoff=1000,  # 1 second
        max_backoff=300000,  # 5 minutes
    ),
    CurrentMessage(),
    PendingCancellation(cancellation_registry),
    inflight_tracker,
]

if settings.environment == "test":
    broker = StubBroker(middleware=middleware)
else:
    broker = RedisBroker(client=redis_client, middleware=middleware)

# Set as default broker
dramatiq.set_broker(broker)

logger.info(
    f"Dramatiq broker initialized ({type(broker).__name__}): {get_redis_url_masked()}"
)
