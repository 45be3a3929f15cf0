"""Celery application configuration.

Provides task queue infrastructure with Redis broker for:
- Approval notifications (high priority)
- Background operations (normal priority)
"""

from celery import Celery
from kombu import Exchange, Queue

from expense_approval.core.config import get_settings

settings = get_settings()

# Create Celery application
celery_app = Celery(
    "expense_approval",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "expense_approval.tasks.notification_tasks",
    ],
)

# Define exchanges
default_exchange = Exchange("default", type="direct")
priority_exchange = Exchange("priority", type="direct")

# Priority: high (5) > normal (0)
celery_app.conf.task_queues = (
    # High: approval notifications
    Queue(
        "high",
        exchange=priority_exchange,
        routing_key="high",
        queue_arguments={"x-max-priority": 5},
    ),
    # Normal: regular background tasks
    Queue(
        "normal",
        exchange=default_exchange,
        routing_key="normal",
        queue_arguments={"x-max-priority": 0},
    ),
)

# Default queue
celery_app.conf.task_default_queue = "normal"
celery_app.conf.task_default_exchange = "default"
celery_app.conf.task_default_routing_key = "normal"

# Task routing
celery_app.conf.task_routes = {
    "expense_approval.tasks.notification_tasks.*": {"queue": "high"},
}

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task execution
    task_acks_late=True,  # Acknowledge after task completes
    task_reject_on_worker_lost=True,  # Requeue if worker dies
    task_track_started=True,

    # Result backend
    result_expires=86400,  # Results expire after 24 hours

    # Worker configuration
    worker_prefetch_multiplier=4,
    worker_max_tasks_per_child=1000,

    # Retry configuration
    task_default_retry_delay=60,  # 1 minute default retry delay
    task_max_retries=3,

    # Logging
    worker_hijack_root_logger=False,

    # Broker settings
    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,
    broker_pool_limit=10,
)
