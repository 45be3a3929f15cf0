"""Base task classes for Celery tasks.

Provides retry with exponential backoff and a decorator that runs async
coroutines inside Celery's synchronous workers.
"""

import asyncio
import functools
import logging
from typing import Any, Callable, TypeVar

from celery import Task

from expense_approval.core.celery_app import celery_app

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryableTask(Task):
    """Task retried with exponential backoff on any failure."""

    abstract = True
    autoretry_for = (Exception,)
    retry_backoff = True
    retry_backoff_max = 600  # 10 minutes
    retry_jitter = True
    max_retries = 5

    def on_failure(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        """Log final task failure."""
        logger.error(
            "Task %s gave up after %d retries",
            self.name,
            self.request.retries,
            exc_info=exc,
            extra={"task_id": task_id, "task_name": self.name, "kwargs": kwargs},
        )

    def on_retry(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        """Log task retry."""
        logger.warning(
            "Task %s retrying (attempt %d/%d): %s",
            self.name,
            self.request.retries + 1,
            self.max_retries,
            exc,
            extra={"task_id": task_id, "task_name": self.name},
        )


def async_task(
    *args: Any,
    bind: bool = True,
    base: type[Task] = RetryableTask,
    **kwargs: Any,
) -> Callable:
    """Decorator turning an async function into a Celery task.

    @param bind - Bind task instance to first argument
    @param base - Base task class to use
    @returns Decorated task

    Example:
        @async_task(queue="high")
        async def notify(self, instance_id: str) -> dict:
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @celery_app.task(*args, bind=bind, base=base, **kwargs)
        @functools.wraps(func)
        def wrapper(*task_args: Any, **task_kwargs: Any) -> T:
            try:
                loop = asyncio.get_event_loop()
            except RuntimeError:
                loop = asyncio.new_event_loop()
                asyncio.set_event_loop(loop)
            return loop.run_until_complete(func(*task_args, **task_kwargs))

        return wrapper

    return decorator


def get_task_logger(task_name: str) -> logging.Logger:
    """Get logger for a specific task module.

    @param task_name - Name of the task module
    @returns Logger named celery.task.<task_name>
    """
    return logging.getLogger(f"celery.task.{task_name}")
