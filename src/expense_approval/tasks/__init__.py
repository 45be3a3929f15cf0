"""Celery tasks for background processing.

Task modules:
- notification_tasks: Approval-required and status-changed notifications
"""

from expense_approval.core.celery_app import celery_app

__all__ = ["celery_app"]
