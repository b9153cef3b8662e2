"""
Payroll Engine - Celery Configuration

Celery configuration for background payroll batches.
Uses Redis as the message broker and result backend.
"""

from celery import Celery

from payroll_engine.config import settings


celery_app = Celery(
    'payroll_engine',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['payroll_engine.tasks.celery_tasks'],
)

celery_app.conf.update(
    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone
    timezone=settings.celery_timezone,
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=settings.batch_task_time_limit_seconds,
    task_soft_time_limit=settings.batch_task_time_limit_seconds - 120,

    # Worker settings
    worker_prefetch_multiplier=1,

    # Result backend settings
    result_expires=86400,  # 24 hours
)
