"""
Payroll Engine - Background Tasks Package

Celery background tasks.
"""

from payroll_engine.tasks.celery_tasks import run_payroll_batch_task

__all__ = ["run_payroll_batch_task"]
