"""
Payroll Engine - Test Configuration

Pytest fixtures shared across the suite. Services are exercised against a
mocked AsyncSession.
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from payroll_engine.models.payroll import ApprovalLevel
from payroll_engine.utils.permissions import Actor


@pytest.fixture
def mock_db():
    """AsyncSession stand-in. begin_nested() works as an async context manager."""
    db = MagicMock()
    db.execute = AsyncMock()
    db.get = AsyncMock(return_value=None)
    db.flush = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    return db


# ===========================================
# ACTORS
# ===========================================

@pytest.fixture
def hr_manager() -> Actor:
    return Actor.for_level(uuid4(), ApprovalLevel.HR_MANAGER, email="hr@example.com")


@pytest.fixture
def finance_director() -> Actor:
    return Actor.for_level(uuid4(), ApprovalLevel.FINANCE_DIRECTOR, email="finance@example.com")


@pytest.fixture
def super_admin() -> Actor:
    return Actor.for_level(uuid4(), ApprovalLevel.SUPER_ADMIN, email="admin@example.com")


@pytest.fixture
def department_head() -> Actor:
    return Actor.for_level(uuid4(), ApprovalLevel.DEPARTMENT_HEAD)
