"""
Pytest configuration and shared fixtures for dispatcher tests.

This file provides:
- An in-memory Entity Store and the services built on it
- A FastAPI test client wired to those services
- Factories for workers and tasks
"""

import os

os.environ.setdefault("DISPATCH_STORE_BACKEND", "memory")

import pytest
from datetime import date
from typing import Generator

from common.config import DispatchSettings, ScoringConfig
from common.models import Area, TaskCreate, Worker
from common.store import MemoryEntityStore
from dispatcher.engine import AssignmentEngine
from dispatcher.lifecycle import TaskLifecycleManager
from dispatcher.queries import QueryFacade
from dispatcher.registry import Registry

TASK_START = date(2024, 12, 1)
TASK_END = date(2024, 12, 3)


# ============================================================================
# Core Fixtures
# ============================================================================

@pytest.fixture
def store():
    return MemoryEntityStore()


@pytest.fixture
def config():
    """Default scoring configuration (load cap 3)."""
    return ScoringConfig()


@pytest.fixture
def lifecycle(store):
    return TaskLifecycleManager(store)


@pytest.fixture
def engine(store, lifecycle, config):
    return AssignmentEngine(store, lifecycle, config)


@pytest.fixture
def registry(store):
    return Registry(store)


@pytest.fixture
def queries(store, config):
    return QueryFacade(store, config)


# ============================================================================
# API Fixtures
# ============================================================================

@pytest.fixture
def settings():
    return DispatchSettings(store_backend="memory")


@pytest.fixture
def services(settings, store):
    from dispatcher.app import build_services

    return build_services(settings, store=store)


@pytest.fixture
def client(services) -> Generator:
    """FastAPI test client over the in-memory store."""
    from fastapi.testclient import TestClient
    from dispatcher.app import create_app

    with TestClient(create_app(services)) as test_client:
        yield test_client


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def make_worker(store):
    """Create and store a worker."""
    def _make(
        name="Worker",
        expertise=(),
        availability="Available",
        experience=5,
        current_tasks=(),
    ) -> Worker:
        return store.create(Worker(
            name=name,
            expertise=list(expertise),
            availability=availability,
            experience=experience,
            current_tasks=list(current_tasks),
        ))
    return _make


@pytest.fixture
def make_task(lifecycle):
    """Create a Pending task through the lifecycle manager."""
    def _make(
        title="Inspect irrigation",
        required_skills=(),
        priority="Medium",
        start_date=TASK_START,
        end_date=TASK_END,
        **fields,
    ):
        payload = TaskCreate(
            title=title,
            task_type=fields.pop("task_type", "General Work"),
            required_skills=list(required_skills),
            priority=priority,
            start_date=start_date,
            end_date=end_date,
            **fields,
        )
        return lifecycle.create_task(payload)
    return _make


@pytest.fixture
def area(store):
    return store.create(Area(name="Block A", description="Northern section"))
