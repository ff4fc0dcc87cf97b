"""Pytest configuration and fixtures."""
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from artifact_engine.core.db import Base, get_db
from artifact_engine.core.llm_rate_limiter import LLMRateLimiter
from artifact_engine.api.artifacts import get_generation_controller, get_version_store
from artifact_engine.services.generation_controller import GenerationController
from artifact_engine.services.model_producer import SimulatedModelProducer
from artifact_engine.services.version_store import VersionStore
from artifact_engine import main

# Use in-memory SQLite for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    # StaticPool ensures all sessions use the same connection
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class ScriptedProducer:
    """Producer that replays fixed cumulative snapshots and records its calls."""

    model = "scripted-model"

    def __init__(self, snapshots: List[str], fail_after: Optional[int] = None):
        self.snapshots = snapshots
        self.fail_after = fail_after
        self.calls = []

    async def stream(self, system, prompt, kind=None, response_format=None):
        self.calls.append({
            "system": system, "prompt": prompt, "kind": kind, "response_format": response_format
        })
        for index, snapshot in enumerate(self.snapshots):
            if self.fail_after is not None and index >= self.fail_after:
                raise ConnectionError("upstream connection reset")
            yield snapshot
        if self.fail_after is not None and self.fail_after >= len(self.snapshots):
            raise ConnectionError("upstream connection reset")


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def store(db):
    """Version store bound to the test database."""
    return VersionStore(db_session_factory=TestingSessionLocal)


@pytest.fixture(scope="function")
def file_store(tmp_path):
    """
    Version store on a file database, for tests with concurrent writers.

    The in-memory database shares a single connection, which threads
    cannot write through at the same time.
    """
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'artifacts.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=file_engine)
    try:
        yield VersionStore(db_session_factory=sessionmaker(autocommit=False, autoflush=False, bind=file_engine))
    finally:
        file_engine.dispose()


@pytest.fixture(scope="function")
def make_controller(store):
    """Build a controller on the test store with its own rate limiter."""
    def _make(producer=None, store_override=None, **kwargs):
        return GenerationController(
            store=store_override or store,
            producer=producer or SimulatedModelProducer(),
            rate_limiter=LLMRateLimiter(max_concurrent_calls=3),
            **kwargs
        )
    return _make


@pytest.fixture(scope="function")
def controller(make_controller):
    """Controller with the simulated producer."""
    return make_controller()


@pytest.fixture(scope="function")
def client(db, store):
    """Create a test client with database and service dependency overrides."""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    def override_get_version_store():
        return store

    def override_get_generation_controller():
        return GenerationController(
            store=store,
            producer=SimulatedModelProducer(),
            rate_limiter=LLMRateLimiter(max_concurrent_calls=3)
        )

    main.app.dependency_overrides[get_db] = override_get_db
    main.app.dependency_overrides[get_version_store] = override_get_version_store
    main.app.dependency_overrides[get_generation_controller] = override_get_generation_controller

    with TestClient(main.app) as test_client:
        yield test_client

    # Clean up
    main.app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def scripted_producer():
    """Factory for producers that replay fixed snapshots."""
    return ScriptedProducer
