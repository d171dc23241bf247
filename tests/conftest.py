import pytest
from fastapi.testclient import TestClient

from database import Base, make_engine, make_session_factory
from registry import BatchRegistry
from app import app, get_registry


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def registry(session_factory):
    return BatchRegistry(session_factory)


@pytest.fixture
def client(registry):
    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def wheat(registry):
    """The end-to-end scenario batch, freshly registered."""
    return registry.register_batch("Wheat", "FarmA", 1700000000)
