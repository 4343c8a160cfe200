"""HTTP-level fixtures: the real app with engine dependencies overridden."""

import pytest
from fastapi.testclient import TestClient

from agents.simulation import get_simulation_manager
from main import app
from services.decision_service import get_decision_service


@pytest.fixture
def client(decision_service, simulation_manager):
    app.dependency_overrides[get_decision_service] = lambda: decision_service
    app.dependency_overrides[get_simulation_manager] = lambda: simulation_manager
    yield TestClient(app)
    app.dependency_overrides.clear()
