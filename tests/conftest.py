"""Shared pytest fixtures for CogniClear API tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from agents.simulation import SimulationManager
from models.schemas import DecisionStatus
from services.analysis_contract import AnalysisContract
from services.decision_service import DecisionService
from services.lifecycle import DecisionLifecycle
from services.patterns import PatternAggregator
from services.repository import InMemoryDecisionRepository
from tests.factories import FIXED_NOW, DecisionFactory
from tests.mocks.llm_mock import MockLLMClient


# ============================================================================
# PostgreSQL Session Fixtures
# ============================================================================


@pytest.fixture
def mock_postgres_session():
    """Mock PostgreSQL async session for repository tests.

    Example:
        async def test_get(mock_postgres_session):
            mock_postgres_session.get.return_value = record
    """
    session = MagicMock()

    result = MagicMock()
    result.scalars = MagicMock(return_value=MagicMock(all=MagicMock(return_value=[])))

    session.execute = AsyncMock(return_value=result)
    session.get = AsyncMock(return_value=None)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.add = MagicMock()
    session.delete = AsyncMock()
    session.close = AsyncMock()

    # Context manager support
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=None)

    return session


@pytest.fixture
def mock_session_maker(mock_postgres_session):
    """Callable returning the mock session, shaped like async_sessionmaker."""
    return MagicMock(return_value=mock_postgres_session)


# ============================================================================
# LLM Fixtures
# ============================================================================


@pytest.fixture
def mock_llm():
    """Scripted LLM client shared by contract, aggregator and simulations."""
    return MockLLMClient()


@pytest.fixture
def contract(mock_llm):
    return AnalysisContract(llm=mock_llm)


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def lifecycle(fixed_clock):
    return DecisionLifecycle(clock=fixed_clock)


@pytest.fixture
def repository():
    return InMemoryDecisionRepository()


@pytest.fixture
def decision_service(repository, contract, lifecycle):
    return DecisionService(
        repository,
        contract=contract,
        lifecycle=lifecycle,
        aggregator=PatternAggregator(contract),
    )


@pytest.fixture
def simulation_manager(mock_llm):
    return SimulationManager(llm=mock_llm, max_sessions=10)


# ============================================================================
# Decision Fixtures
# ============================================================================


@pytest.fixture
def draft_decision():
    return DecisionFactory.create()


@pytest.fixture
def analyzed_decision():
    return DecisionFactory.create(status=DecisionStatus.ANALYZED)
