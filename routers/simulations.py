"""What-if simulation endpoints.

Sessions are in-memory and owner-scoped. A session that failed to reach the
provider is still returned (state "degraded") so the caller can retry by
sending a message.
"""

from fastapi import APIRouter, Depends, status

from agents.simulation import SimulationManager, get_simulation_manager
from models.schemas import (
    SimulationMessageRequest,
    SimulationReply,
    SimulationStartRequest,
    SimulationView,
)
from routers.auth import get_current_user_id
from services.decision_service import DecisionService, get_decision_service

router = APIRouter()


@router.post("", response_model=SimulationView, status_code=status.HTTP_201_CREATED)
async def start_simulation(
    request: SimulationStartRequest,
    user_id: str = Depends(get_current_user_id),
    service: DecisionService = Depends(get_decision_service),
    manager: SimulationManager = Depends(get_simulation_manager),
):
    """Open a simulation for one of the caller's decisions."""
    decision = await service.get(user_id, request.decision_id)
    session = await manager.open(decision, scenario=request.scenario)
    return session.view()


@router.get("/{session_id}", response_model=SimulationView)
async def get_simulation(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    manager: SimulationManager = Depends(get_simulation_manager),
):
    return manager.get(user_id, session_id).view()


@router.post("/{session_id}/messages", response_model=SimulationReply)
async def send_message(
    session_id: str,
    message: SimulationMessageRequest,
    user_id: str = Depends(get_current_user_id),
    manager: SimulationManager = Depends(get_simulation_manager),
):
    """Send one user turn; 409 if the session ended or a turn is pending."""
    session = manager.get(user_id, session_id)
    reply = await session.send(message.text)
    return SimulationReply(session_id=session.id, state=session.state.value, reply=reply)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def end_simulation(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    manager: SimulationManager = Depends(get_simulation_manager),
):
    manager.end(user_id, session_id)
