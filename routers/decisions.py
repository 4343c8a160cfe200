"""Decision endpoints with owner isolation.

Every decision belongs to the owner given by X-User-ID; callers can only see
and change their own decisions. Domain errors propagate to the exception
handlers in main.py, which map them onto status codes.
"""

from fastapi import APIRouter, Depends, status

from agents.simulation import SimulationManager, get_simulation_manager
from models.schemas import (
    Decision,
    DecisionDraft,
    DecisionUpdate,
    OutcomeSubmission,
    PatternReport,
)
from routers.auth import get_current_user_id
from services.decision_service import DecisionService, get_decision_service
from utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("", response_model=list[Decision])
async def list_decisions(
    user_id: str = Depends(get_current_user_id),
    service: DecisionService = Depends(get_decision_service),
):
    """All of the caller's decisions, newest first."""
    return await service.list(user_id)


@router.post("", response_model=Decision, status_code=status.HTTP_201_CREATED)
async def create_decision(
    draft: DecisionDraft,
    user_id: str = Depends(get_current_user_id),
    service: DecisionService = Depends(get_decision_service),
):
    """Record a new DRAFT decision. No analysis is run."""
    decision = await service.create_draft(user_id, draft)
    logger.info("Decision created via API", extra={"decision_id": decision.id})
    return decision


@router.get("/patterns", response_model=PatternReport)
async def get_patterns(
    user_id: str = Depends(get_current_user_id),
    service: DecisionService = Depends(get_decision_service),
):
    """Behavioral pattern summary and statistics across the caller's decisions."""
    return await service.get_pattern_report(user_id)


@router.get("/{decision_id}", response_model=Decision)
async def get_decision(
    decision_id: str,
    user_id: str = Depends(get_current_user_id),
    service: DecisionService = Depends(get_decision_service),
):
    return await service.get(user_id, decision_id)


@router.patch("/{decision_id}", response_model=Decision)
async def update_decision(
    decision_id: str,
    update: DecisionUpdate,
    user_id: str = Depends(get_current_user_id),
    service: DecisionService = Depends(get_decision_service),
):
    """Edit a DRAFT decision. Analyzed decisions are read-only (409)."""
    return await service.revise(user_id, decision_id, update)


@router.post("/{decision_id}/analyze", response_model=Decision)
async def analyze_decision(
    decision_id: str,
    user_id: str = Depends(get_current_user_id),
    service: DecisionService = Depends(get_decision_service),
):
    """Run the reasoning provider over a DRAFT decision.

    On any provider or contract failure the stored draft is left unchanged
    and the request can simply be retried.
    """
    return await service.analyze(user_id, decision_id)


@router.post("/{decision_id}/outcome", response_model=Decision)
async def submit_outcome(
    decision_id: str,
    submission: OutcomeSubmission,
    user_id: str = Depends(get_current_user_id),
    service: DecisionService = Depends(get_decision_service),
):
    """Record what actually happened and reconcile it with the analysis."""
    return await service.submit_outcome(user_id, decision_id, submission.outcome)


@router.delete("/{decision_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_decision(
    decision_id: str,
    user_id: str = Depends(get_current_user_id),
    service: DecisionService = Depends(get_decision_service),
    manager: SimulationManager = Depends(get_simulation_manager),
):
    """Delete one of the caller's decisions and end its simulations."""
    await service.delete(user_id, decision_id)
    ended = manager.end_for_decision(user_id, decision_id)
    logger.info(
        "Decision deleted via API", extra={"decision_id": decision_id, "sessions_ended": ended}
    )
