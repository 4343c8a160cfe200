"""Decision lifecycle state machine: DRAFT -> ANALYZED -> COMPLETED.

The manager is pure. It never calls the reasoning provider or the repository;
callers obtain an analysis from the contract and present it here. Every
transition returns a new Decision and leaves its input untouched, so a failed
step can never leave a half-applied record behind.
"""

from datetime import UTC, datetime
from typing import Any, Callable
from uuid import uuid4

from models.errors import StateError, ValidationError
from models.schemas import (
    DEFAULT_OPTION,
    Decision,
    DecisionAnalysis,
    DecisionDraft,
    DecisionStatus,
    DecisionUpdate,
    Emotion,
    OutcomeAnalysis,
)
from utils.logging import get_logger

logger = get_logger(__name__)

# The only legal forward moves; everything else is a StateError
TRANSITIONS: dict[DecisionStatus, frozenset[DecisionStatus]] = {
    DecisionStatus.DRAFT: frozenset({DecisionStatus.ANALYZED}),
    DecisionStatus.ANALYZED: frozenset({DecisionStatus.COMPLETED}),
    DecisionStatus.COMPLETED: frozenset(),
}


def can_transition(current: DecisionStatus, target: DecisionStatus) -> bool:
    return target in TRANSITIONS[current]


def _evolve(decision: Decision, **changes: Any) -> Decision:
    """Build a validated copy of a decision with some fields replaced."""
    data = {field: getattr(decision, field) for field in Decision.model_fields}
    data.update(changes)
    return Decision.model_validate(data)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DecisionLifecycle:
    """Applies lifecycle transitions to Decision values."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock

    def require_transition(self, decision: Decision, target: DecisionStatus, action: str) -> None:
        if not can_transition(decision.status, target):
            logger.warning(
                f"Rejected {action} for decision in status {decision.status.value}",
                extra={"decision_id": decision.id},
            )
            raise StateError(
                f"Cannot {action} for a decision in status {decision.status.value}",
                details={
                    "decision_id": decision.id,
                    "status": decision.status.value,
                    "target": target.value,
                },
            )

    def submit(self, owner_id: str, draft: DecisionDraft) -> Decision:
        """Create a DRAFT decision. No network calls.

        Empty options and emotions are replaced by their sentinels so the
        record always satisfies the non-empty invariants.
        """
        if not owner_id or not owner_id.strip():
            raise ValidationError("owner id must not be empty", details={"field": "userId"})

        decision = Decision(
            id=str(uuid4()),
            user_id=owner_id,
            title=draft.title,
            description=draft.description,
            context=draft.context,
            options=draft.options or [DEFAULT_OPTION],
            emotions=draft.emotions or [Emotion.NEUTRAL],
            status=DecisionStatus.DRAFT,
            date_created=self._clock(),
        )
        logger.info("Decision drafted", extra={"decision_id": decision.id})
        return decision

    def revise_draft(self, decision: Decision, update: DecisionUpdate) -> Decision:
        """Edit descriptive fields. Only DRAFT decisions may change."""
        if decision.status is not DecisionStatus.DRAFT:
            raise StateError(
                f"Cannot edit a decision in status {decision.status.value}",
                details={"decision_id": decision.id, "status": decision.status.value},
            )

        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        if "options" in changes:
            changes["options"] = [o.strip() for o in changes["options"] if o.strip()] or [
                DEFAULT_OPTION
            ]
        if "emotions" in changes:
            changes["emotions"] = list(dict.fromkeys(changes["emotions"])) or [Emotion.NEUTRAL]
        return _evolve(decision, **changes)

    def complete_analysis(self, decision: Decision, analysis: DecisionAnalysis) -> Decision:
        """DRAFT -> ANALYZED. Re-analysis is not permitted."""
        self.require_transition(decision, DecisionStatus.ANALYZED, "complete analysis")

        analyzed = _evolve(
            decision,
            status=DecisionStatus.ANALYZED,
            analysis=analysis,
            tags=list(analysis.related_tags),
            date_created=decision.date_created or self._clock(),
        )
        logger.info(
            "Decision analyzed",
            extra={"decision_id": decision.id, "clarity_score": analysis.clarity_score},
        )
        return analyzed

    def record_outcome(
        self,
        decision: Decision,
        outcome_text: str,
        outcome_analysis: OutcomeAnalysis,
    ) -> Decision:
        """ANALYZED -> COMPLETED, overwriting the clarity score with the hindsight value."""
        self.require_transition(decision, DecisionStatus.COMPLETED, "record an outcome")
        if not outcome_text or not outcome_text.strip():
            raise ValidationError("outcome must not be empty", details={"field": "outcome"})

        revised_analysis = decision.analysis.model_copy(
            update={"clarity_score": outcome_analysis.updated_clarity_score}
        )
        completed = _evolve(
            decision,
            status=DecisionStatus.COMPLETED,
            analysis=revised_analysis,
            outcome=outcome_text.strip(),
            outcome_date=self._clock(),
            outcome_analysis=outcome_analysis,
        )
        logger.info(
            "Decision outcome recorded",
            extra={
                "decision_id": decision.id,
                "original_clarity": decision.analysis.clarity_score,
                "updated_clarity": outcome_analysis.updated_clarity_score,
            },
        )
        return completed
