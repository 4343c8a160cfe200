"""Decision orchestration: contract, lifecycle and repository wired together.

Every operation reads the stored decision, computes the next value off to the
side and writes it back only once everything succeeded. A provider or contract
failure therefore leaves the stored record exactly as it was, and the user can
retry.
"""

from typing import Any

from models.errors import ValidationError
from models.schemas import (
    Decision,
    DecisionDraft,
    DecisionStatus,
    DecisionUpdate,
    PatternReport,
    PatternSummary,
)
from services.analysis_contract import AnalysisContract
from services.lifecycle import DecisionLifecycle
from services.patterns import PatternAggregator, compute_statistics
from services.repository import DecisionRepository
from utils.logging import LogContext, get_logger

logger = get_logger(__name__)


def changed_fields(before: Decision, after: Decision) -> dict[str, Any]:
    """Fields whose values differ between two versions of a decision."""
    return {
        name: getattr(after, name)
        for name in Decision.model_fields
        if getattr(after, name) != getattr(before, name)
    }


class DecisionService:
    """Entry point used by the HTTP layer for everything decision-related.

    Pattern summaries are cached per owner and invalidated whenever that
    owner's collection changes. Concurrent recomputations are ordered by a
    per-owner sequence number: only the most recently started one may
    replace the cached summary.
    """

    def __init__(
        self,
        repository: DecisionRepository,
        contract: AnalysisContract | None = None,
        lifecycle: DecisionLifecycle | None = None,
        aggregator: PatternAggregator | None = None,
    ):
        self.repository = repository
        self.contract = contract or AnalysisContract()
        self.lifecycle = lifecycle or DecisionLifecycle()
        self.aggregator = aggregator or PatternAggregator(self.contract)

        self._collection_versions: dict[str, int] = {}
        self._pattern_sequence: dict[str, int] = {}
        self._patterns: dict[str, tuple[int, PatternSummary]] = {}

    def _collection_changed(self, owner_id: str) -> None:
        self._collection_versions[owner_id] = self._collection_versions.get(owner_id, 0) + 1

    async def list(self, owner_id: str) -> list[Decision]:
        return await self.repository.list(owner_id)

    async def get(self, owner_id: str, decision_id: str) -> Decision:
        return await self.repository.get(owner_id, decision_id)

    async def create_draft(self, owner_id: str, draft: DecisionDraft) -> Decision:
        decision = self.lifecycle.submit(owner_id, draft)
        stored = await self.repository.create(decision)
        self._collection_changed(owner_id)
        return stored

    async def revise(self, owner_id: str, decision_id: str, update: DecisionUpdate) -> Decision:
        current = await self.repository.get(owner_id, decision_id)
        revised = self.lifecycle.revise_draft(current, update)
        changes = changed_fields(current, revised)
        if not changes:
            return current

        stored = await self.repository.update(
            owner_id, decision_id, changes, expected_status=DecisionStatus.DRAFT
        )
        self._collection_changed(owner_id)
        return stored

    async def delete(self, owner_id: str, decision_id: str) -> None:
        await self.repository.delete(owner_id, decision_id)
        self._collection_changed(owner_id)
        logger.info("Decision deleted", extra={"decision_id": decision_id})

    async def analyze(self, owner_id: str, decision_id: str) -> Decision:
        """Run the reasoning provider over a DRAFT and store the analysis.

        Raises:
            DecisionNotFoundError: Unknown decision for this owner
            StateError: Decision is not a DRAFT, or was analyzed concurrently
            ProviderUnavailableError: Provider failure after retries
            AnalysisContractError: Reply failed schema validation
        """
        async with LogContext(user_id=owner_id, decision_id=decision_id):
            current = await self.repository.get(owner_id, decision_id)
            self.lifecycle.require_transition(current, DecisionStatus.ANALYZED, "complete analysis")

            analysis = await self.contract.analyze_decision(
                title=current.title,
                description=current.description,
                context=current.context,
                emotions=current.emotions,
                options=current.options,
            )
            analyzed = self.lifecycle.complete_analysis(current, analysis)
            # A concurrent analyze may have landed while the provider was working
            stored = await self.repository.update(
                owner_id,
                decision_id,
                changed_fields(current, analyzed),
                expected_status=DecisionStatus.DRAFT,
            )
            self._collection_changed(owner_id)
            return stored

    async def submit_outcome(self, owner_id: str, decision_id: str, outcome_text: str) -> Decision:
        """Reconcile an ANALYZED decision with its real-world outcome.

        Raises:
            ValidationError: Empty outcome text
            StateError: Decision is not ANALYZED, or was completed concurrently
        """
        if not outcome_text or not outcome_text.strip():
            raise ValidationError("outcome must not be empty", details={"field": "outcome"})

        async with LogContext(user_id=owner_id, decision_id=decision_id):
            current = await self.repository.get(owner_id, decision_id)
            self.lifecycle.require_transition(current, DecisionStatus.COMPLETED, "record an outcome")

            outcome_analysis = await self.contract.analyze_outcome(current, outcome_text)
            completed = self.lifecycle.record_outcome(current, outcome_text, outcome_analysis)
            stored = await self.repository.update(
                owner_id,
                decision_id,
                changed_fields(current, completed),
                expected_status=DecisionStatus.ANALYZED,
            )
            self._collection_changed(owner_id)
            return stored

    async def get_patterns(self, owner_id: str) -> PatternSummary:
        """Pattern summary for an owner, recomputed when the collection changed."""
        version = self._collection_versions.get(owner_id, 0)
        cached = self._patterns.get(owner_id)
        if cached is not None and cached[0] == version:
            return cached[1]

        sequence = self._pattern_sequence.get(owner_id, 0) + 1
        self._pattern_sequence[owner_id] = sequence

        decisions = await self.repository.list(owner_id)
        summary = await self.aggregator.generate_patterns(decisions)

        if self._pattern_sequence.get(owner_id) == sequence:
            self._patterns[owner_id] = (version, summary)
        else:
            logger.debug(
                "Discarding superseded pattern summary",
                extra={"sequence": sequence, "latest": self._pattern_sequence.get(owner_id)},
            )
            latest = self._patterns.get(owner_id)
            if latest is not None and latest[0] >= version:
                return latest[1]
        return summary

    async def get_pattern_report(self, owner_id: str) -> PatternReport:
        """Pattern summary together with locally computed collection statistics."""
        summary = await self.get_patterns(owner_id)
        statistics = compute_statistics(await self.repository.list(owner_id))
        return PatternReport(
            insight=summary.insight,
            dominant_bias=summary.dominant_bias,
            recommendation=summary.recommendation,
            statistics=statistics,
        )


_decision_service: DecisionService | None = None


def init_decision_service(repository: DecisionRepository) -> DecisionService:
    """Install the process-wide service over the given repository."""
    global _decision_service
    _decision_service = DecisionService(repository)
    return _decision_service


def get_decision_service() -> DecisionService:
    """Return the process-wide service, backed by memory if none was installed."""
    global _decision_service
    if _decision_service is None:
        from services.repository import InMemoryDecisionRepository

        _decision_service = DecisionService(InMemoryDecisionRepository())
    return _decision_service
