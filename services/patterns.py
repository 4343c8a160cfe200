"""Cross-decision behavioral pattern aggregation.

Pattern summaries are derived and non-authoritative: they are recomputed from
the decision collection on demand and a failure here never blocks the
decision lifecycle.
"""

import math
from collections import Counter

from models.errors import AnalysisContractError, ProviderUnavailableError, ValidationError
from models.schemas import (
    BiasFrequency,
    Decision,
    DecisionStatistics,
    DecisionStatus,
    Emotion,
    PatternSummary,
)
from services.analysis_contract import AnalysisContract
from utils.logging import get_logger

logger = get_logger(__name__)

INSUFFICIENT_DATA = PatternSummary(
    insight="Not enough data to generate patterns.",
    dominant_bias="None",
    recommendation="Start logging decisions to see patterns.",
)

SAFE_DEFAULT = PatternSummary(
    insight="Could not analyze patterns at this time.",
    dominant_bias="Unknown",
    recommendation="Continue logging to build a dataset.",
)


def history_line(decision: Decision) -> str:
    """One line of history per decision: title, emotions, status and top bias."""
    emotions = ", ".join(e.value for e in decision.emotions)
    top_bias = decision.top_bias
    return (
        f"Title: {decision.title}, Emotions: {emotions}, "
        f"Status: {decision.status.value}, Bias Found: {top_bias.name if top_bias else 'None'}"
    )


MAX_BIAS_FREQUENCIES = 5


def _percent(part: int, whole: int) -> int:
    # Half up, so 2 of 8 biases reads 25 and 1 of 8 reads 13
    return math.floor(part * 100 / whole + 0.5) if whole else 0


def compute_statistics(decisions: list[Decision]) -> DecisionStatistics:
    """Average clarity, bias distribution, completion rate and emotion counts."""
    analyzed = [d for d in decisions if d.analysis is not None]
    average_clarity = None
    if analyzed:
        total = sum(d.analysis.clarity_score for d in analyzed)
        average_clarity = math.floor(total / len(analyzed) + 0.5)

    bias_counts = Counter(b.name for d in analyzed for b in d.analysis.biases)
    bias_total = sum(bias_counts.values())
    ranked = sorted(bias_counts.items(), key=lambda item: (-item[1], item[0]))

    emotion_counts = Counter(e.value for d in decisions for e in d.emotions)
    completed = sum(1 for d in decisions if d.status is DecisionStatus.COMPLETED)

    return DecisionStatistics(
        decision_count=len(decisions),
        analyzed_count=len(analyzed),
        average_clarity=average_clarity,
        completion_rate=_percent(completed, len(decisions)),
        bias_frequency=[
            BiasFrequency(name=name, percentage=_percent(count, bias_total))
            for name, count in ranked[:MAX_BIAS_FREQUENCIES]
        ],
        emotion_counts={e.value: emotion_counts.get(e.value, 0) for e in Emotion},
    )


class PatternAggregator:
    def __init__(self, contract: AnalysisContract | None = None):
        self.contract = contract or AnalysisContract()

    async def generate_patterns(self, decisions: list[Decision]) -> PatternSummary:
        """Summarize behavioral patterns across one owner's decisions.

        Never raises for provider or contract failures; returns SAFE_DEFAULT instead.
        """
        if not decisions:
            return INSUFFICIENT_DATA

        lines = [history_line(d) for d in decisions]
        try:
            summary = await self.contract.summarize_patterns(lines)
        except (ProviderUnavailableError, AnalysisContractError, ValidationError) as e:
            logger.warning(
                f"Pattern generation degraded to default: {type(e).__name__}: {e}",
                extra={"decision_count": len(decisions)},
            )
            return SAFE_DEFAULT
        except Exception as e:
            # Catch-all for unexpected provider client errors
            logger.error(f"Unexpected error generating patterns: {type(e).__name__}: {e}")
            return SAFE_DEFAULT

        logger.info(
            "Pattern summary generated",
            extra={"decision_count": len(decisions), "dominant_bias": summary.dominant_bias},
        )
        return summary
