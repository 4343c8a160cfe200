"""Analysis contract between the engine and the reasoning provider.

Requests are built from structured fields only; replies must be JSON and are
validated field by field before anything reaches a Decision. A reply that
fails validation raises AnalysisContractError and is never partially applied.
"""

from typing import Iterable, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from config import get_settings
from models.errors import AnalysisContractError, ValidationError
from models.schemas import (
    Decision,
    DecisionAnalysis,
    OutcomeAnalysis,
    PatternSummary,
)
from services.llm import LLMClient, get_llm_client
from utils.json_extraction import extract_json_from_response
from utils.logging import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

ANALYST_SYSTEM_PROMPT = """You are an expert cognitive scientist and decision coach.
You help people introspect on decisions they are facing or have made.
Always answer with a single JSON object matching the requested schema and nothing else."""

DECISION_ANALYSIS_SCHEMA = """{
  "summary": "brief executive summary of the decision landscape",
  "biases": [
    {"name": "bias name", "description": "how it shows up here",
     "probability": 0-100, "mitigation": "how to counter it"}
  ],
  "blindSpots": ["something the user may be missing"],
  "alternativePerspectives": ["a what-if that challenges current thinking"],
  "simulations": [
    {"scenario": "the what-if path", "outcome": "the predicted result",
     "riskLevel": "Low" | "Medium" | "High"}
  ],
  "clarityScore": integer 0-100,
  "relatedTags": ["Career", "Finance", "..."]
}"""

OUTCOME_ANALYSIS_SCHEMA = """{
  "causalReflection": "did the predicted biases manifest, was the outcome surprising",
  "biasValidation": "were the initial biases accurate predictors",
  "learningPoint": "the single most important lesson for future decisions",
  "updatedClarityScore": integer 0-100
}"""

PATTERN_SUMMARY_SCHEMA = """{
  "insight": "a psychological insight about their decision-making style",
  "dominantBias": "the most frequent cognitive trap they fall into",
  "recommendation": "one actionable habit to improve"
}"""


def _require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} must not be empty", details={"field": field})
    return value.strip()


def _require_items(values: Iterable | None, field: str) -> list:
    items = [v for v in (values or []) if str(getattr(v, "value", v)).strip()]
    if not items:
        raise ValidationError(
            f"{field} must contain at least one entry", details={"field": field}
        )
    return items


def _label(value) -> str:
    return str(getattr(value, "value", value))


def build_decision_request(
    title: str,
    description: str,
    context: str,
    emotions: list,
    options: list[str],
) -> str:
    return f"""Analyze the following decision.

Decision Title: {title}
Description: {description or "(none given)"}
Context/Background: {context or "(none given)"}
Current Emotional State: {", ".join(_label(e) for e in emotions)}
Options Considered: {", ".join(options)}

Tasks:
1. Identify cognitive biases influencing this decision, most relevant first.
2. Point out blind spots the user might be missing or underestimating.
3. Suggest alternative perspectives or what-if scenarios that challenge current thinking.
4. Give a clarity score (0-100) for how well-reasoned the input is.
5. Simulate 2 potential outcomes for different paths.
6. Generate 3-5 distinct tags that categorize the nature of this decision.

Return JSON with exactly this shape:
{DECISION_ANALYSIS_SCHEMA}"""


def build_outcome_request(decision: Decision, actual_outcome: str) -> str:
    analysis = decision.analysis
    predicted = ", ".join(b.name for b in analysis.biases) or "None"
    return f"""The user has taken action on a decision that was analyzed earlier.
Analyze the causal relationship between their original thought process and the actual outcome.

ORIGINAL DECISION:
Title: {decision.title}
Description: {decision.description or "(none given)"}
Predicted Biases: {predicted}
Original Clarity Score: {analysis.clarity_score}

ACTUAL OUTCOME:
"{actual_outcome}"

Tasks:
1. Causal reflection: connect the original reasoning to what happened.
2. Bias validation: confirm whether the predicted biases were accurate.
3. Learning point: the single most important lesson.
4. Updated clarity score: re-evaluate the original decision quality in hindsight.

Return JSON with exactly this shape:
{OUTCOME_ANALYSIS_SCHEMA}"""


def build_patterns_request(history_lines: list[str]) -> str:
    history = "\n".join(history_lines)
    return f"""Analyze this user's decision history to find behavioral patterns.

History:
{history}

Return JSON with exactly this shape:
{PATTERN_SUMMARY_SCHEMA}"""


def _describe_violations(error: PydanticValidationError) -> list[str]:
    violations = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "<root>"
        violations.append(f"{location}: {item['msg']}")
    return violations


def parse_response(text: str, model: type[ModelT], operation: str) -> ModelT:
    """Parse and validate a provider reply against a response schema.

    Raises:
        AnalysisContractError: If the reply is not JSON or violates the schema
    """
    payload = extract_json_from_response(text, context=operation)
    if not isinstance(payload, dict):
        raise AnalysisContractError(
            f"Provider reply for {operation} is not a JSON object",
            operation=operation,
            violations=["<root>: expected a JSON object"],
        )

    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        violations = _describe_violations(e)
        logger.warning(
            f"Provider reply for {operation} failed schema validation",
            extra={"violations": violations},
        )
        raise AnalysisContractError(
            f"Provider reply for {operation} failed schema validation",
            operation=operation,
            violations=violations,
        ) from e


class AnalysisContract:
    """Translate decisions into provider requests and validate the replies."""

    def __init__(self, llm: LLMClient | None = None):
        self.llm = llm or get_llm_client()
        self.settings = get_settings()

    async def analyze_decision(
        self,
        title: str,
        description: str,
        context: str,
        emotions: list,
        options: list[str],
    ) -> DecisionAnalysis:
        """Analyze a decision.

        Raises:
            ValidationError: Empty title, no options or no emotions
            ProviderUnavailableError: Provider failure after retries
            AnalysisContractError: Reply failed schema validation
        """
        title = _require_text(title, "title")
        options = _require_items(options, "options")
        emotions = _require_items(emotions, "emotions")

        prompt = build_decision_request(title, description, context, emotions, options)
        response = await self.llm.generate(
            prompt,
            system_prompt=ANALYST_SYSTEM_PROMPT,
            temperature=self.settings.analysis_temperature,
            max_tokens=self.settings.analysis_max_tokens,
            operation="decision_analysis",
        )
        analysis = parse_response(response, DecisionAnalysis, "decision_analysis")
        logger.info(
            "Decision analysis validated",
            extra={
                "clarity_score": analysis.clarity_score,
                "bias_count": len(analysis.biases),
                "simulation_count": len(analysis.simulations),
            },
        )
        return analysis

    async def analyze_outcome(self, decision: Decision, actual_outcome: str) -> OutcomeAnalysis:
        """Reconcile a decision's analysis with what actually happened.

        Raises:
            ValidationError: Decision has no analysis, or the outcome text is empty
            ProviderUnavailableError: Provider failure after retries
            AnalysisContractError: Reply failed schema validation
        """
        if decision.analysis is None:
            raise ValidationError(
                "Cannot analyze an outcome for a decision that has not been analyzed",
                details={"decision_id": decision.id, "status": decision.status.value},
            )
        actual_outcome = _require_text(actual_outcome, "outcome")

        response = await self.llm.generate(
            build_outcome_request(decision, actual_outcome),
            system_prompt=ANALYST_SYSTEM_PROMPT,
            temperature=self.settings.outcome_temperature,
            max_tokens=self.settings.analysis_max_tokens,
            operation="outcome_analysis",
        )
        return parse_response(response, OutcomeAnalysis, "outcome_analysis")

    async def summarize_patterns(self, history_lines: list[str]) -> PatternSummary:
        """Ask the provider for a behavioral summary of a decision history."""
        response = await self.llm.generate(
            build_patterns_request(history_lines),
            system_prompt=ANALYST_SYSTEM_PROMPT,
            temperature=self.settings.patterns_temperature,
            max_tokens=self.settings.patterns_max_tokens,
            operation="pattern_summary",
        )
        return parse_response(response, PatternSummary, "pattern_summary")
