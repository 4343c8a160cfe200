"""Pydantic schemas for decisions, provider contracts, and API payloads.

JSON field names are camelCase (``clarityScore``, ``optionsConsidered``...)
because that is the shape stored records and provider replies use; Python code
uses the snake_case attribute names.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StringConstraints,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

# Sentinels used when the user leaves a field empty
NEUTRAL_EMOTION = "Neutral"
DEFAULT_OPTION = "Proceed as planned"

MAX_RELATED_TAGS = 8


class DecisionStatus(str, Enum):
    DRAFT = "DRAFT"
    ANALYZED = "ANALYZED"
    COMPLETED = "COMPLETED"


class Emotion(str, Enum):
    ANXIOUS = "Anxious"
    EXCITED = "Excited"
    CONFUSED = "Confused"
    CONFIDENT = "Confident"
    PRESSURE = "Pressure"
    NEUTRAL = NEUTRAL_EMOTION


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class Speaker(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


def _coerce_score(value: Any) -> Any:
    """Accept integral numbers only; 72.0 becomes 72, 72.5 is rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("score must be a number")
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise ValueError("score must be a whole number")
        return int(value)
    return value


ClarityScore = Annotated[int, BeforeValidator(_coerce_score), Field(ge=0, le=100)]


def _coerce_probability(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("probability must be a number")
    return value


Probability = Annotated[float, BeforeValidator(_coerce_probability), Field(ge=0, le=100)]


class CamelModel(BaseModel):
    """Base model serialising to camelCase while accepting either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenCamelModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Provider contract
# ---------------------------------------------------------------------------


class BiasFinding(FrozenCamelModel):
    name: NonEmptyStr
    description: str
    probability: Probability
    mitigation: str


class SimulationResult(FrozenCamelModel):
    scenario: NonEmptyStr
    outcome: str
    risk_level: RiskLevel


class DecisionAnalysis(FrozenCamelModel):
    """Structured analysis returned by the reasoning provider.

    ``biases`` keeps provider order: index 0 is the dominant bias.
    """

    summary: NonEmptyStr
    biases: list[BiasFinding]
    blind_spots: list[NonEmptyStr]
    alternative_perspectives: list[NonEmptyStr]
    simulations: list[SimulationResult] = Field(..., min_length=1)
    clarity_score: ClarityScore
    related_tags: list[NonEmptyStr] = Field(..., min_length=1, max_length=MAX_RELATED_TAGS)

    @property
    def top_bias(self) -> Optional[BiasFinding]:
        return self.biases[0] if self.biases else None

    @property
    def scenarios(self) -> list[str]:
        return [s.scenario for s in self.simulations]


class OutcomeAnalysis(FrozenCamelModel):
    causal_reflection: NonEmptyStr
    bias_validation: NonEmptyStr
    learning_point: NonEmptyStr
    updated_clarity_score: ClarityScore


class PatternSummary(FrozenCamelModel):
    """Derived cross-decision insight; never persisted."""

    insight: NonEmptyStr
    dominant_bias: NonEmptyStr
    recommendation: NonEmptyStr


class BiasFrequency(FrozenCamelModel):
    name: str
    percentage: int


class DecisionStatistics(FrozenCamelModel):
    """Counts derived locally from the collection, no provider involved.

    Percentages are whole numbers rounded half up.
    """

    decision_count: int = 0
    analyzed_count: int = 0
    average_clarity: Optional[int] = None  # None until something was analyzed
    completion_rate: int = 0
    bias_frequency: list[BiasFrequency] = Field(default_factory=list)
    emotion_counts: dict[str, int] = Field(default_factory=dict)


class PatternReport(PatternSummary):
    """Pattern summary plus the collection statistics it was computed over."""

    statistics: DecisionStatistics


# ---------------------------------------------------------------------------
# Decision record
# ---------------------------------------------------------------------------


def _dedupe(values: list) -> list:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


class DecisionDraft(CamelModel):
    """Fields a user supplies when creating a decision."""

    title: NonEmptyStr = Field(..., max_length=200)
    description: str = Field("", max_length=5000)
    context: str = Field("", max_length=10000)
    options: list[str] = Field(default_factory=list, alias="optionsConsidered", max_length=20)
    emotions: list[Emotion] = Field(default_factory=list, max_length=len(Emotion))

    @field_validator("options")
    @classmethod
    def drop_blank_options(cls, v: list[str]) -> list[str]:
        return [option.strip() for option in v if option and option.strip()]

    @field_validator("emotions")
    @classmethod
    def dedupe_emotions(cls, v: list[Emotion]) -> list[Emotion]:
        return _dedupe(v)


class DecisionUpdate(CamelModel):
    """Partial edit of a DRAFT decision."""

    title: Optional[NonEmptyStr] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    context: Optional[str] = Field(None, max_length=10000)
    options: Optional[list[str]] = Field(None, alias="optionsConsidered", max_length=20)
    emotions: Optional[list[Emotion]] = Field(None, max_length=len(Emotion))


class Decision(FrozenCamelModel):
    """A recorded decision and everything the engine has learned about it.

    ``status``, ``analysis`` and the outcome fields move in lockstep; the
    validator rejects any combination the lifecycle could not have produced.
    """

    id: NonEmptyStr
    user_id: NonEmptyStr
    title: NonEmptyStr
    description: str = ""
    context: str = ""
    options: list[NonEmptyStr] = Field(..., min_length=1, alias="optionsConsidered")
    emotions: list[Emotion] = Field(..., min_length=1)
    status: DecisionStatus = DecisionStatus.DRAFT
    date_created: Optional[datetime] = None
    analysis: Optional[DecisionAnalysis] = None
    outcome: Optional[str] = None
    outcome_date: Optional[datetime] = None
    outcome_analysis: Optional[OutcomeAnalysis] = None
    tags: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_lockstep(self) -> "Decision":
        has_outcome = any(
            value is not None
            for value in (self.outcome, self.outcome_date, self.outcome_analysis)
        )
        if self.status is DecisionStatus.DRAFT:
            if self.analysis is not None or has_outcome:
                raise ValueError("a DRAFT decision cannot carry analysis or outcome")
        elif self.status is DecisionStatus.ANALYZED:
            if self.analysis is None or has_outcome:
                raise ValueError("an ANALYZED decision needs analysis and no outcome")
        else:
            if self.analysis is None or not all(
                value is not None
                for value in (self.outcome, self.outcome_date, self.outcome_analysis)
            ):
                raise ValueError("a COMPLETED decision needs analysis and a full outcome")
        return self

    @property
    def top_bias(self) -> Optional[BiasFinding]:
        return self.analysis.top_bias if self.analysis else None


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------


class OutcomeSubmission(CamelModel):
    outcome: NonEmptyStr = Field(..., max_length=10000)


class TranscriptEntry(FrozenCamelModel):
    speaker: Speaker
    text: str


class SimulationStartRequest(CamelModel):
    decision_id: NonEmptyStr
    scenario: Optional[str] = None


class SimulationMessageRequest(CamelModel):
    text: NonEmptyStr = Field(..., max_length=4000)


class SimulationView(CamelModel):
    session_id: str
    decision_id: str
    scenario: Optional[str] = None
    state: str
    transcript: list[TranscriptEntry]


class SimulationReply(CamelModel):
    session_id: str
    state: str
    reply: str
