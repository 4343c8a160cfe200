# Models
from models.errors import (
    AnalysisContractError,
    DecisionEngineError,
    DecisionNotFoundError,
    ProviderUnavailableError,
    SessionNotFoundError,
    StateError,
    ValidationError,
)
from models.schemas import (
    BiasFinding,
    Decision,
    DecisionAnalysis,
    DecisionDraft,
    DecisionStatus,
    Emotion,
    OutcomeAnalysis,
    PatternSummary,
    RiskLevel,
    SimulationResult,
    Speaker,
    TranscriptEntry,
)

__all__ = [
    "AnalysisContractError",
    "BiasFinding",
    "Decision",
    "DecisionAnalysis",
    "DecisionDraft",
    "DecisionEngineError",
    "DecisionNotFoundError",
    "DecisionStatus",
    "Emotion",
    "OutcomeAnalysis",
    "PatternSummary",
    "ProviderUnavailableError",
    "RiskLevel",
    "SessionNotFoundError",
    "SimulationResult",
    "Speaker",
    "StateError",
    "TranscriptEntry",
    "ValidationError",
]
