"""Unit tests for the analysis contract.

Tests:
- Precondition checks that never reach the provider
- Schema validation of decision, outcome and pattern replies
- Provider failures surfacing as ProviderUnavailableError
"""

import json

import pytest

from models.errors import AnalysisContractError, ProviderUnavailableError, ValidationError
from models.schemas import (
    DecisionAnalysis,
    DecisionStatus,
    Emotion,
    PatternSummary,
    RiskLevel,
)
from services.analysis_contract import (
    build_decision_request,
    build_outcome_request,
    parse_response,
)
from tests.factories import DecisionAnalysisFactory, DecisionFactory, OutcomeAnalysisFactory

ANALYZE_ARGS = {
    "title": "Take the offer",
    "description": "Startup role, equity heavy",
    "context": "Six months of savings",
    "emotions": [Emotion.EXCITED],
    "options": ["Accept", "Decline"],
}


# ============================================================================
# Decision Analysis
# ============================================================================


class TestAnalyzeDecision:
    @pytest.mark.asyncio
    async def test_valid_reply_is_parsed(self, contract, mock_llm):
        mock_llm.queue_reply(DecisionAnalysisFactory.json())

        analysis = await contract.analyze_decision(**ANALYZE_ARGS)

        assert analysis.clarity_score == 72
        assert analysis.top_bias.name == "Sunk Cost Fallacy"
        assert analysis.simulations[0].risk_level is RiskLevel.MEDIUM
        assert analysis.related_tags == ["Career", "Finance", "Growth"]

    @pytest.mark.asyncio
    async def test_request_carries_structured_fields(self, contract, mock_llm):
        mock_llm.queue_reply(DecisionAnalysisFactory.json())

        await contract.analyze_decision(**ANALYZE_ARGS)

        call = mock_llm.get_last_call()
        prompt = call["messages"][-1]["content"]
        assert "Decision Title: Take the offer" in prompt
        assert "Current Emotional State: Excited" in prompt
        assert "Options Considered: Accept, Decline" in prompt
        assert call["operation"] == "decision_analysis"
        assert call["messages"][0]["role"] == "system"

    @pytest.mark.asyncio
    async def test_fenced_reply_accepted(self, contract, mock_llm):
        mock_llm.queue_reply(f"Here you go:\n```json\n{DecisionAnalysisFactory.json()}\n```")
        analysis = await contract.analyze_decision(**ANALYZE_ARGS)
        assert analysis.summary

    @pytest.mark.asyncio
    async def test_whole_float_clarity_becomes_int(self, contract, mock_llm):
        mock_llm.queue_reply(DecisionAnalysisFactory.json(clarityScore=72.0))
        analysis = await contract.analyze_decision(**ANALYZE_ARGS)
        assert analysis.clarity_score == 72
        assert isinstance(analysis.clarity_score, int)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"clarityScore": 150},
            {"clarityScore": -1},
            {"clarityScore": "high"},
            {"clarityScore": True},
            {"clarityScore": 72.5},
            {"simulations": []},
            {"relatedTags": []},
            {"relatedTags": [f"tag{i}" for i in range(9)]},
            {"summary": "   "},
        ],
    )
    @pytest.mark.asyncio
    async def test_schema_violations_rejected(self, contract, mock_llm, overrides):
        mock_llm.queue_reply(DecisionAnalysisFactory.json(**overrides))

        with pytest.raises(AnalysisContractError) as exc_info:
            await contract.analyze_decision(**ANALYZE_ARGS)

        assert exc_info.value.operation == "decision_analysis"
        assert exc_info.value.violations

    @pytest.mark.asyncio
    async def test_missing_field_rejected(self, contract, mock_llm):
        payload = DecisionAnalysisFactory.payload()
        del payload["blindSpots"]
        mock_llm.queue_reply(json.dumps(payload))

        with pytest.raises(AnalysisContractError) as exc_info:
            await contract.analyze_decision(**ANALYZE_ARGS)

        assert any("blindSpots" in v for v in exc_info.value.violations)

    @pytest.mark.asyncio
    async def test_bad_risk_level_rejected(self, contract, mock_llm):
        simulations = [{"scenario": "Go", "outcome": "Fine", "riskLevel": "Extreme"}]
        mock_llm.queue_reply(DecisionAnalysisFactory.json(simulations=simulations))

        with pytest.raises(AnalysisContractError):
            await contract.analyze_decision(**ANALYZE_ARGS)

    @pytest.mark.asyncio
    async def test_non_json_reply_rejected(self, contract, mock_llm):
        mock_llm.queue_reply("I think you should take the job.")

        with pytest.raises(AnalysisContractError):
            await contract.analyze_decision(**ANALYZE_ARGS)

    @pytest.mark.asyncio
    async def test_json_array_reply_rejected(self, contract, mock_llm):
        mock_llm.queue_reply("[1, 2, 3]")

        with pytest.raises(AnalysisContractError, match="not a JSON object"):
            await contract.analyze_decision(**ANALYZE_ARGS)

    @pytest.mark.parametrize(
        "overrides",
        [{"title": "  "}, {"options": []}, {"emotions": []}, {"options": ["", " "]}],
    )
    @pytest.mark.asyncio
    async def test_preconditions_checked_before_provider(self, contract, mock_llm, overrides):
        with pytest.raises(ValidationError):
            await contract.analyze_decision(**{**ANALYZE_ARGS, **overrides})

        assert mock_llm.get_call_count() == 0

    @pytest.mark.asyncio
    async def test_provider_failure_propagates(self, contract, mock_llm):
        mock_llm.fail_with("connection refused")

        with pytest.raises(ProviderUnavailableError):
            await contract.analyze_decision(**ANALYZE_ARGS)


# ============================================================================
# Outcome Analysis
# ============================================================================


class TestAnalyzeOutcome:
    @pytest.mark.asyncio
    async def test_valid_reply_is_parsed(self, contract, mock_llm, analyzed_decision):
        mock_llm.queue_reply(OutcomeAnalysisFactory.json(updatedClarityScore=40))

        result = await contract.analyze_outcome(analyzed_decision, "It went badly.")

        assert result.updated_clarity_score == 40
        assert result.learning_point == "Write down the downside before deciding."

    @pytest.mark.asyncio
    async def test_request_includes_prior_analysis(self, contract, mock_llm, analyzed_decision):
        mock_llm.queue_reply(OutcomeAnalysisFactory.json())

        await contract.analyze_outcome(analyzed_decision, "It went well.")

        prompt = mock_llm.get_last_call()["messages"][-1]["content"]
        assert "Predicted Biases: Sunk Cost Fallacy, Confirmation Bias" in prompt
        assert "Original Clarity Score: 72" in prompt
        assert '"It went well."' in prompt

    @pytest.mark.asyncio
    async def test_requires_analysis(self, contract, mock_llm, draft_decision):
        with pytest.raises(ValidationError):
            await contract.analyze_outcome(draft_decision, "Anything")
        assert mock_llm.get_call_count() == 0

    @pytest.mark.asyncio
    async def test_requires_outcome_text(self, contract, mock_llm, analyzed_decision):
        with pytest.raises(ValidationError):
            await contract.analyze_outcome(analyzed_decision, "   ")
        assert mock_llm.get_call_count() == 0

    @pytest.mark.asyncio
    async def test_out_of_range_score_rejected(self, contract, mock_llm, analyzed_decision):
        mock_llm.queue_reply(OutcomeAnalysisFactory.json(updatedClarityScore=101))

        with pytest.raises(AnalysisContractError) as exc_info:
            await contract.analyze_outcome(analyzed_decision, "Done")

        assert exc_info.value.operation == "outcome_analysis"


# ============================================================================
# Pattern Summary and helpers
# ============================================================================


class TestSummarizePatterns:
    @pytest.mark.asyncio
    async def test_valid_reply(self, contract, mock_llm):
        mock_llm.set_json_response(
            "behavioral patterns",
            {"insight": "You rush", "dominantBias": "Overconfidence", "recommendation": "Pause"},
        )

        summary = await contract.summarize_patterns(["Title: A, Emotions: Neutral"])

        assert summary == PatternSummary(
            insight="You rush", dominant_bias="Overconfidence", recommendation="Pause"
        )
        assert mock_llm.get_last_call()["operation"] == "pattern_summary"

    @pytest.mark.asyncio
    async def test_token_budget_from_settings(self, contract, mock_llm, monkeypatch):
        monkeypatch.setattr(contract.settings, "patterns_max_tokens", 256)
        mock_llm.queue_reply(
            '{"insight": "You rush", "dominantBias": "Overconfidence", "recommendation": "Pause"}'
        )

        await contract.summarize_patterns(["Title: A, Emotions: Neutral"])

        assert mock_llm.get_last_call()["max_tokens"] == 256


class TestRequestBuilders:
    def test_decision_request_marks_empty_fields(self):
        prompt = build_decision_request("T", "", "", [Emotion.NEUTRAL], ["Proceed as planned"])
        assert "Description: (none given)" in prompt
        assert "clarityScore" in prompt

    def test_outcome_request_without_biases(self):
        analysis = DecisionAnalysisFactory.create(biases=[])
        decision = DecisionFactory.create(status=DecisionStatus.ANALYZED, analysis=analysis)
        assert "Predicted Biases: None" in build_outcome_request(decision, "ok")

    def test_parse_response_accepts_snake_case(self):
        payload = DecisionAnalysisFactory.payload()
        payload["clarity_score"] = payload.pop("clarityScore")
        parsed = parse_response(
            json.dumps(payload), DecisionAnalysis, "decision_analysis"
        )
        assert parsed.clarity_score == 72
