"""Tests for the decisions router."""

from models.errors import ProviderUnavailableError
from tests.factories import DecisionAnalysisFactory, OutcomeAnalysisFactory

USER_HEADERS = {"X-User-ID": "user-1"}

NEW_DECISION = {
    "title": "Accept the Berlin offer",
    "description": "Senior role, 20% raise",
    "context": "Lease ends in June",
    "optionsConsidered": ["Accept", "Decline"],
    "emotions": ["Excited", "Anxious"],
}


def create(client, headers=USER_HEADERS, **overrides):
    response = client.post("/api/decisions", json={**NEW_DECISION, **overrides}, headers=headers)
    assert response.status_code == 201
    return response.json()


class TestCreateDecision:
    def test_returns_draft(self, client, mock_llm):
        body = create(client)

        assert body["status"] == "DRAFT"
        assert body["userId"] == "user-1"
        assert body["optionsConsidered"] == ["Accept", "Decline"]
        assert body.get("analysis") is None
        assert mock_llm.get_call_count() == 0

    def test_missing_title_is_422(self, client):
        response = client.post("/api/decisions", json={"description": "x"}, headers=USER_HEADERS)

        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"

    def test_unknown_emotion_is_422(self, client):
        response = client.post(
            "/api/decisions", json={**NEW_DECISION, "emotions": ["Furious"]}, headers=USER_HEADERS
        )
        assert response.status_code == 422

    def test_missing_header_uses_anonymous_owner(self, client):
        body = create(client, headers={})
        assert body["userId"] == "anonymous"


class TestReadDecisions:
    def test_list_newest_first(self, client):
        first = create(client, title="First")
        second = create(client, title="Second")

        response = client.get("/api/decisions", headers=USER_HEADERS)

        assert response.status_code == 200
        assert [d["id"] for d in response.json()] == [second["id"], first["id"]]

    def test_other_owner_gets_404(self, client):
        decision = create(client)

        response = client.get(f"/api/decisions/{decision['id']}", headers={"X-User-ID": "other"})

        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_request_id_echoed(self, client):
        response = client.get("/api/decisions", headers={**USER_HEADERS, "X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"


class TestAnalyzeEndpoint:
    def test_analyze_then_outcome(self, client, mock_llm):
        mock_llm.queue_reply(
            DecisionAnalysisFactory.json(clarityScore=64),
            OutcomeAnalysisFactory.json(updatedClarityScore=85),
        )
        decision = create(client)

        analyzed = client.post(f"/api/decisions/{decision['id']}/analyze", headers=USER_HEADERS)
        assert analyzed.status_code == 200
        assert analyzed.json()["status"] == "ANALYZED"
        assert analyzed.json()["analysis"]["clarityScore"] == 64

        completed = client.post(
            f"/api/decisions/{decision['id']}/outcome",
            json={"outcome": "Moved, loving it"},
            headers=USER_HEADERS,
        )
        assert completed.status_code == 200
        body = completed.json()
        assert body["status"] == "COMPLETED"
        assert body["analysis"]["clarityScore"] == 85
        assert body["outcomeAnalysis"]["learningPoint"]

    def test_provider_failure_is_503_and_draft_kept(self, client, mock_llm):
        mock_llm.queue_reply(ProviderUnavailableError("timeout"))
        decision = create(client)

        response = client.post(f"/api/decisions/{decision['id']}/analyze", headers=USER_HEADERS)

        assert response.status_code == 503
        stored = client.get(f"/api/decisions/{decision['id']}", headers=USER_HEADERS).json()
        assert stored["status"] == "DRAFT"

    def test_contract_failure_is_502(self, client, mock_llm):
        mock_llm.queue_reply(DecisionAnalysisFactory.json(clarityScore=150))
        decision = create(client)

        response = client.post(f"/api/decisions/{decision['id']}/analyze", headers=USER_HEADERS)

        assert response.status_code == 502
        assert response.json()["error"] == "AnalysisContractError"

    def test_reanalysis_is_409(self, client, mock_llm):
        mock_llm.queue_reply(DecisionAnalysisFactory.json())
        decision = create(client)
        client.post(f"/api/decisions/{decision['id']}/analyze", headers=USER_HEADERS)

        response = client.post(f"/api/decisions/{decision['id']}/analyze", headers=USER_HEADERS)

        assert response.status_code == 409
        assert response.json()["error"] == "StateError"

    def test_outcome_on_draft_is_409(self, client):
        decision = create(client)

        response = client.post(
            f"/api/decisions/{decision['id']}/outcome",
            json={"outcome": "Done"},
            headers=USER_HEADERS,
        )

        assert response.status_code == 409


class TestUpdateDecision:
    def test_patch_draft(self, client):
        decision = create(client)

        response = client.patch(
            f"/api/decisions/{decision['id']}", json={"context": "Visa approved"}, headers=USER_HEADERS
        )

        assert response.status_code == 200
        assert response.json()["context"] == "Visa approved"

    def test_patch_analyzed_is_409(self, client, mock_llm):
        mock_llm.queue_reply(DecisionAnalysisFactory.json())
        decision = create(client)
        client.post(f"/api/decisions/{decision['id']}/analyze", headers=USER_HEADERS)

        response = client.patch(
            f"/api/decisions/{decision['id']}", json={"title": "Too late"}, headers=USER_HEADERS
        )

        assert response.status_code == 409


class TestPatternsEndpoint:
    def test_empty_collection(self, client, mock_llm):
        response = client.get("/api/decisions/patterns", headers=USER_HEADERS)

        assert response.status_code == 200
        assert response.json()["dominantBias"] == "None"
        assert mock_llm.get_call_count() == 0
        statistics = response.json()["statistics"]
        assert statistics["decisionCount"] == 0
        assert statistics["averageClarity"] is None
        assert statistics["completionRate"] == 0
        assert statistics["biasFrequency"] == []

    def test_provider_failure_still_200(self, client, mock_llm):
        create(client)
        mock_llm.fail_with()

        response = client.get("/api/decisions/patterns", headers=USER_HEADERS)

        assert response.status_code == 200
        assert set(response.json()) == {"insight", "dominantBias", "recommendation", "statistics"}
        assert response.json()["statistics"]["decisionCount"] == 1

    def test_statistics_follow_analysis(self, client, mock_llm):
        mock_llm.queue_reply(DecisionAnalysisFactory.json(clarityScore=80))
        analyzed = create(client, title="Analyzed")
        create(client, title="Still a draft")
        client.post(f"/api/decisions/{analyzed['id']}/analyze", headers=USER_HEADERS)
        mock_llm.fail_with()

        statistics = client.get("/api/decisions/patterns", headers=USER_HEADERS).json()["statistics"]

        assert statistics["decisionCount"] == 2
        assert statistics["analyzedCount"] == 1
        assert statistics["averageClarity"] == 80
        assert statistics["biasFrequency"] == [
            {"name": "Confirmation Bias", "percentage": 50},
            {"name": "Sunk Cost Fallacy", "percentage": 50},
        ]


class TestDeleteDecision:
    def test_delete_returns_204(self, client):
        decision = create(client)

        response = client.delete(f"/api/decisions/{decision['id']}", headers=USER_HEADERS)

        assert response.status_code == 204
        assert client.get(f"/api/decisions/{decision['id']}", headers=USER_HEADERS).status_code == 404
        assert client.get("/api/decisions", headers=USER_HEADERS).json() == []

    def test_other_owner_gets_404(self, client):
        decision = create(client)

        response = client.delete(f"/api/decisions/{decision['id']}", headers={"X-User-ID": "user-2"})

        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"
        assert client.get(f"/api/decisions/{decision['id']}", headers=USER_HEADERS).status_code == 200

    def test_unknown_decision_is_404(self, client):
        assert client.delete("/api/decisions/missing", headers=USER_HEADERS).status_code == 404

    def test_open_simulations_are_ended(self, client, mock_llm):
        decision = create(client)
        mock_llm.queue_reply("You stay home.")
        session = client.post(
            "/api/simulations", json={"decisionId": decision["id"]}, headers=USER_HEADERS
        ).json()

        client.delete(f"/api/decisions/{decision['id']}", headers=USER_HEADERS)

        response = client.get(f"/api/simulations/{session['sessionId']}", headers=USER_HEADERS)
        assert response.status_code == 404
