"""Tests for the simulations router."""

from models.errors import ProviderUnavailableError
from tests.factories import DecisionAnalysisFactory

USER_HEADERS = {"X-User-ID": "user-1"}


def analyzed_decision_id(client, mock_llm) -> str:
    mock_llm.queue_reply(DecisionAnalysisFactory.json())
    decision = client.post(
        "/api/decisions",
        json={"title": "Accept the Berlin offer", "optionsConsidered": ["Accept", "Decline"]},
        headers=USER_HEADERS,
    ).json()
    client.post(f"/api/decisions/{decision['id']}/analyze", headers=USER_HEADERS)
    return decision["id"]


def start(client, decision_id, scenario=None):
    return client.post(
        "/api/simulations",
        json={"decisionId": decision_id, "scenario": scenario},
        headers=USER_HEADERS,
    )


class TestStartSimulation:
    def test_opening_transcript(self, client, mock_llm):
        decision_id = analyzed_decision_id(client, mock_llm)
        mock_llm.queue_reply("You land in Berlin.")

        response = start(client, decision_id, "Accept the offer")

        assert response.status_code == 201
        body = response.json()
        assert body["state"] == "active"
        assert body["scenario"] == "Accept the offer"
        assert body["transcript"] == [{"speaker": "assistant", "text": "You land in Berlin."}]

    def test_unknown_decision_is_404(self, client):
        assert start(client, "missing").status_code == 404

    def test_unknown_scenario_is_422(self, client, mock_llm):
        decision_id = analyzed_decision_id(client, mock_llm)
        assert start(client, decision_id, "Move to Mars").status_code == 422

    def test_provider_down_returns_degraded_session(self, client, mock_llm):
        decision_id = analyzed_decision_id(client, mock_llm)
        mock_llm.queue_reply(ProviderUnavailableError("down"))

        response = start(client, decision_id)

        assert response.status_code == 201
        assert response.json()["state"] == "degraded"


class TestConversation:
    def test_send_and_read_transcript(self, client, mock_llm):
        decision_id = analyzed_decision_id(client, mock_llm)
        mock_llm.queue_reply("Scene set.", "Your manager calls.")
        session_id = start(client, decision_id).json()["sessionId"]

        reply = client.post(
            f"/api/simulations/{session_id}/messages",
            json={"text": "I pick up"},
            headers=USER_HEADERS,
        )

        assert reply.status_code == 200
        assert reply.json() == {"sessionId": session_id, "state": "active", "reply": "Your manager calls."}
        view = client.get(f"/api/simulations/{session_id}", headers=USER_HEADERS).json()
        assert [e["speaker"] for e in view["transcript"]] == ["assistant", "user", "assistant"]

    def test_empty_message_is_422(self, client, mock_llm):
        decision_id = analyzed_decision_id(client, mock_llm)
        session_id = start(client, decision_id).json()["sessionId"]

        response = client.post(
            f"/api/simulations/{session_id}/messages", json={"text": ""}, headers=USER_HEADERS
        )

        assert response.status_code == 422

    def test_other_owner_cannot_see_session(self, client, mock_llm):
        decision_id = analyzed_decision_id(client, mock_llm)
        session_id = start(client, decision_id).json()["sessionId"]

        response = client.get(f"/api/simulations/{session_id}", headers={"X-User-ID": "other"})

        assert response.status_code == 404

    def test_end_session(self, client, mock_llm):
        decision_id = analyzed_decision_id(client, mock_llm)
        session_id = start(client, decision_id).json()["sessionId"]

        assert client.delete(f"/api/simulations/{session_id}", headers=USER_HEADERS).status_code == 204
        response = client.post(
            f"/api/simulations/{session_id}/messages", json={"text": "Hello?"}, headers=USER_HEADERS
        )
        assert response.status_code == 404
