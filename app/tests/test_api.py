from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import server
from mindfusion.config import Settings
from mindfusion.narrative import NarrativeGenerator
from mindfusion.orchestration import SessionReportComposer
from mindfusion.storage import RecordStore


class StubNarrative(NarrativeGenerator):
    async def complete(self, messages):
        self.ensure_configured()
        return {"choices": [{"message": {"role": "assistant", "content": "Stub reply."}}]}


def _settings(tmp_path: Path, **overrides) -> Settings:
    values = dict(
        narrative_api_key="test-key",
        narrative_url="http://narrative.test/v2/chat/completions",
        narrative_model=None,
        local_storage_dir=str(tmp_path),
        supabase_url=None,
        supabase_service_role_key=None,
        s3_bucket=None,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def client_for(tmp_path: Path, monkeypatch):
    def _build(**overrides) -> TestClient:
        settings = _settings(tmp_path, **overrides)
        store = RecordStore(settings)
        narrative = StubNarrative(settings)
        monkeypatch.setattr(server, "settings", settings)
        monkeypatch.setattr(server, "store", store)
        monkeypatch.setattr(server, "narrative", narrative)
        monkeypatch.setattr(
            server,
            "composer",
            SessionReportComposer(narrative=narrative, store=store, policy=settings.policy),
        )
        return TestClient(server.app)

    return _build


FUSION_BODY = {
    "user_id": "user-1",
    "assessment_id": "assess-1",
    "text_analysis": {"emotion_score": 8, "keywords": ["tired"]},
    "voice_analysis": {"emotion_score": 6},
}


def test_health_reports_configuration(client_for):
    response = client_for().get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["narrative_configured"] is True
    assert body["record_store_remote"] is False
    assert body["policy"]["alert_risk_level"] == 7


def test_fusion_round_then_read_back(client_for):
    client = client_for()

    response = client.post("/v1/fusion", json=FUSION_BODY)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["risk_level"] == 7
    assert body["modalities_used"] == 2
    assert body["weights_applied"]["image"] == 0.0
    assert body["symptoms"]["loss_of_interest"] == 7.2
    assert len(body["recommendations"]) == 3
    assert body["detailed_report"] == "Stub reply."
    assert body["alert_emitted"] is True

    stored = client.get("/v1/assessments/assess-1")
    assert stored.status_code == 200
    assert stored.json()["score"] == 27


def test_fusion_rejects_negative_score(client_for):
    body = dict(FUSION_BODY, voice_analysis={"emotion_score": -1})

    response = client_for().post("/v1/fusion", json=body)

    assert response.status_code == 422


def test_fusion_rejects_unknown_modality(client_for):
    body = dict(FUSION_BODY, heart_rate_analysis={"emotion_score": 5})

    response = client_for().post("/v1/fusion", json=body)

    assert response.status_code == 422


def test_fusion_without_narrative_key_is_server_error(client_for):
    client = client_for(narrative_api_key=None)

    response = client.post("/v1/fusion", json=FUSION_BODY)

    assert response.status_code == 500
    assert "INTEGRATIONS_API_KEY" in response.json()["error"]
    assert client.get("/v1/assessments/assess-1").status_code == 404


def test_dialogue_turn_returns_reply_and_stage(client_for):
    response = client_for().post(
        "/v1/dialogue/turn",
        json={
            "query": "I have not been sleeping well",
            "conversation_history": [{"role": "assistant", "content": "Hi, how are you?"}],
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["choices"][0]["message"]["content"] == "Stub reply."
    assert body["stage"] == "exploration"
    assert body["assessment_type"] == "PHQ-9"
    assert body["knowledge_used"] == 0


def test_dialogue_turn_requires_query(client_for):
    response = client_for().post("/v1/dialogue/turn", json={"query": ""})

    assert response.status_code == 422


def test_unknown_assessment_is_not_found(client_for):
    response = client_for().get("/v1/assessments/does-not-exist")

    assert response.status_code == 404


def test_dialogue_turn_rejects_filter_characters_in_assessment_type(client_for):
    response = client_for().post(
        "/v1/dialogue/turn",
        json={"query": "hello", "assessment_type": "PHQ-9,is_active.eq.false"},
    )

    assert response.status_code == 422
