"""Tests for the HTTP surface: proxy contract, cases, analyze and history."""

import os
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from vetddx.api.rate_limit import limiter
from vetddx.api.routes import GENERATION_FAILED_MESSAGE
from vetddx.llm import gateway
from vetddx.llm.client import LLMError
from vetddx.llm.gateway import ModelReply, ModelSelector
from vetddx.main import app, create_app
from vetddx.storage import InMemoryHistoryStore, set_history_store

ENDPOINT = "/api/generate-differentials"

STRUCTURED_REPLY = (
    "## Ranked Differential Diagnoses\n"
    "85% | Canine parvovirus | Unvaccinated puppy\n"
    "## Red Flags\nHypoglycaemia\n"
    "## Treatment Recommendations\nCATEGORY: Fluids\nLRS 60 ml/kg/day"
)

VALID_CASE = {
    "species": "Canine",
    "age": "4 months",
    "sex": "Male",
    "weight": "6 kg",
    "problems": ["Vomiting", "Bloody diarrhoea"],
    "excluded": [],
}


def _gemini(text="ok"):
    return ModelReply(model_id="gemini", model_name="Google Gemini 2.5 Flash", text=text)


def _mimo(text="ok", error=None):
    return ModelReply(model_id="mimo", model_name="Xiaomi MiMo-V2-Flash", text=text, error=error)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def history_store():
    store = InMemoryHistoryStore()
    set_history_store(store)
    return store


# --- Proxy ---

class TestGenerateDifferentials:
    def test_missing_prompt(self, client):
        resp = client.post(ENDPOINT, json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Prompt is required"}

    def test_empty_prompt(self, client):
        resp = client.post(ENDPOINT, json={"prompt": ""})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Prompt is required"}

    def test_no_body(self, client):
        resp = client.post(ENDPOINT)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Prompt is required"}

    def test_invalid_model(self, client):
        resp = client.post(ENDPOINT, json={"prompt": "p", "model": "gpt-4"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid model specified"}

    def test_non_string_prompt(self, client):
        resp = client.post(ENDPOINT, json={"prompt": 1})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Prompt is required"}

    def test_non_string_model(self, client):
        resp = client.post(ENDPOINT, json={"prompt": "p", "model": 5})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid model specified"}

    def test_get_not_allowed(self, client):
        resp = client.get(ENDPOINT)
        assert resp.status_code == 405
        assert resp.json() == {"error": "Method not allowed"}

    def test_options_returns_200(self, client):
        resp = client.options(ENDPOINT)
        assert resp.status_code == 200

    def test_cors_preflight(self, client):
        resp = client.options(ENDPOINT, headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Content-Type",
        })
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://localhost:5173"
        assert "POST" in resp.headers["access-control-allow-methods"]

    def test_default_model_is_gemini(self, client):
        mock_generate = AsyncMock(return_value=[_gemini("## Red Flags\nNone")])
        with patch.object(gateway, "generate", mock_generate):
            resp = client.post(ENDPOINT, json={"prompt": "case"})
        assert resp.status_code == 200
        assert resp.json() == {
            "content": [{
                "type": "text",
                "text": "## Red Flags\nNone",
                "model": "gemini",
                "modelName": "Google Gemini 2.5 Flash",
            }],
            "multiModel": False,
        }
        mock_generate.assert_awaited_once_with("case", ModelSelector.GEMINI)

    def test_upstream_failure_single_model(self, client):
        mock_generate = AsyncMock(side_effect=LLMError("API key not valid"))
        with patch.object(gateway, "generate", mock_generate):
            resp = client.post(ENDPOINT, json={"prompt": "case", "model": "mimo"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "API key not valid"}

    def test_both_partial_failure(self, client):
        replies = [
            _gemini("from gemini"),
            _mimo("Error fetching MiMo response: upstream 503", error="upstream 503"),
        ]
        with patch.object(gateway, "generate", AsyncMock(return_value=replies)):
            resp = client.post(ENDPOINT, json={"prompt": "case", "model": "both"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["multiModel"] is True
        assert [b["model"] for b in body["content"]] == ["gemini", "mimo"]
        assert body["content"][1]["text"] == "Error fetching MiMo response: upstream 503"

    def test_no_cache_headers(self, client):
        resp = client.post(ENDPOINT, json={})
        assert "no-store" in resp.headers["cache-control"]

    def test_unexpected_error_envelope(self):
        client = TestClient(app, raise_server_exceptions=False)
        with patch.object(gateway, "generate", AsyncMock(side_effect=RuntimeError("boom"))):
            resp = client.post(ENDPOINT, json={"prompt": "case"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# --- Cases ---

class TestAnalyzeCase:
    def test_structured_result(self, client):
        mock_generate = AsyncMock(return_value=[_gemini(STRUCTURED_REPLY)])
        with patch.object(gateway, "generate", mock_generate):
            resp = client.post("/api/cases", json={"case": VALID_CASE})
        assert resp.status_code == 200
        body = resp.json()
        assert body["problem_list"] == "Vomiting, Bloody diarrhoea"
        assert body["excluded_list"] == ""
        assert body["multi_model"] is False
        analysis = body["results"][0]["analysis"]
        assert analysis["has_structure"] is True
        assert analysis["differentials"][0]["name"] == "Canine parvovirus"
        assert analysis["treatment_categories"][0]["title"] == "Fluids"

        prompt = mock_generate.await_args.args[0]
        assert "Species: Canine" in prompt

    def test_failed_slot_has_no_analysis(self, client):
        replies = [_gemini(STRUCTURED_REPLY), _mimo("Error fetching MiMo response: x", error="x")]
        with patch.object(gateway, "generate", AsyncMock(return_value=replies)):
            resp = client.post("/api/cases", json={"case": VALID_CASE, "model": "both"})
        body = resp.json()
        assert body["multi_model"] is True
        assert body["results"][0]["analysis"] is not None
        assert body["results"][1]["analysis"] is None
        assert body["results"][1]["error"] == "x"

    def test_no_problems_rejected(self, client):
        case = dict(VALID_CASE, problems=["  "])
        resp = client.post("/api/cases", json={"case": case})
        assert resp.status_code == 400
        assert "At least one problem is required" in resp.json()["error"]

    def test_missing_species_rejected(self, client):
        case = {k: v for k, v in VALID_CASE.items() if k != "species"}
        resp = client.post("/api/cases", json={"case": case})
        assert resp.status_code == 400
        assert "species" in resp.json()["error"]

    def test_invalid_model(self, client):
        resp = client.post("/api/cases", json={"case": VALID_CASE, "model": "nope"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid model specified"}

    def test_upstream_failure(self, client):
        with patch.object(gateway, "generate", AsyncMock(side_effect=LLMError("down"))):
            resp = client.post("/api/cases", json={"case": VALID_CASE})
        assert resp.status_code == 500
        assert resp.json() == {"error": GENERATION_FAILED_MESSAGE}


class TestAnalyzeText:
    def test_normalizes_text(self, client):
        resp = client.post("/api/analyze", json={"text": STRUCTURED_REPLY})
        assert resp.status_code == 200
        body = resp.json()
        assert body["buckets"]["redFlags"] == "Hypoglycaemia"
        assert body["differentials"][0]["percentage"] == 85

    def test_unstructured_text(self, client):
        resp = client.post("/api/analyze", json={"text": "Just some notes"})
        body = resp.json()
        assert body["has_structure"] is False
        assert body["buckets"]["other"] == "Just some notes"


# --- History ---

class TestHistoryRoutes:
    def _save(self, client, **overrides):
        payload = {
            "summary": "Puppy with bloody diarrhoea",
            "species": "Canine",
            "model": "gemini",
            "full_response": {"results": [{"text": "..."}]},
        }
        payload.update(overrides)
        resp = client.post("/api/history", json=payload)
        assert resp.status_code == 200
        return resp.json()

    def test_save_and_get(self, client, history_store):
        saved = self._save(client)
        resp = client.get(f"/api/history/{saved['id']}")
        assert resp.status_code == 200
        assert resp.json()["full_response"] == {"results": [{"text": "..."}]}

    def test_list_newest_first(self, client, history_store):
        first = self._save(client, summary="First")
        second = self._save(client, summary="Second")
        body = client.get("/api/history").json()
        assert body["total"] == 2
        assert [item["id"] for item in body["items"]] == [second["id"], first["id"]]
        assert "full_response" not in body["items"][0]

    def test_search(self, client, history_store):
        self._save(client, summary="Cat with cough", species="Feline")
        self._save(client, summary="Dog with diarrhoea", species="Canine")
        body = client.get("/api/history", params={"search": "feline"}).json()
        assert body["total"] == 1
        assert body["items"][0]["summary"] == "Cat with cough"

    def test_limit_out_of_range(self, client, history_store):
        resp = client.get("/api/history", params={"limit": 0})
        assert resp.status_code == 400

    def test_delete(self, client, history_store):
        saved = self._save(client)
        resp = client.delete(f"/api/history/{saved['id']}")
        assert resp.json() == {"deleted": True, "id": saved["id"]}
        assert client.get(f"/api/history/{saved['id']}").status_code == 404

    def test_missing_record(self, client, history_store):
        resp = client.get("/api/history/999")
        assert resp.status_code == 404
        assert resp.json() == {"error": "History record not found"}
        assert client.delete("/api/history/999").status_code == 404

    def test_summary_too_long(self, client, history_store):
        resp = client.post("/api/history", json={"summary": "x" * 201, "full_response": {}})
        assert resp.status_code == 400


# --- Rate limiting ---

_RATE_LIMIT_VARS = ("RATE_LIMIT_ENABLED", "GENERATE_RATE_LIMIT")


@pytest.fixture
def dotenv_dir(tmp_path, monkeypatch):
    """Run from a directory holding a .env.local that enables rate limiting."""
    (tmp_path / ".env.local").write_text(
        "RATE_LIMIT_ENABLED=true\nGENERATE_RATE_LIMIT=1/minute\n"
    )
    monkeypatch.chdir(tmp_path)
    for name in _RATE_LIMIT_VARS:
        monkeypatch.delenv(name, raising=False)
    try:
        yield tmp_path
    finally:
        for name in _RATE_LIMIT_VARS:
            os.environ.pop(name, None)
        limiter.enabled = False
        limiter.reset()


class TestRateLimit:
    def test_disabled_by_default(self, client):
        with patch.object(gateway, "generate", AsyncMock(return_value=[_gemini()])):
            codes = [client.post(ENDPOINT, json={"prompt": "case"}).status_code for _ in range(3)]
        assert codes == [200, 200, 200]

    def test_enabled_from_dotenv_file(self, dotenv_dir):
        client = TestClient(create_app())
        assert limiter.enabled is True
        with patch.object(gateway, "generate", AsyncMock(return_value=[_gemini()])):
            first = client.post(ENDPOINT, json={"prompt": "case"})
            second = client.post(ENDPOINT, json={"prompt": "case"})
        assert first.status_code == 200
        assert second.status_code == 429
        assert "Rate limit exceeded" in second.json()["error"]
