# =============================================================================
# Integration Tests — HTTP API
# =============================================================================
#
# Runs the FastAPI app in-process with TestClient. Storage, the rate limiter
# and the orchestrator are replaced through app.dependency_overrides so no
# provider key or Redis instance is needed.
# =============================================================================

import re
import time

import pytest
from fastapi.testclient import TestClient

from app.agents.orchestrator import AnalysisOrchestrator
from app.agents.progressive import ProgressiveController
from app.agents.prompts import QUESTION_GENERATION_FUNCTION
from app.api.deps import get_orchestrator, get_progressive_controller
from app.main import app
from app.services.errors import RateLimited
from app.services.kv_store import InMemoryKeyValueStore, get_kv_store
from app.services.llm import FunctionCallResponse
from app.services.rate_limiter import (
    RateLimitConfig,
    RateLimitManager,
    get_rate_limit_manager,
)

HEADERS = {"X-Session-Id": "sess-api", "X-User-Id": "alice"}

DOCUMENTS = [
    ("doc_notes", "notes.pdf", "Miscellaneous notes\nVendor disclosed nothing else."),
    ("doc_title", "title_register.pdf", "Land Registry title register\nVendor disclosed a covenant."),
    ("doc_search", "local_search.pdf", "Local authority search results\nVendor disclosed no notices."),
    ("doc_survey", "survey_report.pdf", "Structural survey report\nVendor disclosed damp."),
    ("doc_ta6", "ta6_form.pdf", "Property Information Form\nVendor disclosed a boundary dispute."),
]


class FakeProvider:
    """Answers every analysis call with one cited finding; `error` overrides."""

    def __init__(self) -> None:
        self.error: Exception | None = None

    async def call_function(self, messages, function, system=None, temperature=None, max_tokens=None):
        if self.error is not None:
            raise self.error
        if function.name == QUESTION_GENERATION_FUNCTION.name:
            return FunctionCallResponse(
                name=function.name, model="fake",
                arguments={"questions": [{
                    "question": "Is the boundary dispute settled?",
                    "category": "legal", "priority": "high", "context": "",
                }]},
            )
        filename = re.search(r"Filename: (.+)", messages[0]["content"]).group(1)
        return FunctionCallResponse(
            name=function.name, model="fake",
            arguments={"findings": [{
                "type": "concern",
                "title": f"Disclosure in {filename}",
                "description": "Follow up with the vendor.",
                "severity": "medium",
                "confidence": 0.7,
                "citations": ["Vendor disclosed"],
            }]},
        )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def client(provider):
    kv = InMemoryKeyValueStore()
    manager = RateLimitManager(RateLimitConfig(
        requests_per_minute=100,
        tokens_per_minute=10_000_000,
        max_concurrent_requests=10,
        max_retries=0,
        backoff_base_seconds=0.01,
        backoff_cap_seconds=0.02,
    ))
    orchestrator = AnalysisOrchestrator(llm=provider, rate_limiter=manager)
    controller = ProgressiveController(kv, orchestrator)

    app.dependency_overrides = {
        get_kv_store: lambda: kv,
        get_rate_limit_manager: lambda: manager,
        get_orchestrator: lambda: orchestrator,
        get_progressive_controller: lambda: controller,
    }
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}


def _upload_all(client: TestClient) -> None:
    for doc_id, filename, text in DOCUMENTS:
        response = client.post(
            "/documents",
            json={"id": doc_id, "filename": filename, "text": text,
                  "quality": {"confidence": 0.9}},
            headers=HEADERS,
        )
        assert response.status_code == 201


# ---------------------------------------------------------------------------
# Health & headers
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_session_header_required(self, client):
        response = client.get("/documents")
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.parametrize("session_id", ["*", "a:b", "sess[1]"])
    def test_unsafe_session_header_rejected(self, client, session_id):
        response = client.get("/documents", headers={"X-Session-Id": session_id})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class TestDocumentsEndpoints:
    def test_store_and_list(self, client):
        _upload_all(client)

        listing = client.get("/documents", headers=HEADERS).json()
        assert [d["id"] for d in listing] == [d[0] for d in DOCUMENTS]
        assert all(d["chunk_count"] == 1 for d in listing)

        document = client.get("/documents/doc_ta6", headers=HEADERS).json()
        assert document["filename"] == "ta6_form.pdf"

    def test_missing_document(self, client):
        response = client.get("/documents/nope", headers=HEADERS)
        assert response.status_code == 404

    def test_stats_and_search(self, client):
        _upload_all(client)

        stats = client.get("/documents/stats", headers=HEADERS).json()
        assert stats["total_documents"] == 5

        search = client.get(
            "/documents/search", params={"q": "boundary"}, headers=HEADERS,
        ).json()
        assert [c["document_id"] for c in search["results"]] == ["doc_ta6"]

    def test_clear(self, client):
        _upload_all(client)
        response = client.delete("/documents", headers=HEADERS)
        assert response.json() == {"session_id": "sess-api", "cleared": True}
        assert client.get("/documents", headers=HEADERS).json() == []


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


class TestAnalyzeEndpoints:
    def test_analyze(self, client):
        _upload_all(client)

        response = client.post(
            "/analyze",
            json={"document_ids": ["doc_ta6", "doc_survey"]},
            headers=HEADERS,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["documents_analyzed"] == 2
        assert len(data["analysis"]["findings"]) == 2
        assert len(data["analysis"]["questions"]) == 1
        assert data["analysis"]["summary"]["documents_analyzed"] == 2

        findings = client.get("/analyze/findings", headers=HEADERS).json()
        assert findings["total"] == 2
        assert len(findings["findings"]["concern"]) == 2

    def test_unknown_documents(self, client):
        response = client.post(
            "/analyze", json={"document_ids": ["doc_missing"]}, headers=HEADERS,
        )
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    def test_empty_document_list(self, client):
        response = client.post("/analyze", json={"document_ids": []}, headers=HEADERS)
        assert response.status_code == 422

    def test_provider_rate_limit(self, client, provider):
        _upload_all(client)
        provider.error = RateLimited(retry_after=None)

        response = client.post(
            "/analyze", json={"document_ids": ["doc_ta6"]}, headers=HEADERS,
        )
        assert response.status_code == 429
        detail = response.json()["detail"]
        assert detail["code"] == "RATE_LIMITED"
        assert "retry_after" in detail
        assert "retry-after" in response.headers

    def test_progressive(self, client):
        _upload_all(client)

        response = client.post(
            "/analyze/progressive",
            json={"document_ids": [d[0] for d in DOCUMENTS]},
            headers=HEADERS,
        )
        assert response.status_code == 202
        data = response.json()
        assert data["session"]["status"] == "partial"
        assert data["session"]["progress"] == 40
        assert data["documents_analyzed"] == 2
        assert data["total_documents"] == 5

        session = None
        for _ in range(100):
            session = client.get("/analyze/sessions/sess-api").json()
            if session["status"] != "partial":
                break
            time.sleep(0.05)

        assert session["status"] == "complete"
        assert session["progress"] == 100
        assert len(session["findings"]) == 5

    def test_progressive_restart_after_completion_rejected(self, client):
        _upload_all(client)
        body = {"document_ids": [d[0] for d in DOCUMENTS]}
        assert client.post("/analyze/progressive", json=body, headers=HEADERS).status_code == 202

        for _ in range(100):
            if client.get("/analyze/sessions/sess-api").json()["status"] != "partial":
                break
            time.sleep(0.05)

        response = client.post("/analyze/progressive", json=body, headers=HEADERS)
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "INVALID_TRANSITION"
        assert client.get("/analyze/sessions/sess-api").json()["status"] == "complete"

    def test_unknown_session(self, client):
        assert client.get("/analyze/sessions/unknown").status_code == 404


# ---------------------------------------------------------------------------
# Rate limit status
# ---------------------------------------------------------------------------


class TestRateLimitStatus:
    def test_status(self, client):
        response = client.get("/rate-limit-status", headers=HEADERS)
        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == "alice"
        assert data["queue_position"] == -1
        assert data["status"]["queue_length"] == 0
        assert "API ready for immediate processing." in data["status"]["recommendations"]
