"""
TouchGrass Verifier — HTTP API Tests

Coverage:
  - /health reports the target contract
  - /api/verify maps every outcome to its status and body
  - malformed JSON answers with ValidationFailed instead of a schema dump
  - per-IP throttle on /api/verify, body size cap, CORS preflight
  - 503 before the pipeline is initialized
  - /api/farcaster/{address} proxies the lookup result
"""

import os
import sys
from unittest import mock

import pytest
from fastapi.testclient import TestClient

# ── Path setup ────────────────────────────────────────────────────────────────
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import api.main as main
from api.main import app, get_pipeline, get_settings, limiter
from engine.config import VerifierSettings
from engine.errors import AlreadyFinalizedError, EvaluatorTimeoutError
from engine.ledger_committer import CommitResult
from engine.pipeline import VerificationPipeline

TX_HASH   = "0x" + "ab" * 32
IMAGE_URL = "https://cdn.touchgrass.test/proof/42.jpg"
CONTRACT  = "0x" + "ab" * 20


# ─────────────────────────────────────────────────────────────────────────────
# Fakes / Fixtures
# ─────────────────────────────────────────────────────────────────────────────

class FakeEvaluator:
    def __init__(self, answer="YES", error=None):
        self.answer, self.error = answer, error

    def evaluate(self, title, evidence):
        if self.error is not None:
            raise self.error
        return self.answer


class FakeLedger:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def commit(self, challenge_id):
        self.calls.append(challenge_id)
        if self.error is not None:
            raise self.error
        return CommitResult(transaction_hash=TX_HASH, confirmed=True)


@pytest.fixture(autouse=True)
def _reset_app():
    limiter.reset()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


def _install(evaluator=None, ledger=None):
    ledger = ledger or FakeLedger()
    pipeline = VerificationPipeline(evaluator or FakeEvaluator(), ledger, timeout_seconds=5)
    settings = VerifierSettings(
        verifier_private_key="0x" + "4c" * 32,
        contract_address=CONTRACT,
        openrouter_api_key="sk-or-test",
    )
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_settings] = lambda: settings
    return ledger


def _payload(**overrides):
    body = {"challengeId": 42, "title": "Run 5km", "imageUrl": IMAGE_URL}
    body.update(overrides)
    return body


# ─────────────────────────────────────────────────────────────────────────────
# Health
# ─────────────────────────────────────────────────────────────────────────────

class TestHealth:

    def test_health(self, client):
        _install()
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"
        assert r.json()["contract"] == CONTRACT
        assert isinstance(r.json()["timestamp"], int)

    def test_not_initialized(self, client):
        assert client.get("/health").status_code == 503
        assert client.post("/api/verify", json=_payload()).status_code == 503


# ─────────────────────────────────────────────────────────────────────────────
# Verify
# ─────────────────────────────────────────────────────────────────────────────

class TestVerify:

    def test_success(self, client):
        ledger = _install(FakeEvaluator("YES"))
        r = client.post("/api/verify", json=_payload())
        assert r.status_code == 200
        assert r.json() == {"success": True, "txHash": TX_HASH}
        assert ledger.calls == [42]

    def test_rejected(self, client):
        ledger = _install(FakeEvaluator("NO, the image shows 2.1 km"))
        r = client.post("/api/verify", json=_payload())
        assert r.status_code == 400
        assert r.json() == {
            "success":  False,
            "message":  "AI could not verify the objective based on the photo provided.",
            "category": "EvidenceRejected",
        }
        assert ledger.calls == []

    def test_timeout(self, client):
        _install(FakeEvaluator(error=EvaluatorTimeoutError("slow", timeout_seconds=60)))
        r = client.post("/api/verify", json=_payload())
        assert r.status_code == 504
        assert r.json()["category"] == "EvaluatorTimeout"

    def test_already_finalized(self, client):
        _install(ledger=FakeLedger(error=AlreadyFinalizedError("reverted")))
        r = client.post("/api/verify", json=_payload())
        assert r.status_code == 400
        assert r.json()["category"] == "AlreadyFinalized"

    def test_unexpected_error_is_opaque(self, client):
        _install(ledger=FakeLedger(error=RuntimeError("rpc http://10.0.0.5 refused")))
        r = client.post("/api/verify", json=_payload())
        assert r.status_code == 500
        assert r.json()["category"] == "InternalFailure"
        assert "10.0.0.5" not in r.text

    @pytest.mark.parametrize("overrides", [
        {"title": "x" * 501},
        {"challengeId": "abc"},
        {"challengeId": None},
        {"imageUrl": 123},
    ])
    def test_invalid_fields(self, client, overrides):
        ledger = _install()
        r = client.post("/api/verify", json=_payload(**overrides))
        assert r.status_code == 400
        assert r.json()["category"] == "ValidationFailed"
        assert ledger.calls == []

    @pytest.mark.parametrize("content", ["not json", "[1, 2, 3]"])
    def test_malformed_body(self, client, content):
        _install()
        r = client.post("/api/verify", content=content, headers={"content-type": "application/json"})
        assert r.status_code == 400
        assert r.json()["category"] == "ValidationFailed"


# ─────────────────────────────────────────────────────────────────────────────
# Perimeter
# ─────────────────────────────────────────────────────────────────────────────

class TestPerimeter:

    def test_verify_rate_limited_per_ip(self, client):
        _install(FakeEvaluator("NO"))
        limit = int(main.RATE_LIMIT_VERIFY.split("/")[0])
        for _ in range(limit):
            assert client.post("/api/verify", json=_payload()).status_code == 400

        r = client.post("/api/verify", json=_payload())
        assert r.status_code == 429
        assert r.json()["success"] is False
        assert "Too many verification attempts" in r.json()["message"]

    def test_body_size_cap(self, client, monkeypatch):
        _install()
        monkeypatch.setattr(main, "MAX_BODY_BYTES", 256)
        r = client.post("/api/verify", json=_payload(imageUrl="data:image/png;base64," + "A" * 1024))
        assert r.status_code == 413
        assert r.json() == {"success": False, "message": "Request body too large"}

    def test_body_size_cap_without_content_length(self, client, monkeypatch):
        """A chunked upload is capped on the bytes received, not the headers."""
        ledger = _install()
        monkeypatch.setattr(main, "MAX_BODY_BYTES", 100)

        def chunks():
            yield b'{"challengeId": 42, "title": "Run 5km", "imageUrl": "'
            for _ in range(50):
                yield b"A" * 100
            yield b'"}'

        r = client.post(
            "/api/verify", content=chunks(), headers={"content-type": "application/json"}
        )
        assert r.status_code == 413
        assert r.json() == {"success": False, "message": "Request body too large"}
        assert ledger.calls == []

    def test_small_chunked_body_reaches_pipeline(self, client):
        ledger = _install(FakeEvaluator("YES"))

        def chunks():
            yield b'{"challengeId": 42, "title": "Run 5km", '
            yield b'"imageUrl": "https://cdn.touchgrass.test/proof/42.jpg"}'

        r = client.post(
            "/api/verify", content=chunks(), headers={"content-type": "application/json"}
        )
        assert r.status_code == 200
        assert r.json() == {"success": True, "txHash": TX_HASH}
        assert ledger.calls == [42]

    def test_cors_preflight(self, client):
        origin = main.ALLOWED_ORIGINS[0]
        r = client.options(
            "/api/verify",
            headers={"Origin": origin, "Access-Control-Request-Method": "POST"},
        )
        assert r.status_code == 200
        assert r.headers["access-control-allow-origin"] == origin

    def test_cors_rejects_unknown_origin(self, client):
        r = client.options(
            "/api/verify",
            headers={"Origin": "https://evil.example", "Access-Control-Request-Method": "POST"},
        )
        assert "access-control-allow-origin" not in r.headers


# ─────────────────────────────────────────────────────────────────────────────
# Identity proxy route
# ─────────────────────────────────────────────────────────────────────────────

class TestFarcasterRoute:

    def test_proxies_lookup(self, client, monkeypatch):
        monkeypatch.setenv("NEYNAR_API_KEY", "neynar-key")
        address = "0x" + "12" * 20
        with mock.patch.object(
            main, "lookup_farcaster_profile",
            return_value=(200, {"success": True, "name": "toucher", "avatar": None}),
        ) as lookup:
            r = client.get(f"/api/farcaster/{address}")

        assert r.status_code == 200
        assert r.json()["name"] == "toucher"
        lookup.assert_called_once_with(address, "neynar-key")

    def test_invalid_address(self, client):
        r = client.get("/api/farcaster/not-an-address")
        assert r.status_code == 400
