"""
Tests for the remote analysis peer client and the orchestrator factory.

Peers are simulated with httpx.MockTransport.
"""

import json

import httpx
import pytest

from conftest import FakeEmbeddingService, FakeLLM, verdict_json


PEER_URL = "http://peer.test"

PEER_VERDICT = {
    "vulnerable": True,
    "severity": "critical",
    "attack_types": ["boolean_tautology"],
    "recommendations": ["Use parameterized queries"],
    "explanation": "Tautology bypasses authentication.",
    "sources": [
        {"document_id": "sqli-boolean-blind", "source": "in_memory", "score": 0.72},
    ],
}


def _peer_http(status_code=200, body=None):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, json=PEER_VERDICT if body is None else body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), requests


def _peer(http, api_key=None):
    from sqlguard.common.service_client import ServiceClient
    from sqlguard.orchestrator.peer import PeerAnalysisClient

    async def _no_sleep(delay):
        pass

    service = ServiceClient(retries=2, http_client=http, sleep=_no_sleep)
    return PeerAnalysisClient(PEER_URL + "/", service, api_key=api_key)


class TestPeerAnalysisClient:
    @pytest.mark.asyncio
    async def test_posts_analysis_request(self):
        http, requests = _peer_http()
        peer = _peer(http, api_key="secret")

        outcome = await peer.analyze("' OR '1'='1'", "mysql")

        assert outcome.ok
        assert outcome.verdict.severity_score == 95
        assert outcome.verdict.sources[0].document_id == "sqli-boolean-blind"

        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == "http://peer.test/api/v1/rag/analyze-sql"
        assert request.headers["authorization"] == "Bearer secret"
        assert request.headers["x-api-key"] == "secret"
        assert json.loads(request.content) == {
            "query": "' OR '1'='1'",
            "database_type": "mysql",
            "context_type": "enhanced_analysis",
            "use_ai": True,
            "max_sources": 5,
        }
        await http.aclose()

    @pytest.mark.asyncio
    async def test_unwraps_success_envelope(self):
        http, _ = _peer_http(body={"status": "success", "data": PEER_VERDICT})

        outcome = await _peer(http).analyze("SELECT 1")

        assert outcome.ok
        assert outcome.verdict.vulnerable is True
        await http.aclose()

    @pytest.mark.asyncio
    async def test_error_envelope_is_failure(self):
        http, _ = _peer_http(body={"status": "error", "error": "analysis failed"})

        outcome = await _peer(http).analyze("SELECT 1")

        assert not outcome.ok
        await http.aclose()

    @pytest.mark.asyncio
    async def test_schema_mismatch_is_failure(self):
        http, _ = _peer_http(body={"vulnerable": "perhaps", "sources": [{"score": 7}]})

        outcome = await _peer(http).analyze("SELECT 1")

        assert not outcome.ok
        assert "schema" in outcome.error
        await http.aclose()

    @pytest.mark.asyncio
    async def test_4xx_not_retried(self):
        http, requests = _peer_http(status_code=422, body={"detail": "bad query"})

        outcome = await _peer(http).analyze("SELECT 1")

        assert not outcome.ok
        assert "PeerValidationError" in outcome.error
        assert len(requests) == 1
        await http.aclose()

    @pytest.mark.asyncio
    async def test_5xx_retried_then_failure(self):
        http, requests = _peer_http(status_code=502, body={"detail": "bad gateway"})

        outcome = await _peer(http).analyze("SELECT 1")

        assert not outcome.ok
        assert len(requests) == 3
        await http.aclose()

    @pytest.mark.asyncio
    async def test_security_advice_path_and_body(self):
        from sqlguard.common.schemas import GuidanceMode

        body = {
            "status": "success",
            "data": {
                "answer": "Use prepared statements.",
                "sources": [
                    {"document_id": "prevention-parameterized", "source": "in_memory", "score": 0.8},
                    {"excerpt": "raw text without attribution"},
                ],
            },
        }
        http, requests = _peer_http(body=body)

        result = await _peer(http).guidance(GuidanceMode.SECURITY_ADVICE, "How do I fix a login query?")

        assert result.ok
        assert result.answer == "Use prepared statements."
        assert [s.document_id for s in result.sources] == ["prevention-parameterized"]
        assert str(requests[0].url) == "http://peer.test/api/v1/rag/security-advice"
        sent = json.loads(requests[0].content)
        assert sent["query"] == "How do I fix a login query?"
        assert sent["context_type"] == "security_advice"
        await http.aclose()

    @pytest.mark.asyncio
    async def test_explain_vulnerability_path(self):
        from sqlguard.common.schemas import GuidanceMode

        http, requests = _peer_http(body={"answer": "Stacked queries run a second statement."})

        result = await _peer(http).guidance(GuidanceMode.EXPLAIN_VULNERABILITY, "stacked queries")

        assert result.ok
        assert result.mode == GuidanceMode.EXPLAIN_VULNERABILITY
        assert str(requests[0].url) == "http://peer.test/api/v1/rag/explain-vulnerability"
        await http.aclose()

    @pytest.mark.asyncio
    async def test_guidance_without_answer_is_failure(self):
        from sqlguard.common.schemas import GuidanceMode

        http, _ = _peer_http(body={"status": "success", "data": {"answer": "  "}})

        result = await _peer(http).guidance(GuidanceMode.SECURITY_ADVICE, "question")

        assert not result.ok
        assert "no answer" in result.error
        await http.aclose()

    @pytest.mark.asyncio
    async def test_guidance_http_error_is_failure(self):
        from sqlguard.common.schemas import GuidanceMode

        http, requests = _peer_http(status_code=503, body={"detail": "overloaded"})

        result = await _peer(http).guidance(GuidanceMode.EXPLAIN_VULNERABILITY, "union injection")

        assert not result.ok
        assert len(requests) == 3
        await http.aclose()

    def test_requires_base_url(self):
        from sqlguard.common.service_client import ServiceClient
        from sqlguard.orchestrator.peer import PeerAnalysisClient

        with pytest.raises(ValueError):
            PeerAnalysisClient("", ServiceClient())


class TestBuildOrchestrator:
    """Tests for build_orchestrator wiring"""

    @pytest.mark.asyncio
    async def test_peer_backend(self):
        from sqlguard.common.config import SQLGuardConfig
        from sqlguard.common.schemas import Confidence, Tier
        from sqlguard.orchestrator.factory import build_orchestrator
        from sqlguard.orchestrator.peer import PeerAnalysisClient

        http, requests = _peer_http()
        config = SQLGuardConfig()
        config.peer.endpoint = PEER_URL

        orchestrator = build_orchestrator(config, embedding_service=FakeEmbeddingService(), http_client=http)
        result = await orchestrator.analyze("' OR '1'='1'")

        assert isinstance(orchestrator._tier2, PeerAnalysisClient)
        assert result.tier == Tier.TIER1_TIER2
        assert result.score == 95
        assert result.confidence == Confidence.HIGH
        assert [s.document_id for s in result.sources] == ["sqli-boolean-blind"]
        assert set(orchestrator.health_check()) == {PEER_URL}
        assert len(requests) == 1
        await http.aclose()

    @pytest.mark.asyncio
    async def test_unreachable_peer_falls_back(self):
        from sqlguard.common.config import SQLGuardConfig
        from sqlguard.common.schemas import Tier
        from sqlguard.orchestrator.factory import build_orchestrator

        http, _ = _peer_http(status_code=400)
        config = SQLGuardConfig()
        config.peer.endpoint = PEER_URL

        orchestrator = build_orchestrator(config, embedding_service=FakeEmbeddingService(), http_client=http)
        result = await orchestrator.analyze("' OR '1'='1'")

        assert result.tier == Tier.TIER1_FALLBACK
        await http.aclose()

    @pytest.mark.asyncio
    async def test_in_process_backend(self):
        from sqlguard.common.config import SQLGuardConfig
        from sqlguard.common.schemas import Tier
        from sqlguard.orchestrator.factory import build_orchestrator
        from sqlguard.orchestrator.tier2 import InProcessTier2

        orchestrator = build_orchestrator(
            SQLGuardConfig(),
            embedding_service=FakeEmbeddingService(),
            llm_client=FakeLLM(answer=verdict_json()),
        )
        result = await orchestrator.analyze("' OR '1'='1'")

        assert isinstance(orchestrator._tier2, InProcessTier2)
        assert result.tier == Tier.TIER1_TIER2
        assert set(orchestrator.health_check()) == {"embedding", "store", "model"}
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_knowledge_base_only_mode(self):
        from sqlguard.common.config import SQLGuardConfig
        from sqlguard.common.errors import StoreUnavailableError
        from sqlguard.orchestrator.factory import build_orchestrator

        config = SQLGuardConfig()
        config.retriever.store_enabled = False
        orchestrator = build_orchestrator(
            config,
            embedding_service=FakeEmbeddingService(),
            llm_client=FakeLLM(answer=verdict_json()),
        )

        assert set(orchestrator.health_check()) == {"embedding", "model"}
        with pytest.raises(StoreUnavailableError):
            await orchestrator.ingest_document("doc", "content")

    def test_engine_uses_configured_thresholds(self):
        from sqlguard.common.config import SQLGuardConfig
        from sqlguard.orchestrator.factory import build_orchestrator

        config = SQLGuardConfig()
        config.detection.remediation_threshold = 10
        orchestrator = build_orchestrator(
            config,
            embedding_service=FakeEmbeddingService(),
            llm_client=FakeLLM(),
        )

        assert orchestrator._engine.analyze("' OR '1'='1'").secure_alternative is not None

    def test_gemini_alias(self):
        from sqlguard.common.config import LLMConfig
        from sqlguard.orchestrator.factory import build_llm_client

        client = build_llm_client(LLMConfig(provider="gemini"))

        assert client.provider == "google"
        assert client.model == LLMConfig().google_model
        assert not client.is_available

    def test_explicit_model_overrides_provider_default(self):
        from sqlguard.common.config import LLMConfig
        from sqlguard.orchestrator.factory import build_llm_client

        client = build_llm_client(LLMConfig(provider="openai", model="gpt-4.1"))

        assert client.model == "gpt-4.1"

    def test_attempt_timeout_fits_tier2_budget(self):
        from sqlguard.common.config import SQLGuardConfig
        from sqlguard.orchestrator.factory import build_orchestrator

        config = SQLGuardConfig()
        orchestrator = build_orchestrator(
            config,
            embedding_service=FakeEmbeddingService(),
            llm_client=FakeLLM(),
        )
        service = orchestrator._service
        retries = config.service.retries
        schedule = (retries + 1) * service._timeout + sum(service.backoff_delay(a) for a in range(retries))

        assert service._timeout < config.service.timeout
        assert schedule == pytest.approx(config.routing.tier2_budget)
