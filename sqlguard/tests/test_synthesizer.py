"""
Tests for ContextAssembler and GenerativeAnalyzer

A model failure must come back as a failure value, never an exception.
"""

import pytest


def _result(doc_id, content, score=0.9, source="in_memory"):
    from sqlguard.common.schemas import KnowledgeDocument, SearchResult, compute_checksum

    doc = KnowledgeDocument(
        doc_id=doc_id,
        content=content,
        checksum=compute_checksum(content),
        metadata={"type": "security_pattern"},
        source_name="knowledge_base",
    )
    return SearchResult(document=doc, score=score, source=source)


class TestContextAssembler:
    def test_joins_content_only(self):
        from sqlguard.retriever.context import SEPARATOR, ContextAssembler

        context = ContextAssembler(max_chars=1000).assemble([
            _result("a", "first", 0.9),
            _result("b", "second", 0.5),
        ])

        assert context.text == "first" + SEPARATOR + "second"
        assert "0.9" not in context.text
        assert "security_pattern" not in context.text

    def test_drops_lowest_ranked_first(self):
        from sqlguard.retriever.context import ContextAssembler

        results = [_result("a", "a" * 40), _result("b", "b" * 40), _result("c", "c" * 40)]
        context = ContextAssembler(max_chars=100).assemble(results)

        assert [r.document.doc_id for r in context.included] == ["a", "b"]
        assert [r.document.doc_id for r in context.dropped] == ["c"]
        assert len(context.text) <= 100

    def test_single_oversized_entry_truncated(self):
        from sqlguard.retriever.context import ContextAssembler

        context = ContextAssembler(max_chars=10).assemble([_result("a", "x" * 50)])

        assert context.text == "x" * 10
        assert len(context.included) == 1

    def test_empty_results(self):
        from sqlguard.retriever.context import ContextAssembler

        context = ContextAssembler().assemble([])

        assert context.is_empty

    def test_invalid_budget(self):
        from sqlguard.retriever.context import ContextAssembler

        with pytest.raises(ValueError):
            ContextAssembler(max_chars=0)


class TestGenerativeAnalyzer:
    """Tests for GenerativeAnalyzer"""

    @pytest.fixture
    def service(self, no_sleep):
        from sqlguard.common.service_client import ServiceClient
        return ServiceClient(retries=0, sleep=no_sleep)

    def test_prompt_template(self):
        from sqlguard.retriever.synthesizer import NO_CONTEXT, GenerativeAnalyzer

        analyzer = GenerativeAnalyzer(None)
        prompt = analyzer.render_prompt("SELECT 1", "", "mysql")

        assert "database query for SQL injection" in prompt
        assert NO_CONTEXT in prompt
        assert "Target query (mysql):" in prompt
        assert "<<<\nSELECT 1\n>>>" in prompt
        assert "Analysis requirements:" in prompt
        assert '"vulnerable"' in prompt

    @pytest.mark.asyncio
    async def test_successful_verdict(self, vulnerable_llm, service):
        from sqlguard.retriever.synthesizer import GenerativeAnalyzer

        analyzer = GenerativeAnalyzer(vulnerable_llm, service_client=service)
        outcome = await analyzer.analyze("' OR '1'='1'", [_result("sqli-boolean-blind", "boolean blind", 0.8)])

        assert outcome.ok
        assert outcome.verdict.vulnerable is True
        assert outcome.verdict.severity == "high"
        assert outcome.verdict.severity_score == 80
        assert [s.document_id for s in outcome.verdict.sources] == ["sqli-boolean-blind"]
        assert outcome.verdict.sources[0].score == pytest.approx(0.8)
        assert [r.document.doc_id for r in outcome.sources] == ["sqli-boolean-blind"]
        assert "boolean blind" in vulnerable_llm.prompts[0]

    @pytest.mark.asyncio
    async def test_generation_settings_bounded(self, vulnerable_llm, service):
        from sqlguard.retriever.synthesizer import SYSTEM_PROMPT, GenerativeAnalyzer

        analyzer = GenerativeAnalyzer(vulnerable_llm, service_client=service,
                                      temperature=5.0, max_output_tokens=100000)
        await analyzer.analyze("SELECT 1", [])

        kwargs = vulnerable_llm.kwargs[0]
        assert kwargs["temperature"] == 1.0
        assert kwargs["max_tokens"] == 4096
        assert kwargs["system"] == SYSTEM_PROMPT

    @pytest.mark.asyncio
    async def test_fenced_json_answer(self, service):
        from conftest import FakeLLM, verdict_json
        from sqlguard.retriever.synthesizer import GenerativeAnalyzer

        llm = FakeLLM(answer="```json\n" + verdict_json(vulnerable=False, severity="none") + "\n```")
        outcome = await GenerativeAnalyzer(llm, service_client=service).analyze("SELECT 1", [])

        assert outcome.ok
        assert outcome.verdict.vulnerable is False
        assert outcome.verdict.severity_score == 0

    @pytest.mark.asyncio
    async def test_provider_error_is_failure_value(self, service):
        from conftest import FakeLLM
        from sqlguard.common.errors import ProviderUnavailable
        from sqlguard.retriever.synthesizer import GenerativeAnalyzer

        llm = FakeLLM(error=ProviderUnavailable("model endpoint down"))
        outcome = await GenerativeAnalyzer(llm, service_client=service).analyze("SELECT 1", [])

        assert outcome.ok is False
        assert outcome.verdict is None
        assert "ProviderUnavailable" in outcome.error

    @pytest.mark.asyncio
    async def test_timeout_is_failure_value(self, service):
        from conftest import FakeLLM
        from sqlguard.retriever.synthesizer import GenerativeAnalyzer

        llm = FakeLLM(answer="{}", delay=1.0)
        analyzer = GenerativeAnalyzer(llm, service_client=service, timeout=0.01)
        outcome = await analyzer.analyze("SELECT 1", [])

        assert outcome.ok is False
        assert "timed out" in outcome.error

    @pytest.mark.asyncio
    async def test_unparseable_answer(self, service):
        from conftest import FakeLLM
        from sqlguard.retriever.synthesizer import GenerativeAnalyzer

        llm = FakeLLM(answer="I think it is probably fine.")
        outcome = await GenerativeAnalyzer(llm, service_client=service).analyze("SELECT 1", [])

        assert outcome.ok is False
        assert outcome.answer_text == "I think it is probably fine."

    @pytest.mark.asyncio
    async def test_unavailable_llm(self, service):
        from sqlguard.retriever.synthesizer import GenerativeAnalyzer

        outcome = await GenerativeAnalyzer(None, service_client=service).analyze("SELECT 1", [])

        assert outcome.ok is False
        assert "unavailable" in outcome.error

    def test_prompt_lists_dialect_rules(self):
        from sqlguard.retriever.knowledge_base import SecurityKnowledgeBase
        from sqlguard.retriever.synthesizer import GenerativeAnalyzer

        rules = SecurityKnowledgeBase().rules_for_database("sqlite")
        prompt = GenerativeAnalyzer(None).render_prompt("SELECT 1", "", "sqlite", rules)

        assert "Detection rules for sqlite:" in prompt
        assert "- Quote Manipulation:" in prompt
        assert "Function-based Injection" not in prompt

    def test_prompt_without_rules_has_no_rules_section(self):
        from sqlguard.retriever.synthesizer import GenerativeAnalyzer

        prompt = GenerativeAnalyzer(None).render_prompt("SELECT 1", "ctx", "mysql")

        assert "Detection rules" not in prompt


class TestGuidance:
    """Free-text security advice and vulnerability explanations"""

    @pytest.fixture
    def service(self, no_sleep):
        from sqlguard.common.service_client import ServiceClient
        return ServiceClient(retries=0, sleep=no_sleep)

    @pytest.mark.asyncio
    async def test_security_advice(self, service):
        from conftest import FakeLLM
        from sqlguard.retriever.synthesizer import GUIDANCE_SYSTEM_PROMPT, GenerativeAnalyzer

        llm = FakeLLM(answer="  Use bound parameters everywhere.\n")
        analyzer = GenerativeAnalyzer(llm, service_client=service)
        outcome = await analyzer.guidance(
            "security_advice",
            "How should I protect a login form?",
            [_result("prevention-parameterized", "Prepared statements separate code from data")],
        )

        assert outcome.ok
        assert outcome.answer_text == "Use bound parameters everywhere."
        assert outcome.verdict is None
        assert [r.document.doc_id for r in outcome.sources] == ["prevention-parameterized"]
        assert "Question:\nHow should I protect a login form?" in llm.prompts[0]
        assert "Prepared statements separate code from data" in llm.prompts[0]
        assert llm.kwargs[0]["system"] == GUIDANCE_SYSTEM_PROMPT

    @pytest.mark.asyncio
    async def test_explain_vulnerability_template(self, service):
        from conftest import FakeLLM
        from sqlguard.retriever.synthesizer import NO_CONTEXT, GenerativeAnalyzer

        llm = FakeLLM(answer="Blind injection infers data one bit at a time.")
        outcome = await GenerativeAnalyzer(llm, service_client=service).guidance(
            "explain_vulnerability", "time-based blind injection", []
        )

        assert outcome.ok
        assert "Concept:\ntime-based blind injection" in llm.prompts[0]
        assert NO_CONTEXT in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_unknown_mode_rejected(self, service):
        from sqlguard.retriever.synthesizer import GenerativeAnalyzer

        with pytest.raises(ValueError):
            await GenerativeAnalyzer(None, service_client=service).guidance("write_exploit", "x", [])

    @pytest.mark.asyncio
    async def test_empty_answer_is_failure_value(self, service):
        from conftest import FakeLLM
        from sqlguard.retriever.synthesizer import GenerativeAnalyzer

        outcome = await GenerativeAnalyzer(FakeLLM(answer="   "), service_client=service).guidance(
            "security_advice", "question", []
        )

        assert outcome.ok is False
        assert "empty" in outcome.error

    @pytest.mark.asyncio
    async def test_provider_error_is_failure_value(self, service):
        from conftest import FakeLLM
        from sqlguard.common.errors import ProviderUnavailable
        from sqlguard.retriever.synthesizer import GenerativeAnalyzer

        llm = FakeLLM(error=ProviderUnavailable("model endpoint down"))
        outcome = await GenerativeAnalyzer(llm, service_client=service).guidance(
            "explain_vulnerability", "union injection", []
        )

        assert outcome.ok is False
        assert "ProviderUnavailable" in outcome.error

    @pytest.mark.asyncio
    async def test_unavailable_llm(self, service):
        from sqlguard.retriever.synthesizer import GenerativeAnalyzer

        outcome = await GenerativeAnalyzer(None, service_client=service).guidance(
            "security_advice", "question", []
        )

        assert outcome.ok is False
        assert "unavailable" in outcome.error


class TestTier2Verdict:
    def test_unknown_severity_normalized(self):
        from sqlguard.common.schemas import Tier2Verdict

        assert Tier2Verdict(vulnerable=True, severity="SEVERE").severity == "none"

    def test_vulnerable_verdict_never_maps_below_threshold(self):
        from sqlguard.common.schemas import Tier2Verdict

        assert Tier2Verdict(vulnerable=True, severity="none").severity_score == 55
        assert Tier2Verdict(vulnerable=True, severity="low").severity_score == 30

    def test_safe_verdict_maps_to_zero(self):
        from sqlguard.common.schemas import Tier2Verdict

        assert Tier2Verdict(vulnerable=False, severity="critical").severity_score == 0
