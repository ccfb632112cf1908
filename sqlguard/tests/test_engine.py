"""
Tests for the Tier 1 Pattern Detection Engine

Covers scoring, recommendations, secure query synthesis and the
multi-vector scan mode.
"""

import pytest


E2E_QUERY = "SELECT * FROM users WHERE id = '1' OR '1'='1' --"


class TestAnalyze:
    """Tests for PatternDetectionEngine.analyze"""

    @pytest.fixture
    def engine(self):
        from sqlguard.detection.engine import PatternDetectionEngine
        return PatternDetectionEngine()

    def test_boolean_tautology_is_vulnerable(self, engine):
        result = engine.analyze("' OR '1'='1'")

        assert result.vulnerable is True
        assert result.score > 20
        assert "boolean_tautology" in result.categories

    def test_e2e_query_scores_high(self, engine):
        from sqlguard.common.schemas import Confidence, Tier

        result = engine.analyze(E2E_QUERY)

        assert result.score >= 50
        assert result.vulnerable is True
        assert "boolean_tautology" in result.categories
        assert "comment_injection" in result.categories
        assert result.tier == Tier.TIER1_ONLY
        assert result.confidence == Confidence.HIGH
        assert result.sources == []

    @pytest.mark.parametrize("query", [
        "hello world",
        "SELECT name FROM users",
        "SELECT * FROM t WHERE id=1",
    ])
    def test_clean_query_scores_zero(self, engine, query):
        from sqlguard.common.schemas import Confidence

        result = engine.analyze(query)

        assert result.score == 0
        assert result.vulnerable is False
        assert result.risk_factors == []
        assert result.recommendations == []
        assert result.confidence == Confidence.HIGH

    def test_threshold_is_strict(self, engine):
        result = engine.analyze("SELECT * FROM t WHERE id='1 OR 1=1'")

        assert result.score == 20
        assert result.vulnerable is False

    def test_risk_factor_records_matched_substring(self, engine):
        result = engine.analyze("SELECT a FROM b UNION SELECT password FROM users")

        factor = next(f for f in result.risk_factors if f.pattern_id == "union_select")
        assert factor.matched.upper() == "UNION SELECT"
        assert factor.severity.value == "high"

    def test_score_is_capped(self, engine):
        query = (
            "1'; DROP TABLE users; TRUNCATE TABLE logs UNION SELECT 1 "
            "OR 1=1 -- /* x */ SLEEP(5) EXEC(xp_cmdshell) CHAR(65) $where ../etc"
        )
        result = engine.analyze(query)

        assert result.score == 100
        assert result.vulnerable is True

    def test_destructive_outweighs_comment(self, engine):
        destructive = engine.analyze("x; DROP TABLE users")
        comment = engine.analyze("x /* note */")

        assert destructive.score > comment.score

    def test_recommendations_follow_categories(self, engine):
        result = engine.analyze("1; DROP TABLE users")

        assert result.recommendations[0] == "Use parameterized queries or prepared statements"
        assert "Apply the principle of least privilege for database users" in result.recommendations
        assert "Enable database audit logging" in result.recommendations
        assert len(result.recommendations) == len(set(result.recommendations))

    def test_recommendations_are_deterministic(self, engine):
        first = engine.analyze(E2E_QUERY).recommendations
        second = engine.analyze(E2E_QUERY).recommendations

        assert first == second

    def test_dialect_adds_weight(self, engine):
        query = "SELECT LOAD_FILE('/etc/passwd')"

        generic = engine.analyze(query)
        mysql = engine.analyze(query, "mysql")

        assert mysql.score > generic.score
        assert "mysql_file_io" in mysql.detected_patterns
        assert mysql.dialect == "mysql"
        assert "Follow mysql-specific security hardening guidance" in mysql.recommendations

    def test_unknown_dialect_uses_generic_checks(self, engine):
        generic = engine.analyze(E2E_QUERY)
        unknown = engine.analyze(E2E_QUERY, "cobol-db")

        assert unknown.score == generic.score
        assert unknown.dialect is None

    def test_secure_alternative_above_remediation_threshold(self, engine):
        result = engine.analyze(E2E_QUERY)

        assert result.secure_alternative == "SELECT * FROM users WHERE id = ? OR ?=?"

    def test_no_secure_alternative_below_threshold(self, engine):
        result = engine.analyze("' OR '1'='1'")

        assert result.score == 40
        assert result.secure_alternative is None

    def test_suspicious_band_confidence_is_low(self, engine):
        from sqlguard.common.schemas import Confidence

        result = engine.analyze("' OR '1'='1'")

        assert result.confidence == Confidence.LOW

    def test_explanation(self, engine):
        assert engine.analyze("plain text").explanation == "No injection signatures matched."
        assert "boolean_tautology" in engine.analyze(E2E_QUERY).explanation


class TestGenerateSecureQuery:
    def test_strips_stacked_destructive_statement(self):
        from sqlguard.detection.engine import generate_secure_query

        secure = generate_secure_query("SELECT * FROM users WHERE name = 'bob'; DROP TABLE users; --")

        assert secure.secure == "SELECT * FROM users WHERE name = ?"
        assert secure.parameters == ["bob"]
        assert secure.original.endswith("--")

    def test_numeric_operands_become_placeholders(self):
        from sqlguard.detection.engine import generate_secure_query

        secure = generate_secure_query("SELECT * FROM t WHERE id = 5 AND age > 18")

        assert secure.secure == "SELECT * FROM t WHERE id = ? AND age > ?"
        assert secure.parameters == ["5", "18"]

    def test_postgresql_placeholders(self):
        from sqlguard.detection.engine import generate_secure_query

        secure = generate_secure_query("SELECT * FROM t WHERE a = 'x' AND b = 2", "postgres")

        assert secure.secure == "SELECT * FROM t WHERE a = $1 AND b = $2"

    def test_mssql_placeholders(self):
        from sqlguard.detection.engine import generate_secure_query

        secure = generate_secure_query("SELECT * FROM t WHERE a = 'x'", "mssql")

        assert secure.secure == "SELECT * FROM t WHERE a = @p1"

    def test_escaped_quote_kept_in_parameter(self):
        from sqlguard.detection.engine import generate_secure_query

        secure = generate_secure_query("SELECT * FROM t WHERE name = 'O''Brien'")

        assert secure.parameters == ["O'Brien"]


class TestScan:
    """Tests for the multi-vector scan mode"""

    @pytest.fixture
    def engine(self):
        from sqlguard.detection.engine import PatternDetectionEngine
        return PatternDetectionEngine()

    def test_xss_scan(self, engine):
        from sqlguard.detection.engine import VULN_XSS

        result = engine.scan("<script>alert(1)</script>", "xss")

        assert result.scan_type == "xss"
        assert result.vulnerabilities
        assert all(v.type == VULN_XSS for v in result.vulnerabilities)
        first = result.vulnerabilities[0]
        assert first.pattern_id == "xss_script_tag"
        assert first.location == "0:25"
        assert "Use Content Security Policy (CSP)" in result.recommendations

    def test_injection_alias(self, engine):
        result = engine.scan("' OR '1'='1'", "sql_injection")

        assert result.scan_type == "injection"
        assert result.vulnerabilities
        # quote_tautology and numeric_tautology are both medium
        assert result.risk_score == 30

    def test_path_input_scan(self, engine):
        result = engine.scan("../../etc/passwd", "input_validation")

        assert result.scan_type == "path-input"
        assert [v.pattern_id for v in result.vulnerabilities] == ["input_path_traversal"]
        assert result.risk_score == 15

    def test_comprehensive_scan_covers_all_vectors(self, engine):
        from sqlguard.detection.engine import VULN_INPUT, VULN_SQL, VULN_XSS

        result = engine.scan("' OR 1=1 <iframe src=x> ../secret")

        types = {v.type for v in result.vulnerabilities}
        assert types == {VULN_SQL, VULN_XSS, VULN_INPUT}
        assert result.risk_score <= 100

    def test_clean_payload(self, engine):
        result = engine.scan("just a normal sentence")

        assert result.is_clean
        assert result.risk_score == 0
        assert result.recommendations == []

    def test_to_dict_serializes_severity(self, engine):
        data = engine.scan("<iframe>", "xss").to_dict()

        assert data["vulnerabilities"][0]["severity"] == "high"
        assert "timestamp" in data

    def test_unknown_scan_type(self, engine):
        from sqlguard.common.errors import InputError

        with pytest.raises(InputError, match="Unknown scan type"):
            engine.scan("x", "quantum")

    def test_non_string_payload(self, engine):
        from sqlguard.common.errors import InputError

        with pytest.raises(InputError):
            engine.scan(42)
