"""
Security Knowledge Base

Static, in-memory corpus of SQL injection knowledge: attack patterns,
detection rules, best-practice guidance and vulnerable code examples.
Rendered into KnowledgeDocuments at construction time; the corpus is the
retriever's always-available fallback when no document store or embedding
provider is reachable.
"""

from typing import Dict, List, Optional, Tuple

from ..common.schemas import KnowledgeDocument, compute_checksum

DOC_TYPE_PATTERN = "security_pattern"
DOC_TYPE_RULE = "detection_rule"
DOC_TYPE_KNOWLEDGE = "security_knowledge"
DOC_TYPE_EXAMPLE = "vulnerable_example"

KNOWLEDGE_BASE_SOURCE = "knowledge_base"


ATTACK_PATTERNS: List[Dict] = [
    {
        "id": "sqli-union-based",
        "name": "UNION-based SQL Injection",
        "description": "Injection technique using UNION statements to extract data from database",
        "severity": "high",
        "category": "union_based",
        "examples": [
            "' UNION SELECT username, password FROM users--",
            "1' UNION ALL SELECT null, version(), null--",
        ],
        "mitigation": [
            "Use parameterized queries",
            "Implement input validation",
            "Apply least privilege principle",
        ],
    },
    {
        "id": "sqli-boolean-blind",
        "name": "Boolean-based Blind SQL Injection",
        "description": "Injection technique that relies on always-true or always-false "
                       "conditions such as OR '1'='1' to bypass checks or extract data",
        "severity": "medium",
        "category": "boolean_tautology",
        "examples": [
            "' AND 1=1--",
            "' OR 'a'='a'--",
            "' OR '1'='1' --",
        ],
        "mitigation": [
            "Use parameterized queries",
            "Implement proper error handling",
            "Avoid exposing database errors to users",
        ],
    },
    {
        "id": "sqli-time-based",
        "name": "Time-based Blind SQL Injection",
        "description": "Injection technique that uses time delays to infer information",
        "severity": "medium",
        "category": "time_based",
        "examples": [
            "'; WAITFOR DELAY '00:00:05'--",
            "' OR SLEEP(5)--",
        ],
        "mitigation": [
            "Use parameterized queries",
            "Implement query timeouts",
            "Monitor database performance for anomalies",
        ],
    },
    {
        "id": "sqli-error-based",
        "name": "Error-based SQL Injection",
        "description": "Injection technique that leverages database error messages",
        "severity": "high",
        "category": "error_based",
        "examples": [
            "' AND EXTRACTVALUE(1, CONCAT(0x7e, (SELECT version()), 0x7e))--",
        ],
        "mitigation": [
            "Implement proper error handling",
            "Do not expose database errors to users",
            "Use parameterized queries",
        ],
    },
    {
        "id": "sqli-stacked-queries",
        "name": "Stacked Queries SQL Injection",
        "description": "Injection technique using multiple SQL statements",
        "severity": "critical",
        "category": "stacked_query",
        "examples": [
            "'; DROP TABLE users--",
            "'; UPDATE users SET password='hacked' WHERE id=1--",
        ],
        "mitigation": [
            "Disable multiple statement execution",
            "Use database user with minimal privileges",
            "Implement strict input validation",
        ],
    },
]

DETECTION_RULES: List[Dict] = [
    {
        "id": "rule-001",
        "name": "SQL Keywords Detection",
        "description": "Detects common SQL keywords in user input",
        "pattern": r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|UNION)\b",
        "confidence": 0.8,
        "false_positive_rate": 0.15,
        "database_types": ["mysql", "postgresql", "mssql", "oracle", "sqlite"],
    },
    {
        "id": "rule-002",
        "name": "Quote Manipulation",
        "description": "Detects quote-based injection attempts",
        "pattern": r"'(\s)*(OR|AND)\s*'\s*=\s*'",
        "confidence": 0.9,
        "false_positive_rate": 0.05,
        "database_types": ["mysql", "postgresql", "mssql", "oracle", "sqlite"],
    },
    {
        "id": "rule-003",
        "name": "Comment Injection",
        "description": "Detects SQL comment injection patterns",
        "pattern": r"(--|#|/\*[\s\S]*?\*/)",
        "confidence": 0.7,
        "false_positive_rate": 0.2,
        "database_types": ["mysql", "postgresql", "mssql", "oracle"],
    },
    {
        "id": "rule-004",
        "name": "Function-based Injection",
        "description": "Detects database function-based injection attempts",
        "pattern": r"(CONCAT|SUBSTRING|ASCII|CHAR|LENGTH|SLEEP|BENCHMARK|LOAD_FILE)",
        "confidence": 0.85,
        "false_positive_rate": 0.1,
        "database_types": ["mysql", "postgresql", "mssql"],
    },
    {
        "id": "rule-005",
        "name": "UNION Attack Detection",
        "description": "Detects UNION-based SQL injection attempts",
        "pattern": r"UNION\s+(ALL\s+)?SELECT",
        "confidence": 0.95,
        "false_positive_rate": 0.02,
        "database_types": ["mysql", "postgresql", "mssql", "oracle", "sqlite"],
    },
]

SECURITY_KNOWLEDGE: List[Dict] = [
    {
        "id": "sk-001",
        "category": "Input Validation",
        "title": "Comprehensive Input Validation Strategies",
        "description": "Best practices for validating and sanitizing user input to prevent injection attacks",
        "best_practices": [
            "Implement whitelist-based validation",
            "Validate data type, length, format, and range",
            "Implement server-side validation",
            "Log validation failures for security monitoring",
        ],
    },
    {
        "id": "sk-002",
        "category": "Parameterized Queries",
        "title": "Implementing Secure Database Queries",
        "description": "How to implement parameterized queries across different database technologies",
        "best_practices": [
            "Always use parameterized queries or prepared statements",
            "Never concatenate user input directly into SQL strings",
            "Use ORM frameworks that provide built-in protection",
            "Use stored procedures with proper input validation",
        ],
    },
    {
        "id": "sk-003",
        "category": "Access Control",
        "title": "Database Access Control and Privilege Management",
        "description": "Implementing proper access controls and following the principle of least privilege",
        "best_practices": [
            "Create separate database users for different application components",
            "Grant minimum necessary privileges to database users",
            "Implement role-based access control",
            "Regularly audit database user privileges",
        ],
    },
]

VULNERABLE_EXAMPLES: List[Dict] = [
    {
        "id": "ve-001",
        "title": "Login Bypass via SQL Injection",
        "description": "Classic authentication bypass using SQL injection in a login form: "
                       "the password ' OR '1'='1' -- makes the WHERE clause always true",
        "vulnerability_type": "SQL Injection - Authentication Bypass",
        "severity": "critical",
        "code": "query = f\"SELECT * FROM users WHERE username = '{username}' AND password = '{password}'\"",
        "fix": "cursor.execute(\"SELECT * FROM users WHERE username = %s\", (username,)) "
               "then verify the password hash",
    },
    {
        "id": "ve-002",
        "title": "Data Extraction via UNION Injection",
        "description": "Extracting sensitive data using UNION-based SQL injection in a search box",
        "vulnerability_type": "SQL Injection - Data Extraction",
        "severity": "high",
        "code": "query = f\"SELECT id, name, price FROM products WHERE name LIKE '%{term}%'\"",
        "fix": "cursor.execute(\"SELECT id, name, price FROM products WHERE name LIKE %s\", (f\"%{term}%\",))",
    },
    {
        "id": "ve-003",
        "title": "Database Destruction via Stacked Queries",
        "description": "Malicious database operations using stacked query injection, "
                       "e.g. a name of hacker'; DROP TABLE users; --",
        "vulnerability_type": "SQL Injection - Database Manipulation",
        "severity": "critical",
        "code": "query = f\"UPDATE users SET name = '{name}' WHERE id = {user_id}\"",
        "fix": "cursor.execute(\"UPDATE users SET name = %s WHERE id = %s\", (name, user_id))",
    },
]


# ============================================================================
# Rendering
# ============================================================================

def _render_pattern(p: Dict) -> str:
    return (
        f"SQL Injection Pattern: {p['name']}\n"
        f"Description: {p['description']}\n"
        f"Severity: {p['severity']}\n"
        f"Examples: {'; '.join(p['examples'])}\n"
        f"Mitigation: {', '.join(p['mitigation'])}"
    )


def _render_rule(r: Dict) -> str:
    return (
        f"Detection Rule: {r['name']}\n"
        f"Description: {r['description']}\n"
        f"Pattern: {r['pattern']}\n"
        f"Confidence: {r['confidence']} (false positive rate {r['false_positive_rate']})\n"
        f"Databases: {', '.join(r['database_types'])}"
    )


def _render_knowledge(k: Dict) -> str:
    return (
        f"Security Knowledge: {k['title']}\n"
        f"Category: {k['category']}\n"
        f"{k['description']}\n"
        f"Best Practices: {', '.join(k['best_practices'])}"
    )


def _render_example(e: Dict) -> str:
    return (
        f"Vulnerable Code Example: {e['title']}\n"
        f"{e['description']}\n"
        f"Vulnerability: {e['vulnerability_type']}\n"
        f"Code: {e['code']}\n"
        f"Fix: {e['fix']}"
    )


def _document(item_id: str, content: str, metadata: Dict) -> KnowledgeDocument:
    return KnowledgeDocument(
        doc_id=item_id,
        content=content,
        checksum=compute_checksum(content),
        metadata={**metadata, "source": KNOWLEDGE_BASE_SOURCE},
        source_name=KNOWLEDGE_BASE_SOURCE,
    )


def build_static_corpus() -> Tuple[KnowledgeDocument, ...]:
    """Render every knowledge base entry, in a fixed order."""
    docs: List[KnowledgeDocument] = []

    for p in ATTACK_PATTERNS:
        docs.append(_document(p["id"], _render_pattern(p), {
            "type": DOC_TYPE_PATTERN,
            "severity": p["severity"],
            "category": p["category"],
            "name": p["name"],
        }))

    for r in DETECTION_RULES:
        docs.append(_document(r["id"], _render_rule(r), {
            "type": DOC_TYPE_RULE,
            "severity": "medium",
            "category": "detection_rule",
            "name": r["name"],
            "confidence": r["confidence"],
        }))

    for k in SECURITY_KNOWLEDGE:
        docs.append(_document(k["id"], _render_knowledge(k), {
            "type": DOC_TYPE_KNOWLEDGE,
            "severity": "low",
            "category": k["category"],
            "title": k["title"],
        }))

    for e in VULNERABLE_EXAMPLES:
        docs.append(_document(e["id"], _render_example(e), {
            "type": DOC_TYPE_EXAMPLE,
            "severity": e["severity"],
            "category": e["vulnerability_type"],
            "title": e["title"],
        }))

    return tuple(docs)


class SecurityKnowledgeBase:
    """Read-only view over the static corpus"""

    def __init__(self, documents: Optional[Tuple[KnowledgeDocument, ...]] = None):
        self._documents = documents if documents is not None else build_static_corpus()
        self._by_id = {doc.doc_id: doc for doc in self._documents}

    @property
    def documents(self) -> Tuple[KnowledgeDocument, ...]:
        return self._documents

    def __len__(self) -> int:
        return len(self._documents)

    def get(self, doc_id: str) -> Optional[KnowledgeDocument]:
        return self._by_id.get(doc_id)

    def by_type(self, doc_type: str) -> List[KnowledgeDocument]:
        return [doc for doc in self._documents if doc.doc_type == doc_type]

    def by_severity(self, severity: str) -> List[KnowledgeDocument]:
        return [doc for doc in self._documents if doc.severity == severity]

    def rules_for_database(self, database_type: str) -> List[Dict]:
        """Detection rules applicable to a database system."""
        name = database_type.lower()
        return [r for r in DETECTION_RULES if name in r["database_types"]]
