"""
Detection Patterns

Signature sets used by the pattern detection engine, built once at import
time into immutable, ordered tuples of tagged records. Each record carries
its own category, severity and score weight, so nothing downstream has to
inspect the regex itself.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Pattern, Tuple

from ..common.schemas import Severity


# Score increments per match, largest for destructive operations
WEIGHT_DESTRUCTIVE = 30
WEIGHT_UNION = 25
WEIGHT_LOGIC = 20
WEIGHT_SUSPICIOUS = 15

# Attack vectors, used to select patterns for multi-vector scans
VECTOR_SQL = "sql"
VECTOR_XSS = "xss"
VECTOR_INPUT = "input"

# Pattern categories
CAT_DESTRUCTIVE = "destructive_operation"
CAT_STACKED = "stacked_query"
CAT_UNION = "union_based"
CAT_TAUTOLOGY = "boolean_tautology"
CAT_COMMENT = "comment_injection"
CAT_TIME = "time_based"
CAT_ERROR = "error_based"
CAT_EXEC = "command_execution"
CAT_FUNCTION = "function_abuse"
CAT_NOSQL = "nosql_injection"
CAT_SHELL = "command_injection"
CAT_PATH = "path_traversal"
CAT_XSS = "xss"
CAT_FILE = "file_access"
CAT_INCLUSION = "file_inclusion"


@dataclass(frozen=True)
class DetectionPattern:
    """A single compiled signature"""
    id: str
    matcher: Pattern[str]
    category: str
    severity: Severity
    weight: int
    description: str
    vector: str = VECTOR_SQL

    def search(self, text: str) -> Optional[re.Match]:
        return self.matcher.search(text)


def _p(
    pattern_id: str,
    regex: str,
    category: str,
    severity: Severity,
    weight: int,
    description: str,
    vector: str = VECTOR_SQL,
    flags: int = re.IGNORECASE,
) -> DetectionPattern:
    return DetectionPattern(
        id=pattern_id,
        matcher=re.compile(regex, flags),
        category=category,
        severity=severity,
        weight=weight,
        description=description,
        vector=vector,
    )


def build_pattern_set(patterns: Iterable[DetectionPattern]) -> Tuple[DetectionPattern, ...]:
    """Freeze patterns into an ordered tuple, rejecting duplicate ids."""
    frozen = tuple(patterns)
    seen = set()
    for pattern in frozen:
        if pattern.id in seen:
            raise ValueError(f"Duplicate detection pattern id: {pattern.id}")
        seen.add(pattern.id)
    return frozen


# ============================================================================
# Query analysis signatures (ordered)
# ============================================================================

ANALYSIS_PATTERNS: Tuple[DetectionPattern, ...] = build_pattern_set([
    # Destructive and stacked statements
    _p("destructive_ddl", r"\b(?:DROP|DELETE)\s+(?:TABLE|DATABASE|SCHEMA)\b",
       CAT_DESTRUCTIVE, Severity.CRITICAL, WEIGHT_DESTRUCTIVE,
       "Potentially destructive SQL operation detected"),
    _p("truncate_table", r"\bTRUNCATE\s+TABLE\b",
       CAT_DESTRUCTIVE, Severity.CRITICAL, WEIGHT_DESTRUCTIVE,
       "Table truncation detected"),
    _p("stacked_statement",
       r";\s*(?:DROP|DELETE|INSERT|UPDATE|CREATE|ALTER|TRUNCATE|EXEC(?:UTE)?)\b",
       CAT_STACKED, Severity.CRITICAL, WEIGHT_DESTRUCTIVE,
       "Stacked query following a statement separator"),

    # UNION-based extraction
    _p("union_select", r"\bUNION\s+(?:ALL\s+)?SELECT\b",
       CAT_UNION, Severity.HIGH, WEIGHT_UNION,
       "UNION-based SQL injection pattern detected"),

    # Boolean logic manipulation
    _p("quote_tautology", r"'\s*(?:OR|AND)\s+(?:'[^']*'|\d+)\s*=\s*(?:'[^']*|\d+)",
       CAT_TAUTOLOGY, Severity.MEDIUM, WEIGHT_LOGIC,
       "Quote-breaking boolean condition detected"),
    _p("numeric_tautology", r"\b(?:OR|AND)\s+'?\d+'?\s*=\s*'?\d+'?",
       CAT_TAUTOLOGY, Severity.MEDIUM, WEIGHT_LOGIC,
       "Numeric boolean condition detected"),
    _p("string_tautology", r"\b(?:OR|AND)\s+(['\"])[A-Za-z_]\w*\1\s*=\s*(['\"])\w+\2",
       CAT_TAUTOLOGY, Severity.MEDIUM, WEIGHT_LOGIC,
       "String boolean condition detected"),

    # Comment injection
    _p("line_comment", r"--(?:\s|$)",
       CAT_COMMENT, Severity.LOW, WEIGHT_SUSPICIOUS,
       "SQL line comment truncating the statement"),
    _p("block_comment", r"/\*.*?\*/",
       CAT_COMMENT, Severity.LOW, WEIGHT_SUSPICIOUS,
       "SQL block comment detected", flags=re.IGNORECASE | re.DOTALL),
    _p("hash_comment", r"'\s*#",
       CAT_COMMENT, Severity.LOW, WEIGHT_SUSPICIOUS,
       "MySQL hash comment after a closing quote"),

    # Blind and error-based
    _p("time_delay", r"\b(?:SLEEP|BENCHMARK|PG_SLEEP)\s*\(|\bWAITFOR\s+DELAY\b",
       CAT_TIME, Severity.HIGH, WEIGHT_SUSPICIOUS,
       "Time-based blind SQL injection primitive"),
    _p("error_function", r"\b(?:EXTRACTVALUE|UPDATEXML|CAST|CONVERT)\s*\(",
       CAT_ERROR, Severity.MEDIUM, WEIGHT_SUSPICIOUS,
       "Type conversion function usable for error-based extraction"),

    # Execution and function abuse
    _p("exec_call", r"\b(?:EXEC|EXECUTE)\s*\(|\bxp_cmdshell\b",
       CAT_EXEC, Severity.HIGH, WEIGHT_SUSPICIOUS,
       "Dynamic execution or command shell invocation"),
    _p("string_function",
       r"\b(?:CONCAT|SUBSTRING|ASCII|CHAR|LENGTH|LOAD_FILE)\s*\(|\bINTO\s+(?:OUT|DUMP)FILE\b",
       CAT_FUNCTION, Severity.LOW, WEIGHT_SUSPICIOUS,
       "String or file function commonly used in injection payloads"),
    _p("nosql_operator", r"\$(?:where|ne|gt|lt|regex|in|nin)\b",
       CAT_NOSQL, Severity.MEDIUM, WEIGHT_SUSPICIOUS,
       "MongoDB query operator in input"),

    # Non-SQL vectors riding in the same input
    _p("shell_command",
       r"(?:;|\|\||\||&&|`|\$\()\s*(?:rm|cat|curl|wget|nc|netcat|bash|sh|powershell|whoami|ping|nslookup)\b",
       CAT_SHELL, Severity.HIGH, WEIGHT_SUSPICIOUS,
       "Shell command chained into input", vector=VECTOR_INPUT),
    _p("path_traversal", r"\.\.[\\/]",
       CAT_PATH, Severity.MEDIUM, WEIGHT_SUSPICIOUS,
       "Directory traversal sequence", vector=VECTOR_INPUT),
    _p("xss_markup", r"<script\b|<[^>]+\bon\w+\s*=|javascript\s*:",
       CAT_XSS, Severity.MEDIUM, WEIGHT_SUSPICIOUS,
       "Script markup or event handler in input", vector=VECTOR_XSS),
])


# ============================================================================
# Dialect-specific primitives (extra weight when the dialect is known)
# ============================================================================

DIALECT_PATTERNS: Dict[str, Tuple[DetectionPattern, ...]] = {
    "mysql": build_pattern_set([
        _p("mysql_file_io", r"\bLOAD_FILE\b|\bINTO\s+OUTFILE\b|\bDUMPFILE\b",
           CAT_FILE, Severity.HIGH, 25, "MySQL file system access"),
    ]),
    "postgresql": build_pattern_set([
        _p("postgresql_file_io",
           r"\bCOPY\b[^;]*\b(?:PROGRAM|TO|FROM)\s+'|\bpg_(?:read_file|read_binary_file|ls_dir)\s*\(",
           CAT_FILE, Severity.HIGH, 25, "PostgreSQL file or program access"),
    ]),
    "mssql": build_pattern_set([
        _p("mssql_command_exec", r"\bxp_cmdshell\b|\bOPENROWSET\b|\bOPENDATASOURCE\b|\bsp_oacreate\b",
           CAT_EXEC, Severity.CRITICAL, 30, "SQL Server command execution or ad hoc remote access"),
    ]),
    "sqlite": build_pattern_set([
        _p("sqlite_extension", r"\bload_extension\s*\(|\bATTACH\s+DATABASE\b",
           CAT_FILE, Severity.HIGH, 25, "SQLite extension loading or database attachment"),
    ]),
}

DIALECT_ALIASES = {
    "postgres": "postgresql",
    "pg": "postgresql",
    "sqlserver": "mssql",
    "tsql": "mssql",
    "mariadb": "mysql",
    "sqlite3": "sqlite",
}


def normalize_dialect(dialect: Optional[str]) -> Optional[str]:
    """Canonical dialect name, or None for missing or unknown dialects."""
    if not dialect:
        return None
    name = dialect.strip().lower()
    name = DIALECT_ALIASES.get(name, name)
    return name if name in DIALECT_PATTERNS else None


# ============================================================================
# Multi-vector scan signatures
# ============================================================================

XSS_SCAN_PATTERNS: Tuple[DetectionPattern, ...] = build_pattern_set([
    _p("xss_script_tag", r"<script\b[^>]*>.*?</script\s*>",
       CAT_XSS, Severity.HIGH, WEIGHT_SUSPICIOUS, "Script tag injection",
       vector=VECTOR_XSS, flags=re.IGNORECASE | re.DOTALL),
    _p("xss_open_script", r"<script\b",
       CAT_XSS, Severity.HIGH, WEIGHT_SUSPICIOUS, "Unclosed script tag",
       vector=VECTOR_XSS),
    _p("xss_iframe", r"<iframe\b",
       CAT_XSS, Severity.HIGH, WEIGHT_SUSPICIOUS, "Iframe injection",
       vector=VECTOR_XSS),
    _p("xss_js_protocol", r"javascript\s*:",
       CAT_XSS, Severity.HIGH, WEIGHT_SUSPICIOUS, "JavaScript protocol URL",
       vector=VECTOR_XSS),
    _p("xss_event_handler", r"\bon\w+\s*=",
       CAT_XSS, Severity.HIGH, WEIGHT_SUSPICIOUS, "Inline event handler attribute",
       vector=VECTOR_XSS),
    _p("xss_img_src", r"<img\b[^>]+\bsrc\b[^>]*>",
       CAT_XSS, Severity.HIGH, WEIGHT_SUSPICIOUS, "Image tag with source attribute",
       vector=VECTOR_XSS),
    _p("xss_object_embed", r"<(?:object|embed)\b",
       CAT_XSS, Severity.HIGH, WEIGHT_SUSPICIOUS, "Object or embed tag abuse",
       vector=VECTOR_XSS),
])

INPUT_SCAN_PATTERNS: Tuple[DetectionPattern, ...] = build_pattern_set([
    _p("input_path_traversal", r"\.\.[\\/]",
       CAT_PATH, Severity.MEDIUM, WEIGHT_SUSPICIOUS, "Directory traversal sequence",
       vector=VECTOR_INPUT),
    _p("input_encoded_traversal", r"%2e%2e(?:%2f|%5c|[\\/])",
       CAT_PATH, Severity.MEDIUM, WEIGHT_SUSPICIOUS, "URL-encoded directory traversal",
       vector=VECTOR_INPUT),
    _p("input_command_separator", r"[;&|`]|\$\(",
       CAT_SHELL, Severity.MEDIUM, WEIGHT_SUSPICIOUS, "Command separator or substitution",
       vector=VECTOR_INPUT),
    _p("input_network_utility", r"\b(?:nc|netcat|telnet|wget|curl|ping|nslookup|dig)\s",
       CAT_SHELL, Severity.MEDIUM, WEIGHT_SUSPICIOUS, "Network utility invocation",
       vector=VECTOR_INPUT),
    _p("input_file_inclusion", r"\b(?:include|require)(?:_once)?\s*\(",
       CAT_INCLUSION, Severity.MEDIUM, WEIGHT_SUSPICIOUS, "File inclusion function",
       vector=VECTOR_INPUT),
    _p("input_dangerous_protocol", r"\bfile://|\bftp://|\bdata:",
       CAT_INCLUSION, Severity.MEDIUM, WEIGHT_SUSPICIOUS, "Dangerous URL protocol",
       vector=VECTOR_INPUT),
])


def _check_global_uniqueness() -> None:
    every = list(ANALYSIS_PATTERNS) + list(XSS_SCAN_PATTERNS) + list(INPUT_SCAN_PATTERNS)
    for dialect_set in DIALECT_PATTERNS.values():
        every.extend(dialect_set)
    build_pattern_set(every)


_check_global_uniqueness()
