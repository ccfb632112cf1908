"""
Configuration Management for SQLGuard

Loads configuration from ~/.sqlguard/config.json, a local .env file and
environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field

from dotenv import load_dotenv

logger = logging.getLogger("sqlguard.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".sqlguard"
CONFIG_PATH = CONFIG_DIR / "config.json"


@dataclass
class DetectionConfig:
    """Tier 1 pattern engine configuration"""
    max_query_length: int = 10000
    remediation_threshold: int = 40  # secure alternative synthesized above this score


@dataclass
class RoutingConfig:
    """Tier 2 escalation configuration"""
    tier2_enabled: bool = True
    escalation_length: int = 500
    suspicious_min_score: int = 21
    suspicious_max_score: int = 49
    tier2_budget: float = 8.0  # seconds, whole Tier-2 pass


@dataclass
class RetrieverConfig:
    """Knowledge retrieval configuration"""
    topk: int = 5
    score_threshold: float = 0.1
    blend_weight: float = 0.3  # lexical share of the hybrid score
    chunk_size: int = 1000
    chunk_overlap: int = 200
    store_enabled: bool = True
    max_context_chars: int = 6000


@dataclass
class EmbeddingConfig:
    """Embedding model configuration"""
    mode: str = "femb"  # fastembed (on-device)
    model: str = "sentence-transformers/all-MiniLM-L6-v2"
    openai_api_key: str = ""


@dataclass
class LLMConfig:
    """Generative model provider configuration"""
    provider: str = "anthropic"
    model: str = ""  # overrides the per-provider default below
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    google_api_key: str = ""
    google_model: str = "gemini-2.0-flash-exp"
    temperature: float = 0.2
    max_output_tokens: int = 1024


@dataclass
class ServiceConfig:
    """Resilient call wrapper configuration"""
    timeout: float = 10.0
    retries: int = 2
    backoff_base: float = 0.5
    failure_threshold: int = 5
    cooldown: float = 30.0


@dataclass
class BatchConfig:
    """Batch analysis configuration"""
    max_concurrency: int = 4
    deadline: float = 30.0
    max_batch_size: int = 100


@dataclass
class PeerConfig:
    """Remote analysis peer. Empty endpoint means Tier 2 runs in-process."""
    endpoint: str = ""
    api_key: str = ""


@dataclass
class SQLGuardConfig:
    """Main SQLGuard configuration"""
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    retriever: RetrieverConfig = field(default_factory=RetrieverConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    peer: PeerConfig = field(default_factory=PeerConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_section(cls, data: dict):
    """Build a section dataclass from a dict, ignoring unknown keys."""
    defaults = cls()
    known = {name: data[name] for name in defaults.__dataclass_fields__ if name in data}
    return cls(**{**defaults.__dict__, **known})


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# env var -> (section, attribute, converter)
_ENV_OVERRIDES = {
    "SQLGUARD_MAX_QUERY_LENGTH": ("detection", "max_query_length", int),
    "SQLGUARD_REMEDIATION_THRESHOLD": ("detection", "remediation_threshold", int),
    "SQLGUARD_TIER2_ENABLED": ("routing", "tier2_enabled", _as_bool),
    "SQLGUARD_ESCALATION_LENGTH": ("routing", "escalation_length", int),
    "SQLGUARD_TIER2_BUDGET": ("routing", "tier2_budget", float),
    "SQLGUARD_SUSPICIOUS_MIN_SCORE": ("routing", "suspicious_min_score", int),
    "SQLGUARD_SUSPICIOUS_MAX_SCORE": ("routing", "suspicious_max_score", int),
    "SQLGUARD_TOPK": ("retriever", "topk", int),
    "SQLGUARD_SCORE_THRESHOLD": ("retriever", "score_threshold", float),
    "SQLGUARD_BLEND_WEIGHT": ("retriever", "blend_weight", float),
    "SQLGUARD_STORE_ENABLED": ("retriever", "store_enabled", _as_bool),
    "SQLGUARD_MAX_CONTEXT_CHARS": ("retriever", "max_context_chars", int),
    "SQLGUARD_CHUNK_SIZE": ("retriever", "chunk_size", int),
    "SQLGUARD_CHUNK_OVERLAP": ("retriever", "chunk_overlap", int),
    "EMBEDDING_MODE": ("embedding", "mode", str),
    "EMBEDDING_MODEL": ("embedding", "model", str),
    "SQLGUARD_LLM_PROVIDER": ("llm", "provider", str),
    "SQLGUARD_LLM_MODEL": ("llm", "model", str),
    "SQLGUARD_LLM_TEMPERATURE": ("llm", "temperature", float),
    "SQLGUARD_LLM_MAX_TOKENS": ("llm", "max_output_tokens", int),
    "ANTHROPIC_MODEL": ("llm", "anthropic_model", str),
    "OPENAI_MODEL": ("llm", "openai_model", str),
    "GOOGLE_MODEL": ("llm", "google_model", str),
    "SQLGUARD_SERVICE_TIMEOUT": ("service", "timeout", float),
    "SQLGUARD_SERVICE_RETRIES": ("service", "retries", int),
    "SQLGUARD_BACKOFF_BASE": ("service", "backoff_base", float),
    "SQLGUARD_FAILURE_THRESHOLD": ("service", "failure_threshold", int),
    "SQLGUARD_COOLDOWN": ("service", "cooldown", float),
    "SQLGUARD_BATCH_CONCURRENCY": ("batch", "max_concurrency", int),
    "SQLGUARD_BATCH_DEADLINE": ("batch", "deadline", float),
    "SQLGUARD_MAX_BATCH_SIZE": ("batch", "max_batch_size", int),
    "SQLGUARD_PEER_ENDPOINT": ("peer", "endpoint", str),
}

# Secrets: tracked so save_config() never writes them to disk
_ENV_SECRETS = {
    "ANTHROPIC_API_KEY": ("llm", "anthropic_api_key"),
    "OPENAI_API_KEY": ("llm", "openai_api_key"),
    "GOOGLE_API_KEY": ("llm", "google_api_key"),
    "GEMINI_API_KEY": ("llm", "google_api_key"),
    "SQLGUARD_PEER_API_KEY": ("peer", "api_key"),
}


def load_config() -> SQLGuardConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (including a local .env file)
    2. Config file (~/.sqlguard/config.json)
    3. Default values
    """
    load_dotenv()
    config = SQLGuardConfig()

    # Load from config file if exists
    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.detection = _parse_section(DetectionConfig, data.get("detection", {}))
            config.routing = _parse_section(RoutingConfig, data.get("routing", {}))
            config.retriever = _parse_section(RetrieverConfig, data.get("retriever", {}))
            config.embedding = _parse_section(EmbeddingConfig, data.get("embedding", {}))
            config.llm = _parse_section(LLMConfig, data.get("llm", {}))
            config.service = _parse_section(ServiceConfig, data.get("service", {}))
            config.batch = _parse_section(BatchConfig, data.get("batch", {}))
            config.peer = _parse_section(PeerConfig, data.get("peer", {}))
        except (json.JSONDecodeError, IOError, TypeError) as e:
            logger.warning("Failed to load config file %s: %s", CONFIG_PATH, e)

    for env_var, (section, attr, convert) in _ENV_OVERRIDES.items():
        val = os.getenv(env_var)
        if not val:
            continue
        try:
            setattr(getattr(config, section), attr, convert(val))
        except ValueError:
            logger.warning("Ignoring invalid value for %s: %r", env_var, val)

    for env_var, (section, attr) in _ENV_SECRETS.items():
        val = os.getenv(env_var)
        if val:
            setattr(getattr(config, section), attr, val)
            config._env_sourced_keys.add(f"{section}.{attr}")

    # Embeddings share the OpenAI key unless one is set explicitly
    if not config.embedding.openai_api_key:
        config.embedding.openai_api_key = config.llm.openai_api_key

    return config


def save_config(config: SQLGuardConfig) -> None:
    """Save configuration to file.

    Secret fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    data = {}
    for section in ("detection", "routing", "retriever", "embedding",
                    "llm", "service", "batch", "peer"):
        values = dict(getattr(config, section).__dict__)
        for key in list(values):
            if f"{section}.{key}" in env_sourced:
                values[key] = ""
        data[section] = values

    # Derived from the LLM key at load time, never stored separately
    if "llm.openai_api_key" in env_sourced:
        data["embedding"]["openai_api_key"] = ""

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)
