"""
SQLGuard Common Module

Shared infrastructure for the detection, retrieval and orchestration layers.
"""

from .config import SQLGuardConfig, load_config
from .embedding_service import EmbeddingService
from .service_client import ServiceClient, ServiceResponse, ServiceHealth, CircuitState

__all__ = [
    "SQLGuardConfig",
    "load_config",
    "EmbeddingService",
    "ServiceClient",
    "ServiceResponse",
    "ServiceHealth",
    "CircuitState",
]
