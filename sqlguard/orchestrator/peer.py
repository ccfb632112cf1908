"""
Peer Analysis Client

Delegates Tier 2 to a remote analysis peer. The request body is an
AnalysisRequest; the peer answers with a Tier2Verdict-shaped JSON object,
optionally wrapped in a {"status": ..., "data": ...} envelope. Security advice
and vulnerability explanations go to their own routes and answer with
{"answer": ..., "sources": [...]}.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..common.schemas import (
    AnalysisRequest,
    GuidanceMode,
    GuidanceResult,
    SourceAttribution,
    Tier2Verdict,
)
from ..common.service_client import ServiceClient
from .tier2 import Tier2Outcome

logger = logging.getLogger("sqlguard.orchestrator.peer")

ANALYZE_PATH = "/api/v1/rag/analyze-sql"
GUIDANCE_PATHS = {
    GuidanceMode.SECURITY_ADVICE: "/api/v1/rag/security-advice",
    GuidanceMode.EXPLAIN_VULNERABILITY: "/api/v1/rag/explain-vulnerability",
}


class PeerAnalysisClient:
    """
    Tier 2 backend backed by a remote peer.

    The peer's base URL doubles as its endpoint id for health tracking, so
    an unhealthy peer is short-circuited by the shared circuit breaker.
    """

    def __init__(
        self,
        base_url: str,
        service_client: ServiceClient,
        api_key: Optional[str] = None,
        max_sources: int = 5,
        timeout: Optional[float] = None,
    ):
        if not base_url:
            raise ValueError("Peer base URL is required")
        self._base_url = base_url.rstrip("/")
        self._service = service_client
        self._api_key = api_key
        self._max_sources = max_sources
        self._timeout = timeout

    @property
    def endpoint(self) -> str:
        return self._base_url

    @property
    def endpoints(self) -> List[str]:
        return [self._base_url]

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": "sqlguard"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
            headers["X-API-Key"] = self._api_key
        return headers

    async def analyze(self, query: str, dialect: Optional[str] = None) -> Tier2Outcome:
        request = AnalysisRequest(
            query=query,
            database_type=dialect,
            max_sources=self._max_sources,
        )
        response = await self._service.request(
            self._base_url,
            "POST",
            f"{self._base_url}{ANALYZE_PATH}",
            payload=request.model_dump(),
            headers=self._headers(),
            timeout=self._timeout,
        )

        if not response.ok:
            logger.warning("Peer analysis failed (%s): %s", response.error_type, response.error)
            return Tier2Outcome.failure(f"{response.error_type}: {response.error}")

        body = self._unwrap(response.data)
        if body is None:
            return Tier2Outcome.failure("Peer reported an error")

        try:
            verdict = Tier2Verdict.model_validate(body)
        except ValidationError as e:
            logger.warning("Invalid peer response: %s", e)
            return Tier2Outcome.failure("Peer response did not match the verdict schema")

        return Tier2Outcome(ok=True, verdict=verdict)

    async def guidance(self, mode: GuidanceMode, question: str) -> GuidanceResult:
        """Ask the peer for security advice or a vulnerability explanation."""
        request = AnalysisRequest(
            query=question,
            context_type=mode.value,
            max_sources=self._max_sources,
        )
        response = await self._service.request(
            self._base_url,
            "POST",
            f"{self._base_url}{GUIDANCE_PATHS[mode]}",
            payload=request.model_dump(),
            headers=self._headers(),
            timeout=self._timeout,
        )

        def failed(error: str) -> GuidanceResult:
            return GuidanceResult(mode=mode, question=question, ok=False, error=error)

        if not response.ok:
            logger.warning("Peer %s failed (%s): %s", mode.value, response.error_type, response.error)
            return failed(f"{response.error_type}: {response.error}")

        body = self._unwrap(response.data)
        answer = body.get("answer") if body else None
        if not isinstance(answer, str) or not answer.strip():
            return failed("Peer response carried no answer")

        sources = []
        for item in body.get("sources") or []:
            # Peers may attach raw excerpts instead of attributions
            try:
                sources.append(SourceAttribution.model_validate(item))
            except ValidationError:
                continue
        return GuidanceResult(mode=mode, question=question, ok=True, answer=answer.strip(), sources=sources)

    @staticmethod
    def _unwrap(body: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(body, dict):
            return None
        if "status" in body and ("data" in body or "error" in body):
            if body.get("status") != "success":
                return None
            data = body.get("data")
            return data if isinstance(data, dict) else None
        return body
