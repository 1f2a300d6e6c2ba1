"""Client for the remote case and document-intelligence service.

Every capability returns a :class:`DocumentIntelligenceResponse` instead of
raising: transport errors, timeouts and non-2xx responses are all folded into
``success=False`` with an error text, so action handlers decide what a
failure means.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field

from ..core.config import DocumentIntelligenceConfig
from ..core.logger import get_logger

logger = get_logger("providers.document_intelligence")

NOT_ENABLED_ERROR = "Document intelligence is not configured or not enabled"

# Long-running capabilities get their own timeouts
RAG_QUERY_TIMEOUT = 30.0
INVESTIGATION_TIMEOUT = 60.0
CONTRADICTIONS_TIMEOUT = 30.0
AGENT_TIMEOUT = 60.0
HEALTH_TIMEOUT = 10.0


class DocumentIntelligenceResponse(BaseModel):
    """Uniform response envelope for every remote call."""

    success: bool
    data: Any = None
    error: str | None = None
    status_code: int = Field(default=0, description="HTTP status, 0 when no response")


@runtime_checkable
class DocumentIntelligenceService(Protocol):
    """Capabilities the remote-intelligence actions rely on."""

    def is_enabled(self) -> bool: ...

    async def analyze_document(self, document_id: str) -> DocumentIntelligenceResponse: ...

    async def extract_entities(self, case_id: str) -> DocumentIntelligenceResponse: ...

    async def rag_query(
        self, query: str, case_id: str | None = None
    ) -> DocumentIntelligenceResponse: ...

    async def run_investigation(self, case_id: str) -> DocumentIntelligenceResponse: ...

    async def detect_contradictions(self, case_id: str) -> DocumentIntelligenceResponse: ...

    async def classify_document(self, document_id: str) -> DocumentIntelligenceResponse: ...

    async def run_agent(self, agent_name: str, case_id: str) -> DocumentIntelligenceResponse: ...

    async def search_documents(self, query: str) -> DocumentIntelligenceResponse: ...

    async def get_timeline_events(self, case_id: str) -> DocumentIntelligenceResponse: ...


class DocumentIntelligenceClient:
    """httpx implementation of :class:`DocumentIntelligenceService`.

    Example:
        ```python
        client = DocumentIntelligenceClient(config.document_intelligence)
        response = await client.rag_query("Who signed the lease?", case_id="c-1")
        if response.success:
            print(response.data)
        ```
    """

    def __init__(self, config: DocumentIntelligenceConfig | None = None) -> None:
        self.config = config or DocumentIntelligenceConfig()

    def is_configured(self) -> bool:
        return bool(self.config.base_url and self.config.api_key)

    def is_enabled(self) -> bool:
        return self.config.enabled and self.is_configured()

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Client": self.config.client_name,
        }
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
            headers["X-API-Key"] = self.config.api_key
        return headers

    async def request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> DocumentIntelligenceResponse:
        """Send one request to the service and wrap the outcome.

        Args:
            method: HTTP method
            path: Path relative to the configured base URL
            body: JSON body, ignored for GET requests
            timeout: Request timeout, defaults to the configured timeout

        Returns:
            Response envelope; never raises for transport or HTTP errors
        """
        if not self.is_enabled():
            return DocumentIntelligenceResponse(success=False, error=NOT_ENABLED_ERROR, status_code=503)

        url = f"{self.config.base_url}{path}"
        json_body = body if body is not None and method.upper() != "GET" else None

        try:
            async with httpx.AsyncClient(timeout=timeout or self.config.timeout) as client:
                response = await client.request(
                    method.upper(), url, headers=self._headers(), json=json_body
                )
        except httpx.HTTPError as exc:
            logger.warning("Document intelligence %s %s failed: %s", method, path, exc)
            return DocumentIntelligenceResponse(
                success=False, error=str(exc) or type(exc).__name__, status_code=0
            )

        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                data: Any = response.json()
            except ValueError:
                data = response.text
        else:
            data = response.text

        ok = response.is_success
        if not ok:
            logger.warning("Document intelligence %s %s returned %d", method, path, response.status_code)
        return DocumentIntelligenceResponse(
            success=ok,
            data=data,
            status_code=response.status_code,
            error=None if ok else f"HTTP {response.status_code}",
        )

    async def check_health(self) -> DocumentIntelligenceResponse:
        """Probe ``/health``; works whenever the service is configured."""
        if not self.is_configured():
            return DocumentIntelligenceResponse(success=False, error=NOT_ENABLED_ERROR, status_code=503)
        try:
            async with httpx.AsyncClient(timeout=HEALTH_TIMEOUT) as client:
                response = await client.get(f"{self.config.base_url}/health", headers=self._headers())
        except httpx.HTTPError as exc:
            return DocumentIntelligenceResponse(success=False, error=str(exc), status_code=0)
        try:
            data = response.json()
        except ValueError:
            data = {}
        return DocumentIntelligenceResponse(
            success=response.is_success,
            data=data,
            status_code=response.status_code,
            error=None if response.is_success else f"HTTP {response.status_code}",
        )

    async def analyze_document(self, document_id: str) -> DocumentIntelligenceResponse:
        return await self.request("POST", "/analysis/queue", {"document_id": document_id})

    async def extract_entities(self, case_id: str) -> DocumentIntelligenceResponse:
        return await self.request("GET", f"/cases/{quote(case_id, safe='')}/entities")

    async def rag_query(self, query: str, case_id: str | None = None) -> DocumentIntelligenceResponse:
        return await self.request(
            "POST", "/rag-query", {"query": query, "case_id": case_id}, RAG_QUERY_TIMEOUT
        )

    async def run_investigation(self, case_id: str) -> DocumentIntelligenceResponse:
        return await self.request(
            "POST", f"/investigation/{quote(case_id, safe='')}/run", {}, INVESTIGATION_TIMEOUT
        )

    async def detect_contradictions(self, case_id: str) -> DocumentIntelligenceResponse:
        return await self.request(
            "POST",
            f"/investigation/{quote(case_id, safe='')}/detect-contradictions",
            {},
            CONTRADICTIONS_TIMEOUT,
        )

    async def classify_document(self, document_id: str) -> DocumentIntelligenceResponse:
        return await self.request("GET", f"/documents/{quote(document_id, safe='')}/type")

    async def run_agent(self, agent_name: str, case_id: str) -> DocumentIntelligenceResponse:
        path = f"/agents/run/{quote(agent_name, safe='')}/{quote(case_id, safe='')}"
        return await self.request("POST", path, {}, AGENT_TIMEOUT)

    async def search_documents(self, query: str) -> DocumentIntelligenceResponse:
        return await self.request("GET", f"/search-documents?query={quote(query, safe='')}")

    async def get_timeline_events(self, case_id: str) -> DocumentIntelligenceResponse:
        return await self.request("GET", f"/timeline/{quote(case_id, safe='')}/events")
