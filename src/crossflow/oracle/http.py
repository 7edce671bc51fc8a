"""
HTTP decision oracle backed by an Ollama-compatible ``/api/generate`` endpoint.
"""

import time

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config.settings import OracleEndpoint
from ..core.interfaces import OracleReply
from ..observability.logging import get_logger
from ..observability.metrics import counter
from ..observability.tracing import trace_span

logger = get_logger(__name__)


class HttpDecisionOracle:
    """
    Asks a hosted language model whether a test flow should be adapted.

    Transport failures are retried; any HTTP error that survives the retries
    is reported as an unsuccessful ``OracleReply`` instead of raising, so the
    flow adapter can treat it like any other oracle refusal.
    """

    def __init__(self, endpoint: OracleEndpoint, http_client: httpx.AsyncClient | None = None):
        self.endpoint = endpoint
        self._http_client = http_client
        self._owned_client = http_client is None

    async def __aenter__(self):
        self._client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._owned_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    @trace_span("oracle.ask")
    async def ask(self, prompt: str) -> OracleReply:
        start = time.perf_counter()
        try:
            text = await self._generate(prompt)
        except httpx.HTTPError as e:
            elapsed = (time.perf_counter() - start) * 1000
            counter("oracle.requests_failed_total").add(1, {"model": self.endpoint.name})
            logger.warning(f"Oracle request failed: {e}", model=self.endpoint.name)
            return OracleReply(
                text="", success=False, error_message=str(e), response_time_ms=elapsed
            )

        elapsed = (time.perf_counter() - start) * 1000
        counter("oracle.requests_total").add(1, {"model": self.endpoint.name})
        return OracleReply(text=text, response_time_ms=elapsed)

    async def _generate(self, prompt: str) -> str:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.endpoint.max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
            reraise=True,
        ):
            with attempt:
                response = await self._client().post(
                    f"{self.endpoint.base_url}/api/generate",
                    json={"model": self.endpoint.name, "prompt": prompt, "stream": False},
                    headers=self._get_headers(),
                )
                response.raise_for_status()
        return response.json().get("response", "")

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.endpoint.timeout),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=2),
            )
        return self._http_client

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.endpoint.api_key:
            headers["Authorization"] = f"Bearer {self.endpoint.api_key}"
        return headers
