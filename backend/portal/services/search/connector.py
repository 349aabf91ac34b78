"""Solr connector."""
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from portal.config import settings

logger = structlog.get_logger()

ParamList = List[Tuple[str, Union[str, int]]]


class SearchBackendError(Exception):
    """Search backend could not answer a request."""


class InvalidQueryError(SearchBackendError):
    """The backend rejected the query syntax (HTTP 400 from Solr)."""


class RecordMissingError(SearchBackendError):
    """A requested record does not exist in the index."""


def escape_phrase(value: str) -> str:
    """Escape a value for use inside a quoted Solr phrase."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


class SolrConnector:
    """Talks to one Solr core over HTTP."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        core: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.SOLR_URL).rstrip("/")
        self.core = core or settings.SOLR_CORE
        self.timeout = timeout or settings.SOLR_TIMEOUT
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/{self.core}",
                headers={"Accept": "application/json", "User-Agent": f"{settings.APP_NAME}/{settings.APP_VERSION}"},
                timeout=self.timeout,
                transport=self.transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _get(self, params: ParamList) -> httpx.Response:
        client = await self.get_client()
        return await client.get("/select", params=params)

    async def select(self, params: Sequence[Tuple[str, Any]]) -> Dict[str, Any]:
        """Run a select request and return the decoded response.

        Raises:
            InvalidQueryError: the query could not be parsed
            SearchBackendError: any other backend failure
        """
        params = [(k, v) for k, v in params] + [("wt", "json"), ("json.nl", "arrarr")]
        try:
            response = await self._get(params)
        except httpx.HTTPError as e:
            logger.error("Solr request failed", error=str(e))
            raise SearchBackendError(f"Search backend unavailable: {e}") from e
        if response.status_code == 400:
            logger.info("Solr rejected query", body=response.text[:500])
            raise InvalidQueryError("Invalid search")
        if response.status_code >= 300:
            logger.error("Solr error", status_code=response.status_code)
            raise SearchBackendError(f"Search backend returned HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise SearchBackendError("Search backend returned invalid JSON") from e

    async def retrieve(self, record_id: str) -> Dict[str, Any]:
        """Fetch one document by id.

        Raises:
            RecordMissingError: no document has this id
        """
        data = await self.select([("q", f'id:"{escape_phrase(record_id)}"'), ("rows", 1)])
        docs = data.get("response", {}).get("docs", [])
        if not docs:
            raise RecordMissingError(f"Record {record_id} does not exist")
        return docs[0]

    async def retrieve_batch(self, record_ids: Sequence[str]) -> List[Dict[str, Any]]:
        """Fetch several documents, keeping the requested order and dropping missing ids."""
        ids = [str(i) for i in record_ids if str(i)]
        if not ids:
            return []
        query = " OR ".join(f'"{escape_phrase(i)}"' for i in ids)
        data = await self.select([("q", f"id:({query})"), ("rows", len(ids))])
        by_id = {str(doc.get("id")): doc for doc in data.get("response", {}).get("docs", [])}
        return [by_id[i] for i in ids if i in by_id]


_connector: Optional[SolrConnector] = None


def get_solr_connector() -> SolrConnector:
    """Process-wide connector for the configured core."""
    global _connector
    if _connector is None:
        _connector = SolrConnector()
    return _connector
