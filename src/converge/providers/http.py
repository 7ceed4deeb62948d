"""JSON-over-HTTP provider adapter."""

from typing import Any, Dict, List, Optional
import requests
from .base import Provider, ProviderResult
from ..utils.errors import (
    PermanentProviderError,
    ResourceNotFoundError,
    TransientProviderError,
)
from ..utils.logging import get_logger

logger = get_logger("providers.http")

TRANSIENT_STATUS = {408, 429, 500, 502, 503, 504}


class HttpProvider(Provider):
    """
    Talks to a provider service exposing::

        POST   {endpoint}/resources/{kind}          -> {"id": ..., "outputs": {...}}
        GET    {endpoint}/resources/{kind}/{id}     -> {"outputs": {...}}
        PUT    {endpoint}/resources/{kind}/{id}     -> {"outputs": {...}}
        DELETE {endpoint}/resources/{kind}/{id}
        POST   {endpoint}/data/{kind}/query         -> {"results": [...]}

    Connection errors, timeouts, 408/429 and 5xx are transient; other
    error statuses are permanent; 404 on read means the object is gone.
    """

    name = "http"

    def __init__(self, endpoint: str, timeout: float = 30.0, headers: Optional[Dict[str, str]] = None,
                 session: Optional[requests.Session] = None):
        if not endpoint:
            raise PermanentProviderError("The http provider needs 'provider.endpoint' to be set")
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json", **(headers or {})})

    def create(self, kind: str, attributes: Dict[str, Any]) -> ProviderResult:
        body = self._request("POST", f"/resources/{kind}", json=attributes)
        if "id" not in body:
            raise PermanentProviderError(f"Provider response for create {kind} has no 'id'")
        return ProviderResult(id=str(body["id"]), outputs=body.get("outputs", {}))

    def read(self, kind: str, resource_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/resources/{kind}/{resource_id}").get("outputs", {})

    def update(self, kind: str, resource_id: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"/resources/{kind}/{resource_id}", json=attributes).get("outputs", {})

    def delete(self, kind: str, resource_id: str) -> None:
        try:
            self._request("DELETE", f"/resources/{kind}/{resource_id}")
        except ResourceNotFoundError:
            logger.info(f"{kind} {resource_id} was already gone")

    def query(self, kind: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self._request("POST", f"/data/{kind}/query", json={"filters": filters}).get("results", [])

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.endpoint}{path}"
        try:
            response = self.session.request(method, url, json=json, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientProviderError(f"{method} {url} failed: {e}") from e
        except requests.RequestException as e:
            raise PermanentProviderError(f"{method} {url} failed: {e}") from e

        if response.status_code == 404:
            raise ResourceNotFoundError(f"{method} {url} returned 404")
        if response.status_code in TRANSIENT_STATUS:
            raise TransientProviderError(f"{method} {url} returned {response.status_code}: {response.text[:200]}")
        if response.status_code >= 400:
            raise PermanentProviderError(f"{method} {url} returned {response.status_code}: {response.text[:200]}")

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise PermanentProviderError(f"{method} {url} returned invalid JSON: {e}") from e
