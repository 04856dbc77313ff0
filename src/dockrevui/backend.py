"""
Dockrev REST API client.

Thin async wrapper over the Dockrev HTTP API using httpx. The rest of the
package only consumes the typed models from model.py; no response caching
happens here, every call hits the server.

Error Handling:
  - Non-2xx responses raise ApiError built once by ApiError.from_response()
  - Transport failures (connection refused, timeouts, bad URLs) raise
    ApiError with status=None
  - 2xx bodies that are not a JSON object raise ApiError carrying the
    status, so a proxy's HTML page is an error like any other
  - Call sites read ApiError.message instead of re-deriving one from
    arbitrary exception types

Endpoints used:
  - GET  /api/stacks, /api/stacks/{id}
  - GET  /api/services/{id}/candidates
  - PUT  /api/services/{id}/settings
  - POST /api/checks, /api/updates
  - GET  /api/jobs
"""

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from .model import CandidateOption, JobListItem, ServiceSettings, StackDetail, StackListItem

logger = logging.getLogger(__name__)

# Longest response-body excerpt carried into an error message.
MAX_ERROR_DETAIL = 240


class ApiError(Exception):
    """Failure at the network boundary, with a human-readable message."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status

    @classmethod
    def from_response(cls, resp: httpx.Response) -> "ApiError":
        detail = extract_error_detail(resp)
        if detail:
            return cls(f"HTTP {resp.status_code}: {detail}", resp.status_code)
        return cls(f"HTTP {resp.status_code}", resp.status_code)

    @classmethod
    def from_transport(cls, exc: Exception) -> "ApiError":
        if isinstance(exc, httpx.TimeoutException):
            return cls(f"request timed out: {exc}")
        return cls(str(exc) or exc.__class__.__name__)


def extract_error_detail(resp: httpx.Response) -> str:
    """Prefer a JSON "message" field, else the trimmed body text, capped at 240 chars."""
    try:
        text = resp.text
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return ""
    text = text.strip()
    if not text:
        return ""
    try:
        payload = json.loads(text)
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()[:MAX_ERROR_DETAIL]
    return text[:MAX_ERROR_DETAIL]


class DockrevApi:
    """Async client for the Dockrev API."""

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str,
                       body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send one request; the decoded JSON object, or {} for an empty body."""
        url = f"{self.base_url}{path}"
        try:
            resp = await self._client.request(method, url, json=body)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ApiError.from_transport(e) from e
        if not resp.is_success:
            err = ApiError.from_response(resp)
            logger.warning(f"{method} {path} -> {err.message}")
            raise err
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            # Usually an HTML page from a proxy in front of the API.
            logger.warning(f"{method} {path} -> non-JSON body: {e}")
            raise ApiError(f"HTTP {resp.status_code}: response is not JSON", resp.status_code) from e
        if not isinstance(data, dict):
            logger.warning(f"{method} {path} -> JSON {type(data).__name__} instead of an object")
            raise ApiError(f"HTTP {resp.status_code}: unexpected response shape", resp.status_code)
        return data

    async def list_stacks(self) -> List[StackListItem]:
        data = await self._request("GET", "/api/stacks")
        return [StackListItem.from_dict(s) for s in _objects(data, "stacks")]

    async def get_stack(self, stack_id: str) -> StackDetail:
        data = await self._request("GET", f"/api/stacks/{_quote(stack_id)}")
        stack = data.get("stack")
        if not isinstance(stack, dict):
            raise ApiError(f"stack {stack_id} missing from response")
        return StackDetail.from_dict(stack)

    async def list_service_candidates(self, service_id: str) -> List[CandidateOption]:
        data = await self._request("GET", f"/api/services/{_quote(service_id)}/candidates")
        return [CandidateOption.from_dict(o) for o in _objects(data, "candidates")]

    async def put_service_settings(self, service_id: str, settings: ServiceSettings) -> None:
        await self._request("PUT", f"/api/services/{_quote(service_id)}/settings", settings.to_dict())
        logger.info(f"Saved settings for service {service_id}")

    async def trigger_check(self, scope: str, stack_id: Optional[str] = None,
                            service_id: Optional[str] = None) -> str:
        data = await self._request("POST", "/api/checks", {
            "scope": scope,
            "stackId": stack_id,
            "serviceId": service_id,
            "reason": "ui",
        })
        return str(data.get("checkId", ""))

    async def trigger_update(self, scope: str, stack_id: Optional[str] = None,
                             service_id: Optional[str] = None, *, mode: str = "apply",
                             allow_arch_mismatch: bool = False, backup_mode: str = "inherit",
                             target_tag: Optional[str] = None,
                             target_digest: Optional[str] = None) -> str:
        body: Dict[str, Any] = {
            "scope": scope,
            "stackId": stack_id,
            "serviceId": service_id,
            "mode": mode,
            "allowArchMismatch": allow_arch_mismatch,
            "backupMode": backup_mode,
            "reason": "ui",
        }
        if target_tag is not None:
            body["targetTag"] = target_tag
            body["targetDigest"] = target_digest
        data = await self._request("POST", "/api/updates", body)
        job_id = str(data.get("jobId", ""))
        logger.info(f"Update job {job_id} created for {scope} {stack_id}/{service_id}")
        return job_id

    async def list_jobs(self) -> List[JobListItem]:
        data = await self._request("GET", "/api/jobs")
        return [JobListItem.from_dict(j) for j in _objects(data, "jobs")]


def _objects(data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    items = data.get(key) or []
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        raise ApiError(f"unexpected {key!r} field in response")
    return items


def _quote(segment: str) -> str:
    return quote(segment, safe="")
