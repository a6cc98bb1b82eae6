"""Authenticated Microsoft Graph request executor.

Every call goes through the session's ``TokenManager`` so a 401 triggers one
refresh and one replay. Failures come back as ``GraphResult`` values rather
than exceptions.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import httpx

from outlook_gateway.services.token_manager import TokenManager
from outlook_gateway.utils.errors import ErrorKind
from outlook_gateway.utils.logging import get_logger

logger = get_logger("graph_client")

NEXT_LINK_KEYS = ("@odata.nextLink", "nextLink")


@dataclass
class GraphError:
    kind: ErrorKind
    status: Optional[int] = None
    body: Any = None

    @property
    def message(self) -> str:
        if self.kind == ErrorKind.AUTH_EXPIRED:
            return "Microsoft authorization expired; re-authorization required"
        if isinstance(self.body, dict):
            error = self.body.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
        return f"Microsoft Graph returned {self.status}"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "status": self.status, "message": self.message}


@dataclass
class GraphResult:
    """Outcome of a Graph call: ``data`` on success, ``error`` otherwise."""

    data: Any = None
    error: Optional[GraphError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, kind: ErrorKind, status: Optional[int] = None, body: Any = None) -> "GraphResult":
        return cls(error=GraphError(kind=kind, status=status, body=body))


def _parse_body(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def next_link(page: Any) -> Optional[str]:
    if not isinstance(page, dict):
        return None
    for key in NEXT_LINK_KEYS:
        if page.get(key):
            return page[key]
    return None


class GraphClient:
    """Sends Graph requests with the session's bearer token."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_manager: TokenManager,
        base_url: str = "https://graph.microsoft.com/v1.0",
    ):
        self.http_client = http_client
        self.token_manager = token_manager
        self.base_url = base_url.rstrip("/") + "/"

    def url_for(self, path: str) -> str:
        """Resolve a Graph path or link against the base URL."""
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return urljoin(self.base_url, path.lstrip("/"))

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> GraphResult:
        url = self.url_for(path)

        async def send(access_token: str) -> httpx.Response:
            request_headers = {
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            }
            if headers:
                request_headers.update(headers)
            return await self.http_client.request(
                method, url, params=params, json=json, headers=request_headers
            )

        try:
            outcome = await self.token_manager.send(send)
        except httpx.HTTPError as e:
            logger.error(f"Graph {method} {url} failed: {e}")
            return GraphResult.failure(ErrorKind.UPSTREAM_ERROR, body=str(e))

        if outcome.error is not None:
            status = outcome.response.status_code if outcome.response is not None else None
            return GraphResult.failure(outcome.error, status=status)

        response = outcome.response
        body = _parse_body(response)
        if not response.is_success:
            logger.warning(f"Graph {method} {url} returned {response.status_code}")
            return GraphResult.failure(ErrorKind.UPSTREAM_ERROR, status=response.status_code, body=body)
        return GraphResult(data=body)

    async def get(self, path: str, **kwargs: Any) -> GraphResult:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> GraphResult:
        return await self.request("POST", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> GraphResult:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> GraphResult:
        return await self.request("DELETE", path, **kwargs)

    async def list_all(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        limit: Optional[int] = None,
    ) -> GraphResult:
        """Collect ``value`` items across pages by following nextLink.

        The next link already carries the query, so params are only sent with
        the first page. ``limit`` stops paging once enough items are collected.
        """
        items: List[Any] = []
        link: Optional[str] = path
        page_params = params
        while link:
            result = await self.get(link, params=page_params, headers=headers)
            if not result.ok:
                return result
            page = result.data or {}
            items.extend((page.get("value") or []) if isinstance(page, dict) else [])
            if limit is not None and len(items) >= limit:
                return GraphResult(data=items[:limit])
            link = next_link(page)
            page_params = None
        return GraphResult(data=items)
