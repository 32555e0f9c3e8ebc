"""Rancher management API (v3) client on top of httpx."""
from typing import Any, Dict, List, Optional
import httpx
import logging

from dockyards.errors import Conflict, NotFound, UpstreamFailure

logger = logging.getLogger(__name__)


class RancherError(UpstreamFailure):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = status_code


class RancherClient:
    """Generic collection client: create, get, list, delete and actions."""

    def __init__(
        self,
        url: str,
        bearer_token: str,
        trust_insecure: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.http = httpx.AsyncClient(
            base_url=f"{url.rstrip('/')}/v3",
            headers={"Authorization": f"Bearer {bearer_token}"},
            verify=not trust_insecure,
            timeout=30.0,
            transport=transport,
        )

    async def close(self):
        await self.http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Optional[Dict[str, Any]]:
        try:
            response = await self.http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RancherError(f"{method} {path} failed: {e}")

        if response.status_code == 404:
            raise NotFound(f"rancher object not found: {path}")
        if response.status_code == 409:
            raise Conflict(f"rancher object already exists: {path}")
        if response.status_code >= 400:
            logger.error(f"Rancher {method} {path} failed: {response.status_code} - {response.text}")
            raise RancherError(f"{method} {path} failed with status {response.status_code}", response.status_code)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def create(self, collection: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", f"/{collection}", json=body)

    async def get(self, collection: str, object_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/{collection}/{object_id}")

    async def list(self, collection: str, **filters) -> List[Dict[str, Any]]:
        result = await self._request("GET", f"/{collection}", params=filters or None)
        return result.get("data", []) if result else []

    async def delete(self, collection: str, object_id: str):
        await self._request("DELETE", f"/{collection}/{object_id}")

    async def action(self, collection: str, object_id: str, action: str, body: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        return await self._request("POST", f"/{collection}/{object_id}", params={"action": action}, json=body or {})
