"""Minimal OpenStack REST client on top of httpx.

Authenticates against Keystone v3 with a password scoped to one project and
resolves service endpoints from the returned catalog.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import httpx
import logging

from dockyards.errors import NotFound, UpstreamFailure

logger = logging.getLogger(__name__)

# Re-authenticate a little before the token actually expires
TOKEN_EXPIRY_MARGIN = timedelta(minutes=5)


class OpenStackError(UpstreamFailure):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = status_code


class OpenStackClient:
    """Project scoped client for the compute, network, image and identity services."""

    def __init__(self, http: httpx.AsyncClient, auth_url: str, region: Optional[str] = None):
        self.http = http
        self.auth_url = auth_url.rstrip("/")
        self.region = region
        self.project_id: Optional[str] = None
        self.user_id: Optional[str] = None
        self._token: Optional[str] = None
        self._expires_at: Optional[datetime] = None
        self._catalog: Dict[str, str] = {}

    @property
    def expired(self) -> bool:
        if self._token is None:
            return True
        if self._expires_at is None:
            return False
        return datetime.now(timezone.utc) >= self._expires_at - TOKEN_EXPIRY_MARGIN

    async def authenticate(
        self,
        username: str,
        password: str,
        user_domain: str = "Default",
        project_id: Optional[str] = None,
        project_name: Optional[str] = None,
    ):
        """Request a project scoped token and load the service catalog."""
        if project_id:
            project: Dict[str, Any] = {"id": project_id}
        else:
            project = {"name": project_name, "domain": {"name": user_domain}}

        body = {
            "auth": {
                "identity": {
                    "methods": ["password"],
                    "password": {
                        "user": {
                            "name": username,
                            "domain": {"name": user_domain},
                            "password": password,
                        }
                    },
                },
                "scope": {"project": project},
            }
        }

        try:
            response = await self.http.post(f"{self.auth_url}/auth/tokens", json=body)
        except httpx.HTTPError as e:
            raise OpenStackError(f"Keystone request failed: {e}")

        if response.status_code != 201:
            raise OpenStackError(f"Keystone authentication failed: {response.status_code} - {response.text}", response.status_code)

        token = response.json()["token"]
        self._token = response.headers["X-Subject-Token"]
        self.project_id = token.get("project", {}).get("id", project_id)
        self.user_id = token.get("user", {}).get("id")

        expires_at = token.get("expires_at")
        if expires_at:
            self._expires_at = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))

        self._catalog = {}
        for service in token.get("catalog", []):
            for endpoint in service.get("endpoints", []):
                if endpoint.get("interface") != "public":
                    continue
                if self.region and endpoint.get("region") not in (None, self.region):
                    continue
                self._catalog[service["type"]] = endpoint["url"].rstrip("/")

        logger.debug(f"Authenticated to OpenStack project {self.project_id} ({len(self._catalog)} endpoints)")

    def endpoint(self, service_type: str) -> str:
        if service_type == "identity":
            return self._catalog.get("identity", self.auth_url)
        url = self._catalog.get(service_type)
        if not url:
            raise OpenStackError(f"No public {service_type} endpoint in the service catalog")
        return url

    async def request(self, method: str, service_type: str, path: str, **kwargs) -> Optional[Dict[str, Any]]:
        url = f"{self.endpoint(service_type)}{path}"
        headers = {"X-Auth-Token": self._token or ""}

        try:
            response = await self.http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise OpenStackError(f"{method} {url} failed: {e}")

        if response.status_code == 404:
            raise NotFound(f"{service_type} resource not found: {path}")
        if response.status_code >= 400:
            raise OpenStackError(f"{method} {path} failed: {response.status_code} - {response.text}", response.status_code)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def get(self, service_type: str, path: str, params: Optional[Dict[str, Any]] = None):
        return await self.request("GET", service_type, path, params=params)

    async def post(self, service_type: str, path: str, body: Dict[str, Any]):
        return await self.request("POST", service_type, path, json=body)

    async def delete(self, service_type: str, path: str):
        return await self.request("DELETE", service_type, path)
