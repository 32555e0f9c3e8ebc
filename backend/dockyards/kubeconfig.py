"""Kubeconfigs handed to users, carrying a short lived cluster scoped token."""
from typing import Any, Dict, Optional
import logging
import yaml

from dockyards.clusterservices.base import ClusterService
from dockyards.errors import DockyardsError, UpstreamFailure
from dockyards.garbage import GarbageEntry, KIND_TOKEN

logger = logging.getLogger(__name__)


def _named(entries, name: Optional[str]) -> Optional[Dict[str, Any]]:
    for entry in entries or []:
        if entry.get("name") == name:
            return entry
    return None


class KubeconfigIssuer:
    """Swaps the unrestricted token of a generated kubeconfig for a TTL bound one."""

    def __init__(self, cluster_service: ClusterService, ttl_seconds: int = 3600):
        self.cluster_service = cluster_service
        self.ttl_seconds = ttl_seconds

    async def issue(self, cluster_id: str, ttl_seconds: Optional[int] = None) -> str:
        ttl_seconds = ttl_seconds or self.ttl_seconds

        raw = await self.cluster_service.generate_kubeconfig(cluster_id)
        try:
            document = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise UpstreamFailure(f"unable to parse kubeconfig of cluster {cluster_id}: {e}")
        if not isinstance(document, dict):
            raise UpstreamFailure(f"kubeconfig of cluster {cluster_id} is not a mapping")

        context = _named(document.get("contexts"), document.get("current-context"))
        if context is None:
            raise UpstreamFailure(f"kubeconfig of cluster {cluster_id} has no current context")

        context_spec = context.setdefault("context", {})
        auth_info = _named(document.get("users"), context_spec.get("user"))
        cluster = _named(document.get("clusters"), context_spec.get("cluster"))
        if auth_info is None or cluster is None:
            raise UpstreamFailure(f"kubeconfig of cluster {cluster_id} references a missing user or cluster")

        user = auth_info.setdefault("user", {})
        original_token = user.get("token") or ""
        original_token_id = original_token.split(":", 1)[0]

        try:
            user["token"] = await self.cluster_service.create_token(cluster_id, ttl_seconds * 1000)
        except DockyardsError:
            # The generated kubeconfig is discarded, its token must not outlive it
            if original_token_id:
                await self._delete_original_token(original_token_id)
            raise

        cluster["name"] = cluster_id
        auth_info["name"] = cluster_id
        context["name"] = cluster_id
        context_spec["cluster"] = cluster_id
        context_spec["user"] = cluster_id
        document["current-context"] = cluster_id

        # Only the entries of the current context are kept
        document["clusters"] = [cluster]
        document["users"] = [auth_info]
        document["contexts"] = [context]

        if original_token_id:
            await self._delete_original_token(original_token_id)

        logger.info(f"Issued kubeconfig for cluster {cluster_id} (ttl {ttl_seconds}s)")
        return yaml.safe_dump(document, default_flow_style=False, sort_keys=False)

    async def _delete_original_token(self, token_id: str):
        try:
            await self.cluster_service.delete_token(token_id)
        except DockyardsError as e:
            logger.warning(f"Unable to delete token {token_id}, queueing it: {e}")
            await self.cluster_service.enqueue_garbage(GarbageEntry(KIND_TOKEN, token_id))
