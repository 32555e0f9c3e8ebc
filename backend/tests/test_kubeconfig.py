"""Test kubeconfig issuance with short lived tokens."""

import pytest
import yaml

from dockyards.errors import UpstreamFailure
from dockyards.garbage import KIND_TOKEN
from dockyards.kubeconfig import KubeconfigIssuer

from conftest import RAW_KUBECONFIG


class StubClusterService:
    """Just the token operations the issuer relies on."""

    def __init__(self, raw=RAW_KUBECONFIG, fail_delete=False, fail_create=False):
        self.raw = raw
        self.fail_delete = fail_delete
        self.fail_create = fail_create
        self.created_tokens = []
        self.deleted_tokens = []
        self.garbage = []

    async def generate_kubeconfig(self, cluster_id):
        return self.raw

    async def create_token(self, cluster_id, ttl_millis):
        if self.fail_create:
            raise UpstreamFailure("create failed")
        self.created_tokens.append((cluster_id, ttl_millis))
        return "token-new:scopedsecret"

    async def delete_token(self, token_id):
        if self.fail_delete:
            raise UpstreamFailure("delete failed")
        self.deleted_tokens.append(token_id)

    async def enqueue_garbage(self, entry):
        self.garbage.append(entry)
        return True


class TestKubeconfigIssuer:
    """Test the unrestricted token is swapped for a TTL bound one."""

    async def test_token_is_replaced_and_original_deleted(self):
        service = StubClusterService()
        issuer = KubeconfigIssuer(service, ttl_seconds=3600)

        document = yaml.safe_load(await issuer.issue("c-1"))

        user, = document["users"]
        assert user["user"]["token"] == "token-new:scopedsecret"
        assert user["user"]["token"] != "kubeconfig-user-abc12:rawsecret"
        assert service.created_tokens == [("c-1", 3600 * 1000)]
        assert service.deleted_tokens == ["kubeconfig-user-abc12"]
        assert service.garbage == []

    async def test_entries_are_renamed_to_cluster_id(self):
        issuer = KubeconfigIssuer(StubClusterService())

        document = yaml.safe_load(await issuer.issue("c-1"))

        assert document["current-context"] == "c-1"
        assert [cluster["name"] for cluster in document["clusters"]] == ["c-1"]
        assert document["clusters"][0]["cluster"]["server"] == "https://rancher.test/k8s/clusters/c-1"
        context, = document["contexts"]
        assert context == {"name": "c-1", "context": {"cluster": "c-1", "user": "c-1"}}

    async def test_ttl_override(self):
        service = StubClusterService()
        issuer = KubeconfigIssuer(service, ttl_seconds=3600)

        await issuer.issue("c-1", ttl_seconds=60)

        assert service.created_tokens == [("c-1", 60000)]

    async def test_failed_token_deletion_is_queued(self):
        service = StubClusterService(fail_delete=True)
        issuer = KubeconfigIssuer(service)

        document = yaml.safe_load(await issuer.issue("c-1"))

        assert document["users"][0]["user"]["token"] == "token-new:scopedsecret"
        entry, = service.garbage
        assert entry.kind == KIND_TOKEN
        assert entry.remote_id == "kubeconfig-user-abc12"

    @pytest.mark.parametrize("raw", [
        "- not\n- a\n- mapping\n",
        "clusters: [\n",
        "current-context: missing\ncontexts: []\n",
        yaml.safe_dump({
            "current-context": "ctx",
            "contexts": [{"name": "ctx", "context": {"cluster": "gone", "user": "gone"}}],
        }),
    ])
    async def test_malformed_kubeconfig(self, raw):
        issuer = KubeconfigIssuer(StubClusterService(raw=raw))

        with pytest.raises(UpstreamFailure):
            await issuer.issue("c-1")

    async def test_failed_token_creation_deletes_original(self):
        service = StubClusterService(fail_create=True)
        issuer = KubeconfigIssuer(service)

        with pytest.raises(UpstreamFailure):
            await issuer.issue("c-1")

        assert service.deleted_tokens == ["kubeconfig-user-abc12"]
        assert service.garbage == []

    async def test_failed_token_creation_queues_undeletable_original(self):
        service = StubClusterService(fail_create=True, fail_delete=True)
        issuer = KubeconfigIssuer(service)

        with pytest.raises(UpstreamFailure):
            await issuer.issue("c-1")

        entry, = service.garbage
        assert (entry.kind, entry.remote_id) == (KIND_TOKEN, "kubeconfig-user-abc12")
