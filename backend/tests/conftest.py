"""Pytest configuration and fixtures.

Upstream services are replaced by in-process fakes answering through
``httpx.MockTransport``; the database is a throwaway SQLite file per test.
"""
from collections import defaultdict
from urllib.parse import parse_qsl
import itertools
import json

import httpx
import pytest

from dockyards.api.auth import hash_password
from dockyards.config import Settings
from dockyards.container import build_container
from dockyards.database import create_engine, create_session_factory, init_db
from dockyards.labels import ownership_labels
from dockyards.main import create_app
from dockyards.models.openstack import OpenStackProject
from dockyards.models.organization import Organization, OrganizationMember, ROLE_SUPER_USER
from dockyards.models.user import User
from dockyards.utils.crypto import generate_key
from dockyards.utils.tokens import issue_token

CATTLE_URL = "http://rancher.test"
OPENSTACK_AUTH_URL = "http://openstack.test/identity/v3"

SUPPORTED_VERSIONS = "v1.26.8-rancher1-1,v1.27.5-rancher1-1,v1.25.14-rancher1-1"

RAW_KUBECONFIG = """\
apiVersion: v1
kind: Config
clusters:
- name: test-org-test
  cluster:
    server: https://rancher.test/k8s/clusters/c-1
- name: other
  cluster:
    server: https://other.test
users:
- name: test-org-test
  user:
    token: kubeconfig-user-abc12:rawsecret
contexts:
- name: test-org-test
  context:
    cluster: test-org-test
    user: test-org-test
current-context: test-org-test
"""


def _json(request: httpx.Request):
    if not request.content:
        return {}
    return json.loads(request.content)


# -----------------------------
# Fake cluster manager
# -----------------------------

class FakeRancher:
    """Rancher v3 collections kept in memory."""

    ID_PREFIXES = {
        "clusters": "c",
        "clustertemplates": "ct",
        "clustertemplaterevisions": "ctr",
        "nodetemplates": "nt",
        "nodepools": "np",
        "nodes": "m",
        "tokens": "token",
    }

    UNIQUE_NAMES = {"clusters", "clustertemplates"}

    def __init__(self):
        self.objects = defaultdict(dict)
        self.created = defaultdict(list)
        self.deleted = defaultdict(list)
        self.failing_deletes = set()
        self.failing_creates = set()
        self._ids = itertools.count(1)

        self.objects["settings"]["k8s-versions-current"] = {
            "id": "k8s-versions-current",
            "value": SUPPORTED_VERSIONS,
        }
        self.objects["tokens"]["kubeconfig-user-abc12"] = {"id": "kubeconfig-user-abc12"}

        self.transport = httpx.MockTransport(self.handle)

    def add_cluster(self, cluster_id: str, organization: str, name: str, **fields) -> dict:
        data = {
            "id": cluster_id,
            "name": f"{organization}-{name}",
            "labels": ownership_labels(organization, name),
            "state": "active",
            "nodeCount": 0,
            "created": "2023-10-01T12:00:00Z",
        }
        data.update(fields)
        self.objects["clusters"][cluster_id] = data
        return data

    def _next_id(self, collection: str) -> str:
        return f"{self.ID_PREFIXES.get(collection, collection)}-{next(self._ids)}"

    def handle(self, request: httpx.Request) -> httpx.Response:
        parts = request.url.path.split("/")[2:]  # strip "/v3"
        collection = parts[0]
        object_id = parts[1] if len(parts) > 1 else None
        query = dict(parse_qsl(request.url.query.decode()))

        if request.method == "GET":
            if object_id is None:
                data = [
                    obj for obj in self.objects[collection].values()
                    if all(str(obj.get(key)) == value for key, value in query.items())
                ]
                return httpx.Response(200, json={"data": data})
            if object_id not in self.objects[collection]:
                return httpx.Response(404, json={"message": "not found"})
            return httpx.Response(200, json=self.objects[collection][object_id])

        if request.method == "POST" and object_id is not None:
            if object_id not in self.objects[collection]:
                return httpx.Response(404, json={"message": "not found"})
            if query.get("action") == "generateKubeconfig":
                return httpx.Response(200, json={"config": RAW_KUBECONFIG})
            return httpx.Response(422, json={"message": "unknown action"})

        if request.method == "POST":
            return self._create(collection, _json(request))

        if request.method == "DELETE":
            if object_id in self.failing_deletes:
                return httpx.Response(500, json={"message": "delete failed"})
            if object_id not in self.objects[collection]:
                return httpx.Response(404, json={"message": "not found"})
            del self.objects[collection][object_id]
            self.deleted[collection].append(object_id)
            return httpx.Response(204)

        return httpx.Response(405)

    def _create(self, collection: str, body: dict) -> httpx.Response:
        if collection in self.failing_creates:
            return httpx.Response(500, json={"message": "create failed"})

        if collection in self.UNIQUE_NAMES:
            if any(obj.get("name") == body.get("name") for obj in self.objects[collection].values()):
                return httpx.Response(409, json={"message": "already exists"})

        data = dict(body)
        data["id"] = self._next_id(collection)

        if collection == "clusters":
            revision = self.objects["clustertemplaterevisions"].get(body.get("clusterTemplateRevisionId"), {})
            rke = (revision.get("clusterConfig") or {}).get("rancherKubernetesEngineConfig")
            data.update({
                "state": "provisioning",
                "nodeCount": 0,
                "created": "2023-10-01T12:00:00Z",
                "rancherKubernetesEngineConfig": rke,
            })
        elif collection == "tokens":
            data["token"] = f"{data['id']}:scopedsecret"

        self.objects[collection][data["id"]] = data
        self.created[collection].append(data)
        return httpx.Response(201, json=data)


# -----------------------------
# Fake cloud provider
# -----------------------------

class FakeOpenStack:
    """Keystone, Nova, Neutron and Glance endpoints kept in memory."""

    USER_ID = "user-1"
    SERVICE_PROJECT_ID = "service-project"

    NETWORK_TAGS = ["asn=65010", "peer=10.10.0.1", "ipv4=192.168.100.10/30"]

    def __init__(self):
        self.flavors = [
            {"id": "flavor-small", "name": "small", "vcpus": 2, "ram": 4096, "disk": 100},
            {"id": "flavor-large", "name": "large", "vcpus": 8, "ram": 16384, "disk": 200},
        ]
        self.network_tags = list(self.NETWORK_TAGS)
        self.authentications = []
        self.application_credentials = {}
        self.keypairs = {}
        self.security_groups = {}
        self.deleted = defaultdict(list)
        self._ids = itertools.count(1)

        self.transport = httpx.MockTransport(self.handle)

    def _catalog(self):
        return [
            {"type": service_type, "endpoints": [{"interface": "public", "region": "RegionOne", "url": url}]}
            for service_type, url in (
                ("compute", "http://openstack.test/compute/v2.1"),
                ("network", "http://openstack.test/network"),
                ("image", "http://openstack.test/image"),
                ("identity", OPENSTACK_AUTH_URL),
            )
        ]

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        method = request.method

        if path == "/identity/v3/auth/tokens" and method == "POST":
            project = _json(request)["auth"]["scope"]["project"]
            project_id = project.get("id") or self.SERVICE_PROJECT_ID
            self.authentications.append(project_id)
            return httpx.Response(
                201,
                headers={"X-Subject-Token": f"token-{project_id}"},
                json={"token": {
                    "project": {"id": project_id},
                    "user": {"id": self.USER_ID},
                    "expires_at": "2999-01-01T00:00:00.000000Z",
                    "catalog": self._catalog(),
                }},
            )

        credentials_path = f"/identity/v3/users/{self.USER_ID}/application_credentials"
        if path == credentials_path and method == "POST":
            credential_id = f"appcred-{next(self._ids)}"
            secret = f"secret-{credential_id}"
            self.application_credentials[credential_id] = _json(request)["application_credential"]["name"]
            return httpx.Response(201, json={"application_credential": {"id": credential_id, "secret": secret}})
        if path.startswith(credentials_path + "/") and method == "DELETE":
            return self._delete("application_credentials", self.application_credentials, path.rsplit("/", 1)[1])

        if path == "/compute/v2.1/flavors/detail":
            return httpx.Response(200, json={"flavors": self.flavors})
        if path.startswith("/compute/v2.1/flavors/"):
            flavor_id = path.rsplit("/", 1)[1]
            for flavor in self.flavors:
                if flavor["id"] == flavor_id:
                    return httpx.Response(200, json={"flavor": flavor})
            return httpx.Response(404, json={"itemNotFound": {"message": "flavor not found"}})

        if path == "/compute/v2.1/os-keypairs" and method == "POST":
            name = _json(request)["keypair"]["name"]
            self.keypairs[name] = True
            return httpx.Response(200, json={"keypair": {"name": name, "private_key": f"private key of {name}"}})
        if path.startswith("/compute/v2.1/os-keypairs/") and method == "DELETE":
            return self._delete("keypairs", self.keypairs, path.rsplit("/", 1)[1])

        if path == "/image/v2/images":
            return httpx.Response(200, json={"images": [{"id": "image-1", "name": "ubuntu-22.04"}]})

        if path == "/network/v2.0/networks":
            return httpx.Response(200, json={"networks": [
                {"id": "network-1", "name": "default", "tags": self.network_tags},
            ]})

        if path == "/network/v2.0/security-groups" and method == "POST":
            security_group_id = f"sg-{next(self._ids)}"
            self.security_groups[security_group_id] = _json(request)["security_group"]["name"]
            return httpx.Response(201, json={"security_group": {"id": security_group_id}})
        if path.startswith("/network/v2.0/security-groups/") and method == "DELETE":
            return self._delete("security_groups", self.security_groups, path.rsplit("/", 1)[1])
        if path == "/network/v2.0/security-group-rules" and method == "POST":
            return httpx.Response(201, json={"security_group_rule": {"id": f"rule-{next(self._ids)}"}})

        return httpx.Response(404, json={"error": f"unexpected {method} {path}"})

    def _delete(self, kind: str, store: dict, object_id: str) -> httpx.Response:
        if object_id not in store:
            return httpx.Response(404, json={"error": "not found"})
        del store[object_id]
        self.deleted[kind].append(object_id)
        return httpx.Response(204)


# -----------------------------
# Settings and database
# -----------------------------

@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        DB_CONF=f"sqlite+aiosqlite:///{tmp_path}/test.db",
        JWT_ACCESS_TOKEN_SECRET="access-secret-for-tests-only-0123456789",
        JWT_REFRESH_TOKEN_SECRET="refresh-secret-for-tests-only-0123456789",
        ENCRYPTION_KEY=generate_key(),
        CATTLE_URL=CATTLE_URL,
        CATTLE_BEARER_TOKEN="token-test:secret",
        OPENSTACK_AUTH_URL=OPENSTACK_AUTH_URL,
        OPENSTACK_PASSWORD="password",
        DEPLOYMENT_REPOSITORY_ROOT=str(tmp_path / "repositories"),
    )


@pytest.fixture
async def engine(settings):
    engine = create_engine(settings.DATABASE_URL)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db_session(session_factory):
    """Create a new database session for a test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def openstack_projects(session_factory):
    """Two unclaimed cloud projects."""
    async with session_factory() as session:
        session.add_all([
            OpenStackProject(openstack_id="project-1", name="project-1"),
            OpenStackProject(openstack_id="project-2", name="project-2"),
        ])
        await session.commit()


# -----------------------------
# Services and application
# -----------------------------

@pytest.fixture
def rancher():
    return FakeRancher()


@pytest.fixture
def openstack():
    return FakeOpenStack()


@pytest.fixture
async def container(settings, engine, openstack_projects, rancher, openstack):
    services = build_container(
        settings,
        engine=engine,
        rancher_transport=rancher.transport,
        openstack_transport=openstack.transport,
    )
    yield services
    await services.cluster_service.close()
    await services.cloud_service.close()


@pytest.fixture
async def client(container):
    """HTTP client bound to the application, without a network round trip."""
    app = create_app(container=container)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


# -----------------------------
# Users and organizations
# -----------------------------

@pytest.fixture
def create_user(session_factory):
    async def _create_user(email: str, name: str = "user", password: str = "password") -> User:
        async with session_factory() as session:
            user = User(email=email, name=name, password=hash_password(password))
            session.add(user)
            await session.commit()
            await session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def create_organization(session_factory):
    async def _create_organization(name: str, members=()) -> Organization:
        """``members`` is a sequence of ``(user, role)`` pairs."""
        async with session_factory() as session:
            organization = Organization(name=name, display_name=name)
            session.add(organization)
            await session.flush()
            for user, role in members:
                session.add(OrganizationMember(organization_id=organization.id, user_id=user.id, role=role))
            await session.commit()
            await session.refresh(organization)
        return organization

    return _create_organization


@pytest.fixture
def headers_for(settings):
    def _headers_for(user: User) -> dict:
        token = issue_token(str(user.id), user.name, settings.JWT_ACCESS_TOKEN_SECRET, 300)
        return {"Authorization": f"Bearer {token}"}

    return _headers_for


@pytest.fixture
async def user(create_user):
    return await create_user("user@example.com", name="test user")


@pytest.fixture
async def organization(create_organization, user):
    """Organization ``test-org`` with ``user`` as its super user."""
    return await create_organization("test-org", [(user, ROLE_SUPER_USER)])


@pytest.fixture
def auth_headers(headers_for, user):
    return headers_for(user)
