"""Process wide services, built once at startup."""
from dataclasses import dataclass
from typing import Optional
import logging

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import sessionmaker

from dockyards.cloudservices.base import CloudService
from dockyards.cloudservices.openstack.service import OpenStackService
from dockyards.clusterservices.base import ClusterService
from dockyards.clusterservices.rancher.service import RancherService
from dockyards.config import Settings
from dockyards.database import create_engine, create_session_factory
from dockyards.kubeconfig import KubeconfigIssuer
from dockyards.orchestrator import ClusterOrchestrator
from dockyards.utils.crypto import CryptoService
from dockyards.utils.ipam import IPManager

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    engine: Optional[AsyncEngine]
    session_factory: sessionmaker
    crypto: CryptoService
    ip_manager: IPManager
    cloud_service: CloudService
    cluster_service: ClusterService
    orchestrator: ClusterOrchestrator
    issuer: KubeconfigIssuer

    async def close(self):
        await self.cluster_service.close()
        await self.cloud_service.close()
        if self.engine is not None:
            await self.engine.dispose()


def build_container(
    settings: Settings,
    engine: Optional[AsyncEngine] = None,
    rancher_transport: Optional[httpx.AsyncBaseTransport] = None,
    openstack_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Container:
    """Wire every service from ``settings``.

    Transports are only passed in tests, to answer upstream calls in process.
    """
    if engine is None:
        engine = create_engine(settings.DATABASE_URL)
    session_factory = create_session_factory(engine)

    crypto = CryptoService(settings.ENCRYPTION_KEY)
    ip_manager = IPManager(session_factory)

    cloud_service = OpenStackService(settings, session_factory, ip_manager, crypto, transport=openstack_transport)
    cluster_service = RancherService(settings, cloud_service, transport=rancher_transport)

    orchestrator = ClusterOrchestrator(
        cluster_service,
        cloud_service,
        ip_manager,
        settings.DEPLOYMENT_REPOSITORY_ROOT,
    )
    issuer = KubeconfigIssuer(cluster_service, ttl_seconds=settings.KUBECONFIG_TTL)

    logger.info(f"Services ready (cluster manager {settings.CATTLE_URL}, cloud {settings.OPENSTACK_AUTH_URL})")

    return Container(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        crypto=crypto,
        ip_manager=ip_manager,
        cloud_service=cloud_service,
        cluster_service=cluster_service,
        orchestrator=orchestrator,
        issuer=issuer,
    )
