"""Bootstrap workloads installed into every OpenStack backed cluster."""
from dataclasses import dataclass, field
from typing import List, Optional
import ipaddress
import logging
import yaml

from dockyards.errors import UpstreamFailure
from dockyards.labels import LOAD_BALANCER_ROLE
from dockyards.models.deployment import DEPLOYMENT_TYPE_HELM, DEPLOYMENT_TYPE_KUSTOMIZE
from dockyards.schemas import Cluster, Deployment

logger = logging.getLogger(__name__)

METALLB_PEER_ASN = 64700
METALLB_RESOURCE = "github.com/metallb/metallb/config/frr?ref=v0.13.11"


@dataclass
class NetworkTags:
    """BGP settings declared as ``key=value`` tags on a network."""
    asn: Optional[int] = None
    peer: Optional[str] = None
    prefixes: List[str] = field(default_factory=list)


def parse_network_tags(tags: List[str]) -> NetworkTags:
    """Read ``asn=``, ``ipv4=``, ``ipv6=`` and ``peer=`` tags; everything else is ignored."""
    parsed = NetworkTags()

    for tag in tags:
        split = tag.split("=")
        if len(split) != 2:
            logger.debug(f"Ignoring tag {tag!r}")
            continue

        key, value = split
        try:
            if key == "asn":
                parsed.asn = int(value)
            elif key in ("ipv4", "ipv6"):
                parsed.prefixes.append(str(ipaddress.ip_interface(value)))
            elif key == "peer":
                parsed.peer = str(ipaddress.ip_address(value))
            else:
                logger.debug(f"Ignoring tag key {key}")
        except ValueError as e:
            raise UpstreamFailure(f"invalid network tag {tag!r}: {e}")

    return parsed


def cinder_csi_deployment(cluster: Cluster, auth_url: str, credential_id: str, credential_secret: str) -> Deployment:
    cloud_conf = "\n".join([
        "[Global]",
        f"auth-url={auth_url}",
        f"application-credential-id={credential_id}",
        f"application-credential-secret={credential_secret}",
    ])

    return Deployment(
        cluster_id=cluster.id,
        name="openstack-cinder-csi",
        type=DEPLOYMENT_TYPE_HELM,
        namespace="kube-system",
        helm_chart="openstack-cinder-csi",
        helm_repository="https://kubernetes.github.io/cloud-provider-openstack",
        helm_version="2.28.0",
        helm_values={
            "secret": {
                "enabled": True,
                "create": True,
                "filename": "cloud.conf",
                "name": "cinder-csi-cloud-config",
                "data": {
                    "cloud.conf": cloud_conf,
                },
            },
            "storageClass": {
                "delete": {
                    "isDefault": True,
                },
            },
            "clusterID": cluster.name,
        },
    )


def ingress_nginx_deployment(cluster: Cluster) -> Deployment:
    return Deployment(
        cluster_id=cluster.id,
        name="ingress-nginx",
        type=DEPLOYMENT_TYPE_HELM,
        namespace="ingress-nginx",
        helm_chart="ingress-nginx",
        helm_repository="https://kubernetes.github.io/ingress-nginx",
        helm_version="4.7.2",
        helm_values={
            "controller": {
                "kind": "DaemonSet",
                "hostPort": {
                    "enabled": True,
                },
                "ingressClassResource": {
                    "default": True,
                },
                "nodeSelector": {
                    LOAD_BALANCER_ROLE: "",
                },
                "tolerations": [
                    {
                        "key": LOAD_BALANCER_ROLE,
                        "operator": "Exists",
                        "effect": "NoSchedule",
                    },
                ],
            },
        },
    )


def metallb_deployment(cluster: Cluster, network_name: str, tags: NetworkTags, addresses: List[str]) -> Deployment:
    """MetalLB in BGP mode announcing ``addresses`` (``addr/bits`` strings)."""
    if not addresses:
        raise UpstreamFailure("addresses is empty")
    if tags.asn is None:
        raise UpstreamFailure("network missing tag asn")
    if tags.peer is None:
        raise UpstreamFailure("network missing tag peer")

    bgp_peer = {
        "apiVersion": "metallb.io/v1beta1",
        "kind": "BGPPeer",
        "metadata": {"name": network_name},
        "spec": {
            "peerASN": METALLB_PEER_ASN,
            "ebgpMultiHop": True,
            "myASN": tags.asn,
            "peerAddress": tags.peer,
        },
    }

    ip_address_pool = {
        "apiVersion": "metallb.io/v1beta1",
        "kind": "IPAddressPool",
        "metadata": {"name": network_name},
        "spec": {"addresses": addresses},
    }

    bgp_advertisement = {
        "apiVersion": "metallb.io/v1beta1",
        "kind": "BGPAdvertisement",
        "metadata": {"name": network_name},
        "spec": {"ipAddressPools": [network_name]},
    }

    # JSON patch pinning the speaker to load balancer nodes
    speaker_patch = "\n".join([
        "- op: add",
        "  path: /spec/template/spec/nodeSelector/node-role.dockyards.io~1load-balancer",
        '  value: ""',
        "- op: add",
        "  path: /spec/template/spec/tolerations/-",
        "  value:",
        "    effect: NoSchedule",
        f"    key: {LOAD_BALANCER_ROLE}",
        "    operator: Exists",
    ])

    kustomization = {
        "apiVersion": "kustomize.config.k8s.io/v1beta1",
        "kind": "Kustomization",
        "resources": [
            METALLB_RESOURCE,
            "bgppeer.yaml",
            "ipaddresspool.yaml",
            "bgpadvertisement.yaml",
        ],
        "patches": [
            {
                "patch": speaker_patch,
                "target": {"kind": "DaemonSet", "name": "speaker"},
            },
        ],
    }

    return Deployment(
        cluster_id=cluster.id,
        name="metallb",
        type=DEPLOYMENT_TYPE_KUSTOMIZE,
        namespace="metallb-system",
        kustomize={
            "kustomization.yaml": yaml.safe_dump(kustomization, sort_keys=False),
            "bgppeer.yaml": yaml.safe_dump(bgp_peer, sort_keys=False),
            "ipaddresspool.yaml": yaml.safe_dump(ip_address_pool, sort_keys=False),
            "bgpadvertisement.yaml": yaml.safe_dump(bgp_advertisement, sort_keys=False),
        },
    )
