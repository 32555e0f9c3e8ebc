"""Upstream object bodies built from cluster and node pool options."""
from typing import Any, Dict, List

from dockyards.cloudservices.base import CloudConfig
from dockyards.labels import ANNOTATION_ADDRESSES, LOAD_BALANCER_ROLE

SSH_USER = "ubuntu"

LOAD_BALANCER_TOLERATION = {
    "key": LOAD_BALANCER_ROLE,
    "operator": "Exists",
    "effect": "NoSchedule",
}


def rke_config(version: str, no_ingress_provider: bool = False) -> Dict[str, Any]:
    """RKE configuration carried by a cluster template revision."""
    if no_ingress_provider:
        ingress: Dict[str, Any] = {"provider": "none"}
    else:
        ingress = {
            "provider": "nginx",
            "defaultIngressClass": True,
            "nodeSelector": {LOAD_BALANCER_ROLE: ""},
            "tolerations": [dict(LOAD_BALANCER_TOLERATION)],
        }

    return {
        "type": "rancherKubernetesEngineConfig",
        "kubernetesVersion": version,
        "addonJobTimeout": 45,
        "authentication": {"strategy": "x509"},
        "ignoreDockerVersion": True,
        "ingress": ingress,
        "monitoring": {
            "provider": "metrics-server",
            "replicas": 1,
        },
        "network": {
            "plugin": "canal",
            "options": {"flannel_backend_type": "vxlan"},
        },
        "services": {
            "etcd": {
                "backupConfig": {
                    "enabled": True,
                    "intervalHours": 12,
                    "retention": 6,
                    "timeout": 300,
                },
                "creation": "12h",
                "retention": "72h",
                "extraArgs": {
                    "election-timeout": "5000",
                    "heartbeat-interval": "500",
                },
            },
            "kubeApi": {
                "serviceNodePortRange": "30000-32767",
            },
        },
        "upgradeStrategy": {
            "maxUnavailableControlplane": "1",
            "maxUnavailableWorker": "10%",
            "drain": True,
            "nodeDrainInput": {
                "gracePeriod": -1,
                "ignoreDaemonSets": True,
                "timeout": 120,
            },
        },
    }


def openstack_config(config: CloudConfig) -> Dict[str, Any]:
    return {
        "authUrl": config.auth_url,
        "applicationCredentialId": config.application_credential_id,
        "applicationCredentialSecret": config.application_credential_secret,
        "flavorId": config.flavor_id,
        "imageId": config.image_id,
        "keypairName": config.keypair_name,
        "netId": config.network_id,
        "privateKeyFile": config.private_key,
        "secGroups": ",".join(config.security_groups),
        "sshUser": SSH_USER,
    }


def node_template(name: str, config: CloudConfig, labels: Dict[str, str], load_balancer: bool) -> Dict[str, Any]:
    """Node template body; addresses allocated for the pool ride along as an annotation."""
    template_labels = dict(labels)
    if load_balancer:
        template_labels[LOAD_BALANCER_ROLE] = ""

    annotations = {}
    if config.addresses:
        annotations[ANNOTATION_ADDRESSES] = ",".join(config.addresses)

    return {
        "type": "nodeTemplate",
        "name": name,
        "labels": template_labels,
        "annotations": annotations,
        "openstackConfig": openstack_config(config),
    }


def cloud_config_from_node_template(template: Dict[str, Any]) -> CloudConfig:
    """Rebuild the parts of a CloudConfig needed to clean a pool's environment."""
    openstack = template.get("openstackConfig") or {}
    security_groups = [group for group in (openstack.get("secGroups") or "").split(",") if group]
    addresses = [address for address in (template.get("annotations") or {}).get(ANNOTATION_ADDRESSES, "").split(",") if address]

    return CloudConfig(
        auth_url=openstack.get("authUrl", ""),
        application_credential_id=openstack.get("applicationCredentialId", ""),
        application_credential_secret="",
        flavor_id=openstack.get("flavorId", ""),
        image_id=openstack.get("imageId", ""),
        network_id=openstack.get("netId", ""),
        keypair_name=openstack.get("keypairName", ""),
        security_groups=security_groups,
        addresses=addresses,
    )


def node_taints(load_balancer: bool) -> List[Dict[str, str]]:
    if not load_balancer:
        return []
    return [{"key": LOAD_BALANCER_ROLE, "effect": "NoSchedule"}]
