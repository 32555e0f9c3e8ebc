"""Database models."""
from dockyards.models.user import User
from dockyards.models.organization import Organization, OrganizationMember
from dockyards.models.credential import Credential
from dockyards.models.deployment import Deployment, DeploymentStatus
from dockyards.models.ip_allocation import IPAllocation
from dockyards.models.openstack import OpenStackProject, OpenStackOrganization

__all__ = [
    "User",
    "Organization",
    "OrganizationMember",
    "Credential",
    "Deployment",
    "DeploymentStatus",
    "IPAllocation",
    "OpenStackProject",
    "OpenStackOrganization",
]
