"""Label, annotation and taint keys placed on upstream objects."""

LABEL_ORGANIZATION_NAME = "dockyards.io/organization-name"
LABEL_CLUSTER_NAME = "dockyards.io/cluster-name"

ANNOTATION_ADDRESSES = "dockyards.io/addresses"

LOAD_BALANCER_ROLE = "node-role.dockyards.io/load-balancer"


def ownership_labels(organization_name: str, cluster_name: str) -> dict:
    """Labels identifying the organization and cluster an upstream object belongs to."""
    return {
        LABEL_ORGANIZATION_NAME: organization_name,
        LABEL_CLUSTER_NAME: cluster_name,
    }
