"""Organization endpoints."""
from fastapi import APIRouter, Depends, Response
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging

from dockyards.api.dependencies import get_container, get_principal
from dockyards.authorization import authorize, member_organizations
from dockyards.container import Container
from dockyards.database import get_db
from dockyards.errors import BadRequest, Conflict, Forbidden
from dockyards.models.credential import Credential
from dockyards.models.organization import Organization, OrganizationMember, ROLE_SUPER_USER
from dockyards.models.user import User
from dockyards.schemas import Organization as OrganizationSchema
from dockyards.schemas import OrganizationCreate
from dockyards.utils.names import is_valid

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/orgs", tags=["Organizations"])


def to_schema(organization: Organization, role: str = None) -> OrganizationSchema:
    return OrganizationSchema(
        id=organization.id,
        name=organization.name,
        display_name=organization.display_name,
        role=role,
        created_at=organization.created_at,
    )


@router.get("", response_model=List[OrganizationSchema])
async def list_organizations(
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    """Organizations the caller is a member of."""
    return [to_schema(organization, role) for organization, role in await member_organizations(db, user.id)]


@router.post("", response_model=OrganizationSchema, status_code=201)
async def create_organization(
    data: OrganizationCreate,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    """Create an organization with the caller as its only member."""
    details, ok = is_valid(data.name)
    if not ok:
        raise BadRequest("name is not valid", name=data.name, details=details)

    existing = (await db.execute(select(Organization).where(Organization.name == data.name))).scalar_one_or_none()
    if existing:
        raise Conflict("organization name is already in use, reserved or forbidden")

    organization = Organization(name=data.name, display_name=data.display_name or data.name)
    db.add(organization)
    try:
        await db.flush()
        db.add(OrganizationMember(organization_id=organization.id, user_id=user.id, role=ROLE_SUPER_USER))
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("organization name is already in use, reserved or forbidden")
    await db.refresh(organization)

    logger.info(f"Created organization {organization.name} ({organization.id}) for user {user.id}")
    return to_schema(organization, ROLE_SUPER_USER)


@router.delete("/{org}", status_code=204)
async def delete_organization(
    org: str,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Delete an organization; refused while it still owns clusters."""
    organization, _ = await authorize(db, user.id, org, write=True)

    clusters = [
        cluster
        for cluster in await container.cluster_service.get_all_clusters()
        if cluster.organization == organization.name
    ]
    if clusters:
        logger.debug(f"Refusing to delete {organization.name}, {len(clusters)} cluster(s) remain")
        raise Forbidden(
            "organization still has clusters",
            name=organization.name,
            details=", ".join(cluster.name for cluster in clusters),
        )

    await container.cloud_service.delete_organization(organization)

    await db.execute(delete(Credential).where(Credential.organization_id == organization.id))
    await db.execute(delete(OrganizationMember).where(OrganizationMember.organization_id == organization.id))
    await db.delete(organization)
    await db.commit()

    logger.info(f"Deleted organization {organization.name} ({organization.id})")
    return Response(status_code=204)
