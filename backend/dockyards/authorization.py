"""Organization membership and role checks.

Every organization scoped operation goes through ``authorize`` before it
touches the cluster manager, the cloud provider or the database.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Tuple
import logging
import uuid

from dockyards.errors import Forbidden, Unauthenticated, Unauthorized
from dockyards.models.organization import Organization, OrganizationMember, WRITE_ROLES

logger = logging.getLogger(__name__)


async def get_organization(session: AsyncSession, organization_name: str) -> Organization:
    stmt = select(Organization).where(Organization.name == organization_name)
    organization = (await session.execute(stmt)).scalar_one_or_none()
    if organization is None:
        raise Unauthenticated(f"organization {organization_name} not found")
    return organization


async def member_organizations(session: AsyncSession, principal_id: uuid.UUID) -> List[Tuple[Organization, str]]:
    """Organizations the principal belongs to, with the principal's role in each."""
    stmt = (
        select(Organization, OrganizationMember.role)
        .join(OrganizationMember, OrganizationMember.organization_id == Organization.id)
        .where(OrganizationMember.user_id == principal_id)
        .order_by(Organization.name)
    )
    return [(organization, role) for organization, role in (await session.execute(stmt)).all()]


async def authorize(
    session: AsyncSession,
    principal_id: uuid.UUID,
    organization_name: str,
    write: bool = False,
) -> Tuple[Organization, str]:
    """Check that the principal may act on ``organization_name``.

    Returns the organization and the principal's role. Raises Unauthenticated
    when the organization does not exist, Unauthorized when the principal is
    not a member and Forbidden when ``write`` is requested by a reader.
    """
    organization = await get_organization(session, organization_name)

    stmt = select(OrganizationMember.role).where(
        OrganizationMember.organization_id == organization.id,
        OrganizationMember.user_id == principal_id,
    )
    role = (await session.execute(stmt)).scalar_one_or_none()

    if role is None:
        logger.debug(f"Principal {principal_id} is not a member of {organization_name}")
        raise Unauthorized(f"not a member of organization {organization_name}")

    if write and role not in WRITE_ROLES:
        logger.debug(f"Principal {principal_id} has role {role} in {organization_name}, write denied")
        raise Forbidden(f"role {role} may not modify organization {organization_name}")

    return organization, role
