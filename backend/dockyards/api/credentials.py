"""Organization credential endpoints."""
from fastapi import APIRouter, Depends, Response
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging
import uuid

from dockyards.api.dependencies import get_container, get_principal
from dockyards.authorization import authorize
from dockyards.container import Container
from dockyards.database import get_db
from dockyards.errors import Conflict, NotFound, Unprocessable
from dockyards.models.credential import Credential
from dockyards.models.organization import Organization
from dockyards.models.user import User
from dockyards.schemas import Credential as CredentialSchema
from dockyards.schemas import CredentialCreate
from dockyards.utils.names import is_valid

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["Credentials"])


async def _get_credential(db: AsyncSession, credential_id: uuid.UUID):
    stmt = (
        select(Credential, Organization)
        .join(Organization, Credential.organization_id == Organization.id)
        .where(Credential.id == credential_id)
    )
    row = (await db.execute(stmt)).first()
    if row is None:
        raise NotFound(f"credential {credential_id} not found")
    return row


@router.get("/orgs/{org}/credentials", response_model=List[CredentialSchema])
async def list_credentials(
    org: str,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    """Credentials of an organization, without their data."""
    organization, _ = await authorize(db, user.id, org)

    stmt = select(Credential).where(Credential.organization_id == organization.id).order_by(Credential.name)
    credentials = (await db.execute(stmt)).scalars().all()

    return [
        CredentialSchema(id=credential.id, name=credential.name, organization=organization.name)
        for credential in credentials
    ]


@router.post("/orgs/{org}/credentials", response_model=CredentialSchema, status_code=201)
async def create_credential(
    org: str,
    data: CredentialCreate,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    organization, _ = await authorize(db, user.id, org, write=True)

    details, ok = is_valid(data.name)
    if not ok:
        raise Unprocessable("name is not valid", name=data.name, details=details)

    credential = Credential(
        name=data.name,
        organization_id=organization.id,
        data=container.crypto.seal(data.data),
    )
    db.add(credential)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict(f"credential {data.name} already exists")
    await db.refresh(credential)

    logger.info(f"Created credential {credential.name} in {organization.name}")
    return CredentialSchema(id=credential.id, name=credential.name, organization=organization.name, data=data.data)


@router.get("/credentials/{credential_id}", response_model=CredentialSchema)
async def get_credential(
    credential_id: uuid.UUID,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    credential, organization = await _get_credential(db, credential_id)
    await authorize(db, user.id, organization.name)

    return CredentialSchema(
        id=credential.id,
        name=credential.name,
        organization=organization.name,
        data=container.crypto.open(credential.data),
    )


@router.delete("/credentials/{credential_id}", status_code=204)
async def delete_credential(
    credential_id: uuid.UUID,
    user: User = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    credential, organization = await _get_credential(db, credential_id)
    await authorize(db, user.id, organization.name, write=True)

    await db.delete(credential)
    await db.commit()

    logger.info(f"Deleted credential {credential.name} from {organization.name}")
    return Response(status_code=204)
