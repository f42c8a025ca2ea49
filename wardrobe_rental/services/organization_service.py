from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.rental_models import Organization
from schemas.organization import OrganizationUpdateDto
from services.ledger_errors import NotFoundError
from services.media_service import store_data_url_image


def _parse_rules(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (ValueError, json.JSONDecodeError):
        return [raw]
    return [str(item) for item in parsed] if isinstance(parsed, list) else [str(parsed)]


def serialize_organization(organization: Organization) -> dict:
    return {
        "organizationID": organization.OrganizationID,
        "organizationName": organization.OrganizationName,
        "ownerName": organization.OwnerName,
        "description": organization.Description,
        "email": organization.Email,
        "contactNumber": organization.ContactNumber,
        "address": organization.Address,
        "logo": organization.Logo,
        "billingRules": _parse_rules(organization.BillingRules),
        "isActive": bool(organization.IsActive),
        "activeTill": organization.ActiveTill,
    }


def get_organization(db: Session, organization_id: int) -> Organization:
    organization = db.get(Organization, organization_id)
    if not organization:
        raise NotFoundError("Organization not found")
    return organization


def list_organizations(db: Session) -> list[Organization]:
    return list(db.execute(select(Organization).order_by(Organization.OrganizationID)).scalars().all())


def primary_organization(db: Session, organization_id: int | None = None) -> Organization | None:
    if organization_id:
        organization = db.get(Organization, organization_id)
        if organization:
            return organization
    return db.execute(select(Organization).order_by(Organization.OrganizationID).limit(1)).scalars().first()


def update_organization(db: Session, payload: OrganizationUpdateDto) -> Organization:
    organization = get_organization(db, payload.organizationID)
    changes = payload.model_dump(exclude_unset=True, exclude={"organizationID"})
    if "organizationName" in changes and changes["organizationName"]:
        organization.OrganizationName = changes["organizationName"].strip()
    if "ownerName" in changes:
        organization.OwnerName = changes["ownerName"]
    if "description" in changes:
        organization.Description = changes["description"]
    if "address" in changes:
        organization.Address = changes["address"]
    if changes.get("logo"):
        logo = changes["logo"].strip()
        organization.Logo = store_data_url_image(logo, "organization") if logo.startswith("data:") else logo
    if "billingRules" in changes:
        organization.BillingRules = json.dumps(changes["billingRules"] or [], ensure_ascii=True)
    organization.UpdatedDate = datetime.now()
    db.commit()
    return organization
