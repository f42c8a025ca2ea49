from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class OrganizationUpdateDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    organizationID: int
    organizationName: Optional[str] = None
    ownerName: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    logo: Optional[str] = None
    billingRules: Optional[List[str]] = None
