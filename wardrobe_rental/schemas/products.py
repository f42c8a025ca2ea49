from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict


ProductStatus = Literal["available", "in laundry", "archived"]


class ProductCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    sku: str
    description: Optional[str] = None
    price: float = 0
    gender: Optional[str] = None
    category: Optional[str] = None
    size: List[str] = []
    images: List[str] = []
    status: ProductStatus = "available"
    organizationID: Optional[int] = None


class ProductUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    sku: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    gender: Optional[str] = None
    category: Optional[str] = None
    size: Optional[List[str]] = None
    images: Optional[List[str]] = None
    status: Optional[ProductStatus] = None
