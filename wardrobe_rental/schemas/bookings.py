from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict


class BookingLineDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    productID: int
    deliveryDate: date
    returnDate: date


class CreateBookingDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    customerName: str
    phoneNumberPrimary: str
    phoneNumberSecondary: Optional[str] = None
    notes: Optional[str] = None
    organizationID: Optional[int] = None
    products: List[BookingLineDto] = []
    discount: float = 0
    discountType: Literal["flat", "percent"] = "flat"
    securityDeposit: float = 0
    advancePayment: float = 0
    additionalCharges: float = 0
    rentalType: Optional[str] = None
    advancePaymentMethod: Optional[str] = None


class UpdateBookingLineDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    productID: int
    productLockID: Optional[int] = None
    deliveryDate: Optional[date] = None
    returnDate: Optional[date] = None


class UpdateBookingDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    customerName: Optional[str] = None
    phoneNumberPrimary: Optional[str] = None
    phoneNumberSecondary: Optional[str] = None
    notes: Optional[str] = None
    rentAmount: Optional[float] = None
    totalDeposit: Optional[float] = None
    securityDeposit: Optional[float] = None
    returnAmount: Optional[float] = None
    advancePayment: Optional[float] = None
    discount: Optional[float] = None
    discountType: Optional[Literal["flat", "percent"]] = None
    additionalCharges: Optional[float] = None
    rentalType: Optional[str] = None
    advancePaymentMethod: Optional[str] = None
    deliveryPaymentMethod: Optional[str] = None
    returnPaymentMethod: Optional[str] = None
    products: Optional[List[UpdateBookingLineDto]] = None
