from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


PRODUCT_STATUSES = ("available", "in laundry", "archived")


class Organization(Base):
    __tablename__ = "Organizations"

    OrganizationID = Column(Integer, primary_key=True)
    OrganizationName = Column(String(255), nullable=False)
    OwnerName = Column(String(255))
    Description = Column(String(1000))
    Email = Column(String(255), unique=True)
    ContactNumber = Column(String(50))
    Address = Column(String(500))
    Logo = Column(String(1000))
    BillingRules = Column(String)
    IsActive = Column(Boolean, default=True)
    ActiveTill = Column(Date)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Products = relationship("Product", back_populates="Organization")
    Bookings = relationship("Booking", back_populates="Organization")
    Users = relationship("User", back_populates="Organization")


class Product(Base):
    __tablename__ = "Products"

    ProductID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False)
    SKU = Column(String(100), nullable=False)
    Description = Column(String(1000))
    Price = Column(Numeric(10, 2), nullable=False, default=0)
    Gender = Column(String(50))
    Category = Column(String(100))
    Sizes = Column(String)
    Images = Column(String)
    Status = Column(String(20), nullable=False, default="available")
    IsDeleted = Column(Boolean, nullable=False, default=False)
    OrganizationID = Column(Integer, ForeignKey("Organizations.OrganizationID"))
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Organization = relationship("Organization", back_populates="Products")
    ProductLocks = relationship("ProductLock", back_populates="Product")


class Booking(Base):
    __tablename__ = "Bookings"
    __table_args__ = (UniqueConstraint("InvoiceNumber", name="uq_bookings_invoice_number"),)

    BookingID = Column(Integer, primary_key=True)
    BookingCode = Column(String(50), nullable=False)
    CustomerName = Column(String(255), nullable=False)
    PhoneNumberPrimary = Column(String(50), nullable=False)
    PhoneNumberSecondary = Column(String(50))
    InvoiceNumber = Column(Integer, nullable=False)
    Notes = Column(String(2000))
    RentAmount = Column(Numeric(12, 2), default=0)
    TotalDeposit = Column(Numeric(12, 2), default=0)
    SecurityDeposit = Column(Numeric(12, 2), default=0)
    ReturnAmount = Column(Numeric(12, 2), default=0)
    AdvancePayment = Column(Numeric(12, 2), default=0)
    Discount = Column(Numeric(12, 2), default=0)
    DiscountType = Column(String(20), default="flat")
    AdditionalCharges = Column(Numeric(12, 2), default=0)
    RentalType = Column(String(100))
    AdvancePaymentMethod = Column(String(50))
    DeliveryPaymentMethod = Column(String(50))
    ReturnPaymentMethod = Column(String(50))
    OrganizationID = Column(Integer, ForeignKey("Organizations.OrganizationID"))
    IsDeleted = Column(Boolean, nullable=False, default=False)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Organization = relationship("Organization", back_populates="Bookings")
    ProductLocks = relationship(
        "ProductLock",
        back_populates="Booking",
        cascade="all, delete-orphan",
        order_by="ProductLock.ProductLockID",
    )


class ProductLock(Base):
    __tablename__ = "ProductLocks"
    __table_args__ = (Index("ix_product_locks_product_window", "ProductID", "DeliveryDate", "ReturnDate"),)

    ProductLockID = Column(Integer, primary_key=True)
    BookingID = Column(Integer, ForeignKey("Bookings.BookingID", ondelete="CASCADE"), nullable=False)
    ProductID = Column(Integer, ForeignKey("Products.ProductID"), nullable=False)
    DeliveryDate = Column(Date, nullable=False)
    ReturnDate = Column(Date, nullable=False)
    CreatedDate = Column(DateTime, server_default=func.now())

    Booking = relationship("Booking", back_populates="ProductLocks")
    Product = relationship("Product", back_populates="ProductLocks")


class User(Base):
    __tablename__ = "Users"

    UserID = Column(Integer, primary_key=True)
    Name = Column(String(255))
    Email = Column(String(255), nullable=False, unique=True)
    PasswordHash = Column(String(256))
    PasswordSalt = Column(String(64))
    PasswordUpdatedAt = Column(Integer)
    Role = Column(String(50), nullable=False, default="staff")
    IsActive = Column(Boolean, default=True)
    OrganizationID = Column(Integer, ForeignKey("Organizations.OrganizationID"))
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())

    Organization = relationship("Organization", back_populates="Users")


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserID = Column(Integer)
    CreatedAt = Column(DateTime, server_default=func.now())
