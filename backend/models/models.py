from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Enum, Boolean, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from db import Base


class DeliveryStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class ReturnType(str, enum.Enum):
    TOTAL = "TOTAL"
    PARTIAL = "PARTIAL"


class NotificationType(str, enum.Enum):
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"


TERMINAL_STATUSES = (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED)
ADMIN_RECIPIENT = "ADMIN"


class Driver(Base):
    __tablename__ = "drivers"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    hashed_password = Column(String)
    last_lat = Column(Float)
    last_lng = Column(Float)
    last_location_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    invoices = relationship("Invoice", back_populates="driver")

    @property
    def has_password(self) -> bool:
        return bool(self.hashed_password)


class Vehicle(Base):
    __tablename__ = "vehicles"
    id = Column(Integer, primary_key=True)
    plate = Column(String, nullable=False)
    model = Column(String, nullable=False)
    invoices = relationship("Invoice", back_populates="vehicle")


class Invoice(Base):
    __tablename__ = "invoices"
    id = Column(Integer, primary_key=True)
    access_key = Column(String, unique=True, nullable=False, index=True)
    number = Column(String, nullable=False)
    series = Column(String, default="0")
    customer_name = Column(String, nullable=False)
    customer_doc = Column(String)
    customer_address = Column(String)
    customer_zip = Column(String)
    value = Column(Float, default=0)
    status = Column(Enum(DeliveryStatus), default=DeliveryStatus.PENDING, nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    driver = relationship("Driver", back_populates="invoices")
    vehicle = relationship("Vehicle", back_populates="invoices")
    items = relationship("InvoiceItem", back_populates="invoice",
                         order_by="InvoiceItem.position",
                         cascade="all, delete-orphan")
    proof = relationship("DeliveryProof", back_populates="invoice", uselist=False,
                         cascade="all, delete-orphan")


class InvoiceItem(Base):
    __tablename__ = "invoice_items"
    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False)
    position = Column(Integer, nullable=False)
    code = Column(String)
    name = Column(String)
    quantity = Column(Float)
    unit = Column(String)
    unit_value = Column(Float)
    value = Column(Float)
    invoice = relationship("Invoice", back_populates="items")


class DeliveryProof(Base):
    __tablename__ = "delivery_proofs"
    # One proof per invoice: the invoice id is the primary key
    invoice_id = Column(Integer, ForeignKey("invoices.id"), primary_key=True)
    receiver_name = Column(String)
    receiver_doc = Column(String)
    signature_data = Column(Text)
    photo_url = Column(Text)
    photo_stub_url = Column(Text)
    failure_reason = Column(String)
    return_type = Column(Enum(ReturnType))
    return_items = Column(Text)
    loss_amount = Column(Float, default=0, nullable=False)
    geo_lat = Column(Float)
    geo_long = Column(Float)
    notes = Column(String)
    delivered_at = Column(DateTime(timezone=True), nullable=False)
    invoice = relationship("Invoice", back_populates="proof")


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(Integer, primary_key=True)
    recipient_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    type = Column(Enum(NotificationType), default=NotificationType.INFO, nullable=False)
    read = Column(Boolean, default=False, nullable=False, server_default='0')
    claim_token = Column(String, index=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now())
