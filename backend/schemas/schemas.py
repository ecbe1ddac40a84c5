from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from models.models import DeliveryStatus, ReturnType, NotificationType


class Token(BaseModel):
    access_token: str
    token_type: str
    role: str
    subject: str


class AdminLogin(BaseModel):
    password: str


class DriverLogin(BaseModel):
    driver_id: int
    password: str = ""


class DriverCreate(BaseModel):
    name: str
    password: Optional[str] = None


class DriverOut(BaseModel):
    id: int
    name: str
    has_password: bool = False
    last_lat: Optional[float] = None
    last_lng: Optional[float] = None
    last_location_at: Optional[datetime] = None
    class Config:
        from_attributes = True


class LocationUpdate(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class VehicleCreate(BaseModel):
    plate: str
    model: str


class VehicleOut(BaseModel):
    id: int
    plate: str
    model: str
    class Config:
        from_attributes = True


class InvoiceItemOut(BaseModel):
    position: int
    code: Optional[str] = None
    name: Optional[str] = None
    quantity: Optional[float] = None
    unit: Optional[str] = None
    unit_value: Optional[float] = None
    value: Optional[float] = None
    class Config:
        from_attributes = True


class InvoiceOut(BaseModel):
    id: int
    access_key: str
    number: str
    series: Optional[str] = None
    customer_name: str
    customer_doc: Optional[str] = None
    customer_address: Optional[str] = None
    customer_zip: Optional[str] = None
    value: Optional[float] = None
    status: DeliveryStatus
    driver_id: Optional[int] = None
    vehicle_id: Optional[int] = None
    created_at: Optional[datetime] = None
    items: List[InvoiceItemOut] = []
    class Config:
        from_attributes = True


class LogisticsUpdate(BaseModel):
    driver_id: Optional[int] = None
    vehicle_id: Optional[int] = None


class BulkAssign(BaseModel):
    invoice_ids: List[int]
    driver_id: Optional[int] = None
    vehicle_id: Optional[int] = None


class BulkAssignResult(BaseModel):
    updated: List[int]
    skipped: List[int]


class BulkDelete(BaseModel):
    invoice_ids: List[int]


class AccessKeyImport(BaseModel):
    access_key: str


class ImportDetail(BaseModel):
    filename: str
    status: str
    message: Optional[str] = None
    invoice_id: Optional[int] = None
    access_key: Optional[str] = None
    number: Optional[str] = None


class ImportSummary(BaseModel):
    total: int
    success: int
    duplicates: int
    errors: int
    details: List[ImportDetail]


class RouteStarted(BaseModel):
    started: int


class ProofCreate(BaseModel):
    delivered: bool
    receiver_name: Optional[str] = None
    receiver_doc: Optional[str] = None
    signature_data: Optional[str] = None
    photo_url: Optional[str] = None
    photo_stub_url: Optional[str] = None
    failure_reason: Optional[str] = None
    return_type: Optional[ReturnType] = None
    return_items: Optional[str] = None
    selected_items: List[int] = []
    geo_lat: Optional[float] = None
    geo_long: Optional[float] = None
    notes: Optional[str] = None


class ProofOut(BaseModel):
    invoice_id: int
    receiver_name: Optional[str] = None
    receiver_doc: Optional[str] = None
    signature_data: Optional[str] = None
    photo_url: Optional[str] = None
    photo_stub_url: Optional[str] = None
    failure_reason: Optional[str] = None
    return_type: Optional[ReturnType] = None
    return_items: Optional[str] = None
    loss_amount: float = 0
    geo_lat: Optional[float] = None
    geo_long: Optional[float] = None
    notes: Optional[str] = None
    delivered_at: datetime
    map_url: Optional[str] = None
    class Config:
        from_attributes = True


class InvoiceLinks(BaseModel):
    google_maps: str
    waze: str
    whatsapp: str


class RouteLink(BaseModel):
    url: Optional[str] = None
    stops: int


class NotificationOut(BaseModel):
    id: int
    recipient_id: str
    title: str
    message: str
    type: NotificationType
    read: bool
    timestamp: Optional[datetime] = None
    class Config:
        from_attributes = True


class DriverRanking(BaseModel):
    id: int
    name: str
    value: float
    count: int


class DashboardStats(BaseModel):
    total_delivered: float
    total_failed: float
    total_loss: float
    pending: int
    in_progress: int
    delivered: int
    failed: int
    ranking: List[DriverRanking]
