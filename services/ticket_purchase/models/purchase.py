"""Modelos Pydantic para compra de entradas"""
from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from decimal import Decimal


class SeatSelection(BaseModel):
    seat_id: UUID
    price: Decimal = Field(default=Decimal("0"), ge=0)


class TableSelection(BaseModel):
    table_id: UUID
    seat_count: Optional[int] = Field(default=None, ge=1)  # Por defecto, las sillas de la mesa
    price: Decimal = Field(default=Decimal("0"), ge=0)


class AreaSelection(BaseModel):
    area_id: UUID
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)


class PurchaseRequest(BaseModel):
    event_id: UUID
    buyer_name: str = Field(min_length=1, max_length=255)
    buyer_email: Optional[EmailStr] = None
    buyer_phone: Optional[str] = Field(default=None, max_length=50)
    quantity: int = Field(ge=1)
    total: Decimal = Field(ge=0)  # Precio final ya calculado (cupones fuera del núcleo)
    seats: List[SeatSelection] = Field(default_factory=list)
    tables: List[TableSelection] = Field(default_factory=list)
    areas: List[AreaSelection] = Field(default_factory=list)


class SeatReservationOut(BaseModel):
    id: UUID
    seat_id: UUID
    seat_number: Optional[int] = None
    table_number: Optional[int] = None
    price: Decimal
    state: str
    scan_code: Optional[str] = None
    scanned: bool = False
    scanned_at: Optional[datetime] = None


class TableReservationOut(BaseModel):
    id: UUID
    table_id: UUID
    table_number: Optional[int] = None
    seat_count: int
    price: Decimal
    state: str
    scan_code: Optional[str] = None
    scanned: bool = False
    scanned_at: Optional[datetime] = None


class AreaAdmissionOut(BaseModel):
    id: UUID
    area_id: UUID
    area_name: Optional[str] = None
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    state: str
    scan_code: Optional[str] = None
    scanned: bool = False
    scanned_at: Optional[datetime] = None


class GeneralTicketOut(BaseModel):
    id: UUID
    scan_code: str
    scanned: bool = False
    scanned_at: Optional[datetime] = None


class PurchaseResponse(BaseModel):
    id: UUID
    code: str
    event_id: UUID
    buyer_name: str
    buyer_email: Optional[str] = None
    buyer_phone: Optional[str] = None
    quantity: int
    total: Decimal
    state: str
    created_at: datetime
    paid_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    seats: List[SeatReservationOut] = Field(default_factory=list)
    tables: List[TableReservationOut] = Field(default_factory=list)
    areas: List[AreaAdmissionOut] = Field(default_factory=list)
    general_tickets: List[GeneralTicketOut] = Field(default_factory=list)


class PurchaseSummary(BaseModel):
    id: UUID
    code: str
    event_id: UUID
    event_title: Optional[str] = None
    buyer_name: str
    buyer_email: Optional[str] = None
    quantity: int
    total: Decimal
    state: str
    created_at: datetime
    total_seats: int = 0
    total_tables: int = 0
    total_areas: int = 0
    total_general: int = 0


class AreaOccupancy(BaseModel):
    area_id: UUID
    name: str
    capacity: int
    reserved: int
    available: int


class OccupiedInventoryResponse(BaseModel):
    event_id: UUID
    seats: List[UUID]
    tables: List[UUID]
    areas: List[AreaOccupancy] = Field(default_factory=list)


class AckResponse(BaseModel):
    success: bool = True
    message: str
