"""Modelos Pydantic para control de acceso (escaneo de entradas)"""
from pydantic import BaseModel, Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime


class LookupRequest(BaseModel):
    code: str = Field(max_length=20)  # Se normaliza y valida (5 dígitos) en el servicio


class ScanRequest(BaseModel):
    code: str = Field(max_length=20)


class MarkUsedRequest(BaseModel):
    code: str = Field(max_length=20)
    unit_type: str
    unit_id: UUID


class UnmarkRequest(BaseModel):
    code: str = Field(max_length=20)
    unit_type: str
    unit_id: UUID


class ScanReferenceRequest(BaseModel):
    """Formato QR antiguo: {compra, evento, asiento opcional}"""
    purchase_id: UUID
    event_id: UUID
    seat_id: Optional[UUID] = None


class TicketInfo(BaseModel):
    unit_type: str  # SEAT, TABLE, AREA, GENERAL
    unit_id: UUID
    scan_code: str
    purchase_id: UUID
    purchase_code: str
    event_id: UUID
    event_title: Optional[str] = None
    buyer_name: str
    buyer_email: Optional[str] = None
    seat_number: Optional[int] = None
    table_number: Optional[int] = None
    seat_count: Optional[int] = None
    area_name: Optional[str] = None
    quantity: int = 1
    scanned: bool = False
    scanned_at: Optional[datetime] = None
    scanned_by: Optional[str] = None


class ScanResult(BaseModel):
    success: bool
    already_used: bool = False
    message: str
    ticket: TicketInfo


class PendingEntriesResponse(BaseModel):
    event_id: UUID
    seats: List[TicketInfo] = Field(default_factory=list)
    tables: List[TicketInfo] = Field(default_factory=list)
    areas: List[TicketInfo] = Field(default_factory=list)
    general: List[TicketInfo] = Field(default_factory=list)
    total_pending: int = 0


class ScannedEntriesResponse(BaseModel):
    """Entradas ya escaneadas, más recientes primero; event_id nulo = todos los eventos"""
    event_id: Optional[UUID] = None
    seats: List[TicketInfo] = Field(default_factory=list)
    tables: List[TicketInfo] = Field(default_factory=list)
    areas: List[TicketInfo] = Field(default_factory=list)
    general: List[TicketInfo] = Field(default_factory=list)
    total_scanned: int = 0
    audit_entries: int = 0  # Escaneos efectivos registrados (incluye los revertidos luego)
