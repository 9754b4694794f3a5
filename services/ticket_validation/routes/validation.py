"""Rutas de control de acceso (escaneo de entradas en la puerta)"""
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, Optional
from uuid import UUID
from shared.database.session import get_db
from shared.auth.dependencies import get_current_admin, get_current_scanner
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_validation.models.ticket import (
    LookupRequest,
    ScanRequest,
    MarkUsedRequest,
    UnmarkRequest,
    ScanReferenceRequest,
    TicketInfo,
    ScanResult,
    PendingEntriesResponse,
    ScannedEntriesResponse,
)
from services.ticket_validation.services.ticket_service import TicketValidationService


router = APIRouter()


def scan_response(result: ScanResult):
    """Una entrada ya utilizada se informa como 409 con already_used en el cuerpo"""
    if result.already_used:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "error": "already_used",
                "detail": result.message,
                "already_used": True,
                "ticket": result.ticket.model_dump(mode="json"),
            },
        )
    return result


@router.post("/lookup", response_model=TicketInfo)
@limiter.limit(RATE_LIMITS["checkin"])
async def lookup_ticket(
    request: Request,
    body: LookupRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_scanner)
):
    """Buscar una entrada por su código de 5 dígitos (no la marca)"""
    return await TicketValidationService().lookup_by_code(db, body.code)


@router.post("/mark-used", response_model=ScanResult, responses={409: {"description": "Entrada ya utilizada"}})
@limiter.limit(RATE_LIMITS["checkin"])
async def mark_used(
    request: Request,
    body: MarkUsedRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_scanner)
):
    result = await TicketValidationService().mark_used(
        db,
        code=body.code,
        unit_type=body.unit_type,
        unit_id=body.unit_id,
        actor_id=current_user["user_id"],
    )
    return scan_response(result)


@router.post("/unmark-used", response_model=TicketInfo)
async def unmark_used(
    body: UnmarkRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """Revertir un escaneo. Requiere admin; el historial de auditoría se conserva"""
    return await TicketValidationService().unmark_used(db, body.code, body.unit_type, body.unit_id)


@router.post("/scan", response_model=ScanResult, responses={409: {"description": "Entrada ya utilizada"}})
@limiter.limit(RATE_LIMITS["checkin"])
async def scan_ticket(
    request: Request,
    body: ScanRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_scanner)
):
    """Buscar y marcar en un solo paso"""
    result = await TicketValidationService().scan_by_code(db, body.code, actor_id=current_user["user_id"])
    return scan_response(result)


@router.post("/scan-reference", response_model=ScanResult, responses={409: {"description": "Entrada ya utilizada"}})
@limiter.limit(RATE_LIMITS["checkin"])
async def scan_by_reference(
    request: Request,
    body: ScanReferenceRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_scanner)
):
    """QR antiguo con compra, evento y asiento opcional"""
    result = await TicketValidationService().scan_by_reference(
        db,
        purchase_id=body.purchase_id,
        event_id=body.event_id,
        seat_id=body.seat_id,
        actor_id=current_user["user_id"],
    )
    return scan_response(result)


@router.get("/events/{event_id}/pending", response_model=PendingEntriesResponse)
async def list_pending_entries(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_scanner)
):
    return await TicketValidationService().list_pending_entries(db, event_id)


@router.get("/scanned", response_model=ScannedEntriesResponse)
async def list_scanned_entries(
    event_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_scanner)
):
    """Entradas ya escaneadas (opcionalmente de un evento), más recientes primero"""
    return await TicketValidationService().list_scanned_entries(db, event_id)
