"""Rutas de compra de entradas"""
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, List, Optional
from uuid import UUID
import logging
from shared.database.session import get_db
from shared.auth.dependencies import get_current_admin, get_optional_user
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_purchase.models.purchase import (
    PurchaseRequest,
    PurchaseResponse,
    PurchaseSummary,
    OccupiedInventoryResponse,
    AckResponse,
)
from services.ticket_purchase.services.purchase_service import PurchaseService
from services.ticket_purchase.services.confirmation_service import ConfirmationService

logger = logging.getLogger(__name__)

router = APIRouter()

PURCHASE_STATE_PATTERN = "^(PENDING_PAYMENT|PAYMENT_CONFIRMED|CANCELLED|ENTRY_USED)$"


@router.post("", response_model=PurchaseResponse, status_code=201)
@limiter.limit(RATE_LIMITS["purchase"])
async def create_purchase(
    request: Request,  # Necesario para rate limiter
    purchase_request: PurchaseRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Optional[Dict] = Depends(get_optional_user)
):
    """
    Crear compra pendiente de pago reclamando asientos, mesas o cupos.

    La compra puede ser anónima; el precio total llega ya calculado.
    """
    if current_user:
        logger.info(f"Compra iniciada por usuario {current_user['user_id']}")
    service = PurchaseService()
    return await service.create_purchase(db, purchase_request)


@router.get("/code/{code}", response_model=PurchaseResponse)
@limiter.limit(RATE_LIMITS["public"])
async def get_purchase_by_code(
    request: Request,
    code: str,
    db: AsyncSession = Depends(get_db),
):
    """Consultar una compra por su código externo (ENT-...)"""
    return await PurchaseService().get_purchase_by_code(db, code)


@router.get("/events/{event_id}/occupied", response_model=OccupiedInventoryResponse)
@limiter.limit(RATE_LIMITS["public"])
async def get_occupied_inventory(
    request: Request,
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Asientos y mesas no disponibles, y cupo restante por área de pie"""
    return await PurchaseService().get_occupied_inventory(db, event_id)


@router.get("", response_model=List[PurchaseSummary])
async def list_purchases(
    state: Optional[str] = Query(default=None, pattern=PURCHASE_STATE_PATTERN),
    event_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """Listar compras (más nuevas primero). ENTRY_USED = confirmadas y totalmente escaneadas"""
    return await PurchaseService().list_purchases(db, state=state, event_id=event_id)


@router.get("/{purchase_id}", response_model=PurchaseResponse)
async def get_purchase(
    purchase_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    return await PurchaseService().get_purchase(db, purchase_id)


@router.post("/{purchase_id}/confirm", response_model=PurchaseResponse)
@limiter.limit(RATE_LIMITS["admin"])
async def confirm_payment(
    request: Request,
    purchase_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """
    Confirmar el pago de una compra pendiente y emitir los códigos de escaneo.

    Una segunda confirmación responde 400 (state_conflict) sin emitir nada.
    """
    logger.info(f"Confirmación de compra {purchase_id} solicitada por {current_user['user_id']}")
    return await ConfirmationService().confirm_payment(db, purchase_id)


@router.post("/{purchase_id}/cancel", response_model=AckResponse)
@limiter.limit(RATE_LIMITS["admin"])
async def cancel_purchase(
    request: Request,
    purchase_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    purchase = await PurchaseService().cancel_purchase(db, purchase_id)
    return AckResponse(message=f"Compra {purchase.code} cancelada, inventario liberado")


@router.delete("/{purchase_id}", response_model=AckResponse)
@limiter.limit(RATE_LIMITS["admin"])
async def delete_purchase(
    request: Request,
    purchase_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """Eliminar definitivamente una compra con sus reservas, entradas y escaneos"""
    code = await PurchaseService().delete_purchase(db, purchase_id)
    logger.warning(f"Compra {code} eliminada por {current_user['user_id']}")
    return AckResponse(message=f"Compra {code} eliminada")
