"""Confirmación de pago y emisión de códigos de escaneo"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from uuid import UUID, uuid4
import logging

from shared.database.models import (
    Purchase, SeatReservation, TableReservation, AreaAdmission, GeneralAdmissionTicket,
    PURCHASE_PENDING, PURCHASE_CONFIRMED, RESERVATION_RESERVED, RESERVATION_CONFIRMED,
    UNIT_SEAT, UNIT_TABLE, UNIT_AREA, UNIT_GENERAL,
    utcnow,
)
from shared.database.session import atomic
from shared.errors import CodeGenerationError, StateConflictError
from shared.utils.codes import CodeGenerator
from services.ticket_purchase.models.purchase import PurchaseResponse
from services.ticket_purchase.services.inventory_service import InventoryService
from services.ticket_purchase.services.purchase_service import (
    RESERVATION_TABLES, load_purchase, lock_purchase, purchase_to_response,
)

logger = logging.getLogger(__name__)

UNIT_TYPE_BY_MODEL = {
    SeatReservation: UNIT_SEAT,
    TableReservation: UNIT_TABLE,
    AreaAdmission: UNIT_AREA,
}


class ConfirmationService:
    """Aplica la señal de "pago confirmado" que entrega el colaborador de pagos"""

    def __init__(self):
        self.inventory_service = InventoryService()

    async def confirm_payment(self, db: AsyncSession, purchase_id: UUID) -> PurchaseResponse:
        """
        Confirmar una compra pendiente.

        - Compra -> PAYMENT_CONFIRMED con paid_at y confirmed_at
        - Cada reserva (asiento, mesa, área) -> CONFIRMED con su propio código de 5 dígitos
        - Sin reservas: se emiten exactamente `quantity` entradas generales

        La fila de la compra queda bloqueada: de dos confirmaciones concurrentes
        la segunda ve el estado nuevo y falla con StateConflictError sin emitir nada.
        """
        try:
            async with atomic(db):
                purchase = await lock_purchase(db, purchase_id)
                if purchase.state != PURCHASE_PENDING:
                    raise StateConflictError(
                        "Solo se pueden confirmar compras pendientes de pago",
                        current_state=purchase.state,
                    )

                now = utcnow()
                purchase.state = PURCHASE_CONFIRMED
                purchase.paid_at = purchase.paid_at or now
                purchase.confirmed_at = now

                codes = CodeGenerator(db)
                reservations = []
                for model in RESERVATION_TABLES:
                    result = await db.execute(
                        select(model)
                        .where(model.purchase_id == purchase.id)
                        .order_by(model.created_at, model.id)
                    )
                    reservations.extend((UNIT_TYPE_BY_MODEL[model], r) for r in result.scalars().all())

                issued = 0
                if reservations:
                    for unit_type, reservation in reservations:
                        if reservation.state != RESERVATION_RESERVED:
                            continue
                        reservation.state = RESERVATION_CONFIRMED
                        reservation.scan_code = await codes.scan_code(unit_type, reservation.id, purchase.id)
                        issued += 1
                else:
                    for _ in range(purchase.quantity):
                        ticket_id = uuid4()
                        db.add(GeneralAdmissionTicket(
                            id=ticket_id,
                            purchase_id=purchase.id,
                            scan_code=await codes.scan_code(UNIT_GENERAL, ticket_id, purchase.id),
                        ))
                        issued += 1

                await db.flush()
                event_id = purchase.event_id
        except IntegrityError as e:
            # Otra confirmación registró el mismo código entre la consulta y el insert
            logger.error(f"Colisión de código al confirmar compra {purchase_id}: {e.orig}")
            raise CodeGenerationError(
                "No se pudo asignar un código de escaneo único, reintente la confirmación",
                {"purchase_id": str(purchase_id)},
            )

        logger.info(f"Compra {purchase.code} confirmada, {issued} códigos emitidos")
        await self.inventory_service.invalidate_occupied(event_id)

        purchase = await load_purchase(db, Purchase.id == purchase_id)
        return purchase_to_response(purchase)
