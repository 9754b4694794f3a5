"""Servicio principal de compra de entradas: creación, consulta, cancelación y borrado"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, delete, update, exists, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from typing import List, Optional
from uuid import UUID
import logging

from shared.database.models import (
    Event, Seat, Purchase, SeatReservation, TableReservation, AreaAdmission,
    GeneralAdmissionTicket, ScanAuditEntry, RedeemableCode,
    PURCHASE_PENDING, PURCHASE_CONFIRMED, PURCHASE_CANCELLED, PURCHASE_STATES,
    PURCHASE_ENTRY_USED, RESERVATION_CANCELLED, EVENT_GENERAL,
)
from shared.database.session import atomic
from shared.errors import ConflictError, NotFoundError, StateConflictError, ValidationError
from shared.utils.codes import CodeGenerator
from services.ticket_purchase.models.purchase import (
    PurchaseRequest, PurchaseResponse, PurchaseSummary,
    SeatReservationOut, TableReservationOut, AreaAdmissionOut, GeneralTicketOut,
)
from services.ticket_purchase.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)

# Tablas que cuelgan de una compra (las unidades canjeables)
UNIT_MODELS = (SeatReservation, TableReservation, AreaAdmission, GeneralAdmissionTicket)
RESERVATION_TABLES = (SeatReservation, TableReservation, AreaAdmission)


def purchase_to_response(purchase: Purchase) -> PurchaseResponse:
    """Serializar una compra con sus relaciones ya cargadas (ver load_purchase)"""
    return PurchaseResponse(
        id=purchase.id,
        code=purchase.code,
        event_id=purchase.event_id,
        buyer_name=purchase.buyer_name,
        buyer_email=purchase.buyer_email,
        buyer_phone=purchase.buyer_phone,
        quantity=purchase.quantity,
        total=purchase.total,
        state=purchase.state,
        created_at=purchase.created_at,
        paid_at=purchase.paid_at,
        confirmed_at=purchase.confirmed_at,
        seats=[
            SeatReservationOut(
                id=r.id,
                seat_id=r.seat_id,
                seat_number=r.seat.seat_number if r.seat else None,
                table_number=r.seat.table.table_number if r.seat and r.seat.table else None,
                price=r.price,
                state=r.state,
                scan_code=r.scan_code,
                scanned=r.scanned,
                scanned_at=r.scanned_at,
            )
            for r in purchase.seat_reservations
        ],
        tables=[
            TableReservationOut(
                id=r.id,
                table_id=r.table_id,
                table_number=r.table.table_number if r.table else None,
                seat_count=r.seat_count,
                price=r.price,
                state=r.state,
                scan_code=r.scan_code,
                scanned=r.scanned,
                scanned_at=r.scanned_at,
            )
            for r in purchase.table_reservations
        ],
        areas=[
            AreaAdmissionOut(
                id=r.id,
                area_id=r.area_id,
                area_name=r.area.name if r.area else None,
                quantity=r.quantity,
                unit_price=r.unit_price,
                total_price=r.total_price,
                state=r.state,
                scan_code=r.scan_code,
                scanned=r.scanned,
                scanned_at=r.scanned_at,
            )
            for r in purchase.area_admissions
        ],
        general_tickets=[
            GeneralTicketOut(
                id=t.id,
                scan_code=t.scan_code,
                scanned=t.scanned,
                scanned_at=t.scanned_at,
            )
            for t in purchase.general_tickets
        ],
    )


async def load_purchase(db: AsyncSession, *criteria) -> Optional[Purchase]:
    """Cargar una compra con todas sus reservas y entradas (recarga el identity map)"""
    stmt = (
        select(Purchase)
        .where(*criteria)
        .options(
            selectinload(Purchase.seat_reservations).selectinload(SeatReservation.seat).selectinload(Seat.table),
            selectinload(Purchase.table_reservations).selectinload(TableReservation.table),
            selectinload(Purchase.area_admissions).selectinload(AreaAdmission.area),
            selectinload(Purchase.general_tickets),
        )
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def lock_purchase(db: AsyncSession, purchase_id: UUID) -> Purchase:
    """SELECT ... FOR UPDATE sobre la compra; serializa confirmación, cancelación y borrado"""
    stmt = select(Purchase).where(Purchase.id == purchase_id).with_for_update()
    result = await db.execute(stmt)
    purchase = result.scalar_one_or_none()
    if not purchase:
        raise NotFoundError("Compra no encontrada", {"purchase_id": str(purchase_id)})
    return purchase


def _has_units():
    return or_(*[exists().where(model.purchase_id == Purchase.id) for model in UNIT_MODELS])


def _has_unscanned_units():
    return or_(*[
        exists().where(model.purchase_id == Purchase.id, model.scanned.is_(False))
        for model in UNIT_MODELS
    ])


def _unit_count(model):
    return (
        select(func.count(model.id))
        .where(model.purchase_id == Purchase.id)
        .correlate(Purchase)
        .scalar_subquery()
    )


class PurchaseService:
    """Servicio para crear y administrar compras"""

    def __init__(self):
        self.inventory_service = InventoryService()

    async def create_purchase(self, db: AsyncSession, request: PurchaseRequest) -> PurchaseResponse:
        """
        Crear compra PENDING_PAYMENT reclamando todo el inventario seleccionado.

        Todo ocurre en una sola transacción: o queda la compra con todas sus
        reservas, o no queda nada.
        """
        self.inventory_service.validate_selection_shape(request)

        try:
            async with atomic(db):
                event = await self.inventory_service.lock_event(db, request.event_id)
                self.inventory_service.check_inventory_kind(event, request)
                if event.event_type == EVENT_GENERAL:
                    await self.inventory_service.check_general_capacity(db, event, request.quantity)

                code = await CodeGenerator(db).purchase_code()
                purchase = Purchase(
                    code=code,
                    event_id=event.id,
                    buyer_name=request.buyer_name.strip(),
                    buyer_email=request.buyer_email,
                    buyer_phone=request.buyer_phone,
                    quantity=request.quantity,
                    total=request.total,
                    state=PURCHASE_PENDING,
                )
                db.add(purchase)
                await db.flush()

                await self.inventory_service.reserve_units(db, event, purchase, request)
        except IntegrityError as e:
            # Otra transacción ganó la carrera por el mismo asiento/mesa (índice único parcial)
            logger.warning(f"Conflicto de integridad creando compra para evento {request.event_id}: {e.orig}")
            raise ConflictError(
                "Uno de los elementos seleccionados acaba de ser reservado por otra compra",
                {"event_id": str(request.event_id)},
            )

        logger.info(f"Compra {purchase.code} creada para evento {purchase.event_id}")
        await self.inventory_service.invalidate_occupied(purchase.event_id)
        return await self.get_purchase(db, purchase.id)

    async def get_purchase(self, db: AsyncSession, purchase_id: UUID) -> PurchaseResponse:
        purchase = await load_purchase(db, Purchase.id == purchase_id)
        if not purchase:
            raise NotFoundError("Compra no encontrada", {"purchase_id": str(purchase_id)})
        return purchase_to_response(purchase)

    async def get_purchase_by_code(self, db: AsyncSession, code: str) -> PurchaseResponse:
        code = (code or "").strip()
        purchase = await load_purchase(db, Purchase.code == code)
        if not purchase:
            raise NotFoundError("Compra no encontrada", {"code": code})
        return purchase_to_response(purchase)

    async def list_purchases(
        self,
        db: AsyncSession,
        state: Optional[str] = None,
        event_id: Optional[UUID] = None,
    ) -> List[PurchaseSummary]:
        """
        Listar compras, más nuevas primero.

        state acepta los tres estados almacenados y el derivado ENTRY_USED
        (compra confirmada con todas sus unidades escaneadas).
        """
        counts = {
            "total_seats": _unit_count(SeatReservation),
            "total_tables": _unit_count(TableReservation),
            "total_areas": _unit_count(AreaAdmission),
            "total_general": _unit_count(GeneralAdmissionTicket),
        }
        stmt = (
            select(Purchase, Event.title, *[c.label(name) for name, c in counts.items()])
            .join(Event, Purchase.event_id == Event.id)
            .order_by(Purchase.created_at.desc())
        )

        if state:
            if state == PURCHASE_ENTRY_USED:
                stmt = stmt.where(and_(
                    Purchase.state == PURCHASE_CONFIRMED,
                    _has_units(),
                    ~_has_unscanned_units(),
                ))
            elif state in PURCHASE_STATES:
                stmt = stmt.where(Purchase.state == state)
            else:
                raise ValidationError(f"Estado de compra inválido: {state}", field="state")

        if event_id:
            stmt = stmt.where(Purchase.event_id == event_id)

        result = await db.execute(stmt)
        summaries = []
        for row in result.all():
            purchase = row[0]
            summaries.append(PurchaseSummary(
                id=purchase.id,
                code=purchase.code,
                event_id=purchase.event_id,
                event_title=row.title,
                buyer_name=purchase.buyer_name,
                buyer_email=purchase.buyer_email,
                quantity=purchase.quantity,
                total=purchase.total,
                state=purchase.state,
                created_at=purchase.created_at,
                total_seats=row.total_seats or 0,
                total_tables=row.total_tables or 0,
                total_areas=row.total_areas or 0,
                total_general=row.total_general or 0,
            ))
        return summaries

    async def get_occupied_inventory(self, db: AsyncSession, event_id: UUID) -> dict:
        return await self.inventory_service.get_occupied_inventory(db, event_id)

    async def cancel_purchase(self, db: AsyncSession, purchase_id: UUID) -> PurchaseResponse:
        """Cancelar compra pendiente y liberar su inventario"""
        async with atomic(db):
            purchase = await lock_purchase(db, purchase_id)
            if purchase.state != PURCHASE_PENDING:
                raise StateConflictError(
                    "Solo se pueden cancelar compras pendientes de pago",
                    current_state=purchase.state,
                )

            purchase.state = PURCHASE_CANCELLED
            for model in RESERVATION_TABLES:
                await db.execute(
                    update(model)
                    .where(model.purchase_id == purchase.id)
                    .values(state=RESERVATION_CANCELLED)
                )
            event_id = purchase.event_id

        logger.info(f"Compra {purchase.code} cancelada")
        await self.inventory_service.invalidate_occupied(event_id)
        return await self.get_purchase(db, purchase_id)

    async def delete_purchase(self, db: AsyncSession, purchase_id: UUID) -> str:
        """
        Eliminar una compra en cualquier estado (irreversible).

        Borra explícitamente auditoría, códigos registrados, entradas y reservas
        antes de la compra; la base además tiene ON DELETE CASCADE.
        Devuelve el código eliminado.
        """
        async with atomic(db):
            purchase = await lock_purchase(db, purchase_id)
            code, event_id = purchase.code, purchase.event_id

            await db.execute(delete(ScanAuditEntry).where(ScanAuditEntry.purchase_id == purchase_id))
            await db.execute(delete(RedeemableCode).where(RedeemableCode.purchase_id == purchase_id))
            for model in UNIT_MODELS:
                await db.execute(delete(model).where(model.purchase_id == purchase_id))
            await db.execute(delete(Purchase).where(Purchase.id == purchase_id))

        logger.info(f"Compra {code} eliminada")
        await self.inventory_service.invalidate_occupied(event_id)
        return code
