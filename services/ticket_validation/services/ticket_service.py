"""Servicio de control de acceso: búsqueda y marcado de entradas por código de escaneo"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import Dict, List, Optional, Tuple
from uuid import UUID
import json
import re
import logging

from shared.database.models import (
    Event, LayoutArea, VenueTable, Seat, Purchase,
    SeatReservation, TableReservation, AreaAdmission, GeneralAdmissionTicket, ScanAuditEntry,
    PURCHASE_CONFIRMED, RESERVATION_CONFIRMED,
    UNIT_SEAT, UNIT_TABLE, UNIT_AREA, UNIT_GENERAL, UNIT_TYPES, AUDIT_FK_BY_UNIT,
    utcnow,
)
from shared.database.session import atomic
from shared.errors import NotFoundError, ValidationError
from services.ticket_validation.models.ticket import (
    TicketInfo, ScanResult, PendingEntriesResponse, ScannedEntriesResponse,
)

logger = logging.getLogger(__name__)

SCAN_CODE_PATTERN = re.compile(r"^\d{5}$")

# Orden de búsqueda de un código: asiento -> mesa -> área -> entrada general
LOOKUP_ORDER = (UNIT_SEAT, UNIT_TABLE, UNIT_AREA, UNIT_GENERAL)

UNIT_MODELS = {
    UNIT_SEAT: SeatReservation,
    UNIT_TABLE: TableReservation,
    UNIT_AREA: AreaAdmission,
    UNIT_GENERAL: GeneralAdmissionTicket,
}

PENDING_ORDER = {
    UNIT_SEAT: Seat.seat_number,
    UNIT_TABLE: VenueTable.table_number,
    UNIT_AREA: LayoutArea.name,
    UNIT_GENERAL: GeneralAdmissionTicket.created_at,
}


def normalize_scan_code(code: Optional[str]) -> str:
    """Recortar espacios y exigir exactamente 5 dígitos"""
    value = (code or "").strip()
    if not SCAN_CODE_PATTERN.match(value):
        raise ValidationError("Código de escaneo inválido. Debe ser de 5 dígitos.", field="code")
    return value


def normalize_unit_type(unit_type: Optional[str]) -> str:
    value = (unit_type or "").strip().upper()
    if value not in UNIT_TYPES:
        raise ValidationError(
            f"Tipo de entrada inválido: {unit_type}",
            field="unit_type",
            details={"allowed": list(UNIT_TYPES)},
        )
    return value


def _unit_query(unit_type: str):
    """
    SELECT de una unidad canjeable confirmada junto a su compra, evento y datos de ubicación.

    Devuelve (statement, modelo) para poder agregar filtros y bloqueo sobre el modelo.
    """
    model = UNIT_MODELS[unit_type]

    if unit_type == UNIT_SEAT:
        stmt = (
            select(model, Purchase, Event, Seat.seat_number.label("seat_number"),
                   VenueTable.table_number.label("table_number"))
            .select_from(model)
            .join(Purchase, model.purchase_id == Purchase.id)
            .join(Event, Purchase.event_id == Event.id)
            .join(Seat, model.seat_id == Seat.id)
            .outerjoin(VenueTable, Seat.table_id == VenueTable.id)
            .where(model.state == RESERVATION_CONFIRMED)
        )
    elif unit_type == UNIT_TABLE:
        stmt = (
            select(model, Purchase, Event, VenueTable.table_number.label("table_number"))
            .select_from(model)
            .join(Purchase, model.purchase_id == Purchase.id)
            .join(Event, Purchase.event_id == Event.id)
            .join(VenueTable, model.table_id == VenueTable.id)
            .where(model.state == RESERVATION_CONFIRMED)
        )
    elif unit_type == UNIT_AREA:
        stmt = (
            select(model, Purchase, Event, LayoutArea.name.label("area_name"))
            .select_from(model)
            .join(Purchase, model.purchase_id == Purchase.id)
            .join(Event, Purchase.event_id == Event.id)
            .join(LayoutArea, model.area_id == LayoutArea.id)
            .where(model.state == RESERVATION_CONFIRMED)
        )
    else:
        # Las entradas generales solo existen una vez confirmada la compra
        stmt = (
            select(model, Purchase, Event)
            .select_from(model)
            .join(Purchase, model.purchase_id == Purchase.id)
            .join(Event, Purchase.event_id == Event.id)
            .where(Purchase.state == PURCHASE_CONFIRMED)
        )
    return stmt, model


def _to_ticket_info(unit_type: str, row) -> TicketInfo:
    unit, purchase, event = row[0], row[1], row[2]
    extra = row._mapping

    info = TicketInfo(
        unit_type=unit_type,
        unit_id=unit.id,
        scan_code=unit.scan_code,
        purchase_id=purchase.id,
        purchase_code=purchase.code,
        event_id=event.id,
        event_title=event.title,
        buyer_name=purchase.buyer_name,
        buyer_email=purchase.buyer_email,
        scanned=bool(unit.scanned),
        scanned_at=unit.scanned_at,
        scanned_by=unit.scanned_by,
    )
    if unit_type == UNIT_SEAT:
        info.seat_number = extra["seat_number"]
        info.table_number = extra["table_number"]
    elif unit_type == UNIT_TABLE:
        info.table_number = extra["table_number"]
        info.seat_count = unit.seat_count
        info.quantity = unit.seat_count
    elif unit_type == UNIT_AREA:
        info.area_name = extra["area_name"]
        info.quantity = unit.quantity
    return info


def _describe(info: TicketInfo) -> str:
    if info.unit_type == UNIT_SEAT:
        mesa = f" (mesa M{info.table_number})" if info.table_number is not None else ""
        return f"Asiento {info.seat_number}{mesa}"
    if info.unit_type == UNIT_TABLE:
        return f"Mesa M{info.table_number} ({info.seat_count} sillas)"
    if info.unit_type == UNIT_AREA:
        return f"{info.area_name} x{info.quantity}"
    return "Entrada general"


class TicketValidationService:
    """Búsqueda, marcado y desmarcado de unidades canjeables"""

    async def lookup_by_code(self, db: AsyncSession, code: str) -> TicketInfo:
        """Resolver un código de 5 dígitos (solo lectura)"""
        code = normalize_scan_code(code)

        for unit_type in LOOKUP_ORDER:
            stmt, model = _unit_query(unit_type)
            row = (await db.execute(stmt.where(model.scan_code == code))).first()
            if row is not None:
                return _to_ticket_info(unit_type, row)

        raise NotFoundError(
            "Código de escaneo no encontrado o la entrada no está confirmada",
            {"code": code},
        )

    async def _lock_unit(self, db: AsyncSession, unit_type: str, *criteria) -> Tuple[object, TicketInfo]:
        stmt, model = _unit_query(unit_type)
        stmt = stmt.where(*criteria).with_for_update(of=model)
        row = (await db.execute(stmt)).first()
        if row is None:
            raise NotFoundError("Entrada no encontrada o no está confirmada", {"unit_type": unit_type})
        return row[0], _to_ticket_info(unit_type, row)

    async def _mark(self, db: AsyncSession, unit_type: str, actor_id: Optional[str], *criteria) -> ScanResult:
        """
        Marcar una unidad como usada dentro de una transacción.

        Si ya estaba escaneada no se modifica nada y se responde already_used=True.
        Cada escaneo efectivo agrega exactamente una fila de auditoría.
        """
        async with atomic(db):
            unit, info = await self._lock_unit(db, unit_type, *criteria)

            if unit.scanned:
                logger.warning(
                    f"Intento de reingreso: {unit_type} {unit.id} ya escaneado el {unit.scanned_at}"
                )
                return ScanResult(
                    success=False,
                    already_used=True,
                    message=f"Entrada ya utilizada: {_describe(info)}",
                    ticket=info,
                )

            now = utcnow()
            unit.scanned = True
            unit.scanned_at = now
            unit.scanned_by = actor_id

            info.scanned = True
            info.scanned_at = now
            info.scanned_by = actor_id

            db.add(ScanAuditEntry(
                unit_type=unit_type,
                purchase_id=info.purchase_id,
                event_id=info.event_id,
                scanned_by=actor_id,
                scanned_at=now,
                payload=json.dumps(info.model_dump(mode="json")),
                **{AUDIT_FK_BY_UNIT[unit_type]: unit.id},
            ))
            await db.flush()

        logger.info(f"Entrada escaneada: {unit_type} {unit.id} (compra {info.purchase_code}) por {actor_id}")
        return ScanResult(
            success=True,
            already_used=False,
            message=f"Entrada válida: {_describe(info)}",
            ticket=info,
        )

    async def mark_used(
        self,
        db: AsyncSession,
        code: str,
        unit_type: str,
        unit_id: UUID,
        actor_id: Optional[str] = None,
    ) -> ScanResult:
        """Marcar como usada la unidad identificada por (código, tipo, id)"""
        code = normalize_scan_code(code)
        unit_type = normalize_unit_type(unit_type)
        model = UNIT_MODELS[unit_type]
        return await self._mark(db, unit_type, actor_id, model.id == unit_id, model.scan_code == code)

    async def unmark_used(self, db: AsyncSession, code: str, unit_type: str, unit_id: UUID) -> TicketInfo:
        """Revertir un escaneo (acción administrativa). Las filas de auditoría se conservan."""
        code = normalize_scan_code(code)
        unit_type = normalize_unit_type(unit_type)
        model = UNIT_MODELS[unit_type]

        async with atomic(db):
            unit, info = await self._lock_unit(db, unit_type, model.id == unit_id, model.scan_code == code)
            unit.scanned = False
            unit.scanned_at = None
            unit.scanned_by = None
            await db.flush()

        info.scanned = False
        info.scanned_at = None
        info.scanned_by = None
        logger.info(f"Escaneo revertido: {unit_type} {unit_id}")
        return info

    async def scan_by_code(self, db: AsyncSession, code: str, actor_id: Optional[str] = None) -> ScanResult:
        """Buscar y marcar en un solo paso (flujo de la puerta)"""
        info = await self.lookup_by_code(db, code)
        return await self.mark_used(db, info.scan_code, info.unit_type, info.unit_id, actor_id)

    async def scan_by_reference(
        self,
        db: AsyncSession,
        purchase_id: UUID,
        event_id: UUID,
        seat_id: Optional[UUID] = None,
        actor_id: Optional[str] = None,
    ) -> ScanResult:
        """
        Formato QR antiguo: identifica la unidad por (compra, asiento) o,
        sin asiento, por la primera mesa confirmada de la compra.
        """
        stmt = select(Purchase.id).where(
            Purchase.id == purchase_id,
            Purchase.event_id == event_id,
            Purchase.state == PURCHASE_CONFIRMED,
        )
        if (await db.execute(stmt)).first() is None:
            raise NotFoundError(
                "Compra no encontrada o no está confirmada",
                {"purchase_id": str(purchase_id), "event_id": str(event_id)},
            )

        if seat_id is not None:
            return await self._mark(
                db, UNIT_SEAT, actor_id,
                SeatReservation.purchase_id == purchase_id,
                SeatReservation.seat_id == seat_id,
            )

        stmt, model = _unit_query(UNIT_TABLE)
        stmt = stmt.where(model.purchase_id == purchase_id).order_by(model.created_at, model.id).limit(1)
        row = (await db.execute(stmt)).first()
        if row is None:
            raise NotFoundError("La compra no tiene mesas confirmadas", {"purchase_id": str(purchase_id)})
        return await self._mark(db, UNIT_TABLE, actor_id, TableReservation.id == row[0].id)

    async def list_pending_entries(self, db: AsyncSession, event_id: UUID) -> PendingEntriesResponse:
        """Unidades confirmadas y aún no escaneadas de un evento (lista de la puerta)"""
        event = (await db.execute(select(Event.id).where(Event.id == event_id))).first()
        if event is None:
            raise NotFoundError("Evento no encontrado", {"event_id": str(event_id)})

        pending: Dict[str, List[TicketInfo]] = {}
        for unit_type in LOOKUP_ORDER:
            stmt, model = _unit_query(unit_type)
            stmt = stmt.where(
                Purchase.event_id == event_id,
                model.scanned.is_(False),
            ).order_by(PENDING_ORDER[unit_type], model.id)
            rows = (await db.execute(stmt)).all()
            pending[unit_type] = [_to_ticket_info(unit_type, row) for row in rows]

        return PendingEntriesResponse(
            event_id=event_id,
            seats=pending[UNIT_SEAT],
            tables=pending[UNIT_TABLE],
            areas=pending[UNIT_AREA],
            general=pending[UNIT_GENERAL],
            total_pending=sum(len(items) for items in pending.values()),
        )

    async def list_scanned_entries(self, db: AsyncSession, event_id: Optional[UUID] = None) -> ScannedEntriesResponse:
        """
        Unidades confirmadas ya escaneadas, con hora y staff del escaneo.

        Sin event_id lista todos los eventos. audit_entries cuenta las filas de
        auditoría del mismo alcance, por lo que un escaneo revertido y repetido
        suma dos.
        """
        audit_stmt = select(func.count(ScanAuditEntry.id))
        if event_id is not None:
            event = (await db.execute(select(Event.id).where(Event.id == event_id))).first()
            if event is None:
                raise NotFoundError("Evento no encontrado", {"event_id": str(event_id)})
            audit_stmt = audit_stmt.where(ScanAuditEntry.event_id == event_id)

        scanned: Dict[str, List[TicketInfo]] = {}
        for unit_type in LOOKUP_ORDER:
            stmt, model = _unit_query(unit_type)
            stmt = stmt.where(model.scanned.is_(True))
            if event_id is not None:
                stmt = stmt.where(Purchase.event_id == event_id)
            rows = (await db.execute(stmt.order_by(model.scanned_at.desc(), model.id))).all()
            scanned[unit_type] = [_to_ticket_info(unit_type, row) for row in rows]

        audit_entries = (await db.execute(audit_stmt)).scalar() or 0

        return ScannedEntriesResponse(
            event_id=event_id,
            seats=scanned[UNIT_SEAT],
            tables=scanned[UNIT_TABLE],
            areas=scanned[UNIT_AREA],
            general=scanned[UNIT_GENERAL],
            total_scanned=sum(len(items) for items in scanned.values()),
            audit_entries=audit_entries,
        )
