"""Ciclo de vida de la compra: consulta, listado, cancelación y borrado"""
import re
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from shared.database.models import (
    Purchase, SeatReservation, ScanAuditEntry, GeneralAdmissionTicket, RedeemableCode,
    PURCHASE_PENDING, PURCHASE_CONFIRMED, PURCHASE_CANCELLED, RESERVATION_CANCELLED,
)
from shared.errors import NotFoundError, StateConflictError, ValidationError
from services.ticket_purchase.models.purchase import PurchaseRequest
from services.ticket_purchase.services.purchase_service import PurchaseService
from services.ticket_purchase.services.confirmation_service import ConfirmationService
from services.ticket_validation.services.ticket_service import TicketValidationService
from conftest import seat_request


async def test_create_purchase_returns_pending_purchase(db, seated_event):
    purchase = await PurchaseService().create_purchase(
        db, seat_request(seated_event.event_id, seated_event.loose_seat_ids, buyer_name="  Ana Pérez ")
    )

    assert purchase.state == PURCHASE_PENDING
    assert re.fullmatch(r"ENT-\d+-\d{4}", purchase.code)
    assert purchase.buyer_name == "Ana Pérez"
    assert purchase.total == Decimal("100")
    assert [s.seat_number for s in purchase.seats] == [5, 6]
    assert all(s.scan_code is None for s in purchase.seats)


async def test_get_purchase_by_code(db, seated_event):
    service = PurchaseService()
    created = await service.create_purchase(db, seat_request(seated_event.event_id, seated_event.loose_seat_ids[:1]))

    found = await service.get_purchase_by_code(db, f" {created.code} ")
    assert found.id == created.id

    with pytest.raises(NotFoundError):
        await service.get_purchase_by_code(db, "ENT-0-0000")


async def test_get_unknown_purchase(db, seated_event):
    with pytest.raises(NotFoundError):
        await PurchaseService().get_purchase(db, seated_event.event_id)


async def test_cancel_releases_inventory(db, seated_event):
    service = PurchaseService()
    purchase = await service.create_purchase(db, seat_request(seated_event.event_id, seated_event.loose_seat_ids))

    cancelled = await service.cancel_purchase(db, purchase.id)
    assert cancelled.state == PURCHASE_CANCELLED
    assert {s.state for s in cancelled.seats} == {RESERVATION_CANCELLED}

    occupied = await service.get_occupied_inventory(db, seated_event.event_id)
    assert occupied["seats"] == []

    again = await service.create_purchase(db, seat_request(seated_event.event_id, seated_event.loose_seat_ids))
    assert again.state == PURCHASE_PENDING


async def test_cancel_only_from_pending(db, seated_event):
    service = PurchaseService()
    purchase = await service.create_purchase(db, seat_request(seated_event.event_id, seated_event.loose_seat_ids[:1]))
    await ConfirmationService().confirm_payment(db, purchase.id)

    with pytest.raises(StateConflictError) as exc_info:
        await service.cancel_purchase(db, purchase.id)
    assert exc_info.value.current_state == PURCHASE_CONFIRMED
    assert exc_info.value.status_code == 400

    cancelled = await service.create_purchase(db, seat_request(seated_event.event_id, seated_event.loose_seat_ids[1:]))
    await service.cancel_purchase(db, cancelled.id)
    with pytest.raises(StateConflictError):
        await service.cancel_purchase(db, cancelled.id)


async def test_cancel_unknown_purchase(db, seated_event):
    with pytest.raises(NotFoundError):
        await PurchaseService().cancel_purchase(db, seated_event.event_id)


async def test_delete_confirmed_purchase_frees_inventory_and_codes(db, seated_event):
    service = PurchaseService()
    tickets = TicketValidationService()
    purchase = await service.create_purchase(db, seat_request(seated_event.event_id, seated_event.loose_seat_ids))
    confirmed = await ConfirmationService().confirm_payment(db, purchase.id)
    code = confirmed.seats[0].scan_code
    await tickets.scan_by_code(db, code, actor_id="staff-1")

    deleted_code = await service.delete_purchase(db, purchase.id)
    assert deleted_code == purchase.code

    assert (await db.execute(select(func.count(Purchase.id)))).scalar() == 0
    assert (await db.execute(select(func.count(SeatReservation.id)))).scalar() == 0
    assert (await db.execute(select(func.count(ScanAuditEntry.id)))).scalar() == 0
    assert (await db.execute(select(func.count()).select_from(RedeemableCode))).scalar() == 0

    with pytest.raises(NotFoundError):
        await tickets.lookup_by_code(db, code)
    with pytest.raises(NotFoundError):
        await service.get_purchase(db, purchase.id)

    again = await service.create_purchase(db, seat_request(seated_event.event_id, seated_event.loose_seat_ids))
    assert len(again.seats) == 2


async def test_delete_general_purchase_removes_tickets(db, general_event):
    service = PurchaseService()
    purchase = await service.create_purchase(
        db, PurchaseRequest(event_id=general_event, buyer_name="Luis", quantity=2, total=Decimal("30"))
    )
    await ConfirmationService().confirm_payment(db, purchase.id)

    await service.delete_purchase(db, purchase.id)
    assert (await db.execute(select(func.count(GeneralAdmissionTicket.id)))).scalar() == 0


async def test_delete_unknown_purchase(db, seated_event):
    with pytest.raises(NotFoundError):
        await PurchaseService().delete_purchase(db, seated_event.event_id)


async def test_list_purchases_filters(db, seated_event, general_event):
    service = PurchaseService()
    confirmation = ConfirmationService()
    tickets = TicketValidationService()
    s5, s6 = seated_event.loose_seat_ids

    pending = await service.create_purchase(db, seat_request(seated_event.event_id, seated_event.table_seat_ids[:1]))
    used = await service.create_purchase(db, seat_request(seated_event.event_id, [s5]))
    partly = await service.create_purchase(db, seat_request(seated_event.event_id, [s6]))
    general = await service.create_purchase(
        db, PurchaseRequest(event_id=general_event, buyer_name="Luis", quantity=2, total=Decimal("30"))
    )

    used_detail = await confirmation.confirm_payment(db, used.id)
    await confirmation.confirm_payment(db, partly.id)
    general_detail = await confirmation.confirm_payment(db, general.id)
    await tickets.scan_by_code(db, used_detail.seats[0].scan_code)
    await tickets.scan_by_code(db, general_detail.general_tickets[0].scan_code)

    everything = await service.list_purchases(db)
    assert [p.id for p in everything] == [general.id, partly.id, used.id, pending.id]
    assert everything[0].total_general == 2
    assert everything[0].event_title == "Fiesta general"
    assert everything[1].total_seats == 1

    by_state = await service.list_purchases(db, state=PURCHASE_PENDING)
    assert [p.id for p in by_state] == [pending.id]

    entry_used = await service.list_purchases(db, state="ENTRY_USED")
    assert [p.id for p in entry_used] == [used.id]

    by_event = await service.list_purchases(db, state=PURCHASE_CONFIRMED, event_id=general_event)
    assert [p.id for p in by_event] == [general.id]


async def test_list_purchases_rejects_unknown_state(db):
    with pytest.raises(ValidationError):
        await PurchaseService().list_purchases(db, state="PAGADO")
