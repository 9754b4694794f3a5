"""Confirmación de pago: emisión única de códigos"""
import logging
import re
from decimal import Decimal

import pytest
from sqlalchemy import select, func, update

from shared.database.models import (
    GeneralAdmissionTicket, RedeemableCode, SeatReservation,
    PURCHASE_PENDING, PURCHASE_CONFIRMED, PURCHASE_CANCELLED, RESERVATION_CONFIRMED, RESERVATION_CANCELLED,
    UNIT_SEAT, UNIT_TABLE, UNIT_AREA,
)
from shared.errors import CodeGenerationError, NotFoundError, StateConflictError
from shared.utils.codes import CodeGenerator
from services.ticket_purchase.models.purchase import PurchaseRequest, TableSelection, AreaSelection
from services.ticket_purchase.services.purchase_service import PurchaseService
from services.ticket_purchase.services.confirmation_service import ConfirmationService
from services.ticket_validation.services.ticket_service import TicketValidationService
from conftest import seat_request


def all_codes(purchase):
    units = purchase.seats + purchase.tables + purchase.areas + purchase.general_tickets
    return [u.scan_code for u in units]


async def test_confirm_issues_one_code_per_reservation(db, seated_event):
    purchase = await PurchaseService().create_purchase(db, PurchaseRequest(
        event_id=seated_event.event_id,
        buyer_name="Ana",
        quantity=4,
        total=Decimal("300"),
        tables=[TableSelection(table_id=seated_event.table_id, price=Decimal("200"))],
        areas=[AreaSelection(area_id=seated_event.pista_id, quantity=3, unit_price=Decimal("20"))],
        seats=seat_request(seated_event.event_id, seated_event.loose_seat_ids[:1]).seats,
    ))

    confirmed = await ConfirmationService().confirm_payment(db, purchase.id)

    assert confirmed.state == PURCHASE_CONFIRMED
    assert confirmed.paid_at is not None
    assert confirmed.confirmed_at is not None
    assert confirmed.general_tickets == []

    codes = all_codes(confirmed)
    assert len(codes) == 3
    assert len(set(codes)) == 3
    assert all(re.fullmatch(r"\d{5}", c) for c in codes)
    for unit in confirmed.seats + confirmed.tables + confirmed.areas:
        assert unit.state == RESERVATION_CONFIRMED
        assert unit.scanned is False


async def test_confirm_general_purchase_mints_quantity_tickets(db, general_event):
    purchase = await PurchaseService().create_purchase(
        db, PurchaseRequest(event_id=general_event, buyer_name="Luis", quantity=3, total=Decimal("45"))
    )

    confirmed = await ConfirmationService().confirm_payment(db, purchase.id)

    assert len(confirmed.general_tickets) == 3
    assert len(set(all_codes(confirmed))) == 3


async def test_second_confirmation_is_rejected_and_issues_nothing(db, seated_event):
    service = ConfirmationService()
    purchase = await PurchaseService().create_purchase(
        db, seat_request(seated_event.event_id, seated_event.loose_seat_ids)
    )
    first = await service.confirm_payment(db, purchase.id)

    with pytest.raises(StateConflictError) as exc_info:
        await service.confirm_payment(db, purchase.id)
    assert exc_info.value.current_state == PURCHASE_CONFIRMED

    after = await PurchaseService().get_purchase(db, purchase.id)
    assert all_codes(after) == all_codes(first)
    assert after.confirmed_at == first.confirmed_at


async def test_second_general_confirmation_does_not_mint_more_tickets(db, general_event):
    service = ConfirmationService()
    purchase = await PurchaseService().create_purchase(
        db, PurchaseRequest(event_id=general_event, buyer_name="Luis", quantity=2, total=Decimal("30"))
    )
    await service.confirm_payment(db, purchase.id)

    with pytest.raises(StateConflictError):
        await service.confirm_payment(db, purchase.id)

    count = (await db.execute(select(func.count(GeneralAdmissionTicket.id)))).scalar()
    assert count == 2


async def test_cancelled_purchase_cannot_be_confirmed(db, seated_event):
    purchase = await PurchaseService().create_purchase(
        db, seat_request(seated_event.event_id, seated_event.loose_seat_ids[:1])
    )
    await PurchaseService().cancel_purchase(db, purchase.id)

    with pytest.raises(StateConflictError) as exc_info:
        await ConfirmationService().confirm_payment(db, purchase.id)
    assert exc_info.value.current_state == PURCHASE_CANCELLED


async def test_confirm_unknown_purchase(db, seated_event):
    with pytest.raises(NotFoundError):
        await ConfirmationService().confirm_payment(db, seated_event.event_id)


async def test_codes_are_unique_across_purchases(db, seated_event, monkeypatch):
    purchases = PurchaseService()
    confirmation = ConfirmationService()

    # Candidatos que se repiten: el generador debe saltar los ya emitidos en otras tablas
    candidates = iter(["50000", "50000", "50001", "50001", "50000", "50002"])
    monkeypatch.setattr("shared.utils.codes.make_scan_code", lambda: next(candidates))

    first = await purchases.create_purchase(db, seat_request(seated_event.event_id, seated_event.loose_seat_ids))
    second = await purchases.create_purchase(db, PurchaseRequest(
        event_id=seated_event.event_id,
        buyer_name="Grupo",
        quantity=2,
        total=Decimal("40"),
        areas=[AreaSelection(area_id=seated_event.pista_id, quantity=2, unit_price=Decimal("20"))],
    ))

    first = await confirmation.confirm_payment(db, first.id)
    second = await confirmation.confirm_payment(db, second.id)

    assert all_codes(first) == ["50000", "50001"]
    assert all_codes(second) == ["50002"]


async def test_every_issued_code_is_registered_once(db, seated_event):
    purchase = await PurchaseService().create_purchase(db, PurchaseRequest(
        event_id=seated_event.event_id,
        buyer_name="Ana",
        quantity=3,
        total=Decimal("270"),
        tables=[TableSelection(table_id=seated_event.table_id, price=Decimal("200"))],
        areas=[AreaSelection(area_id=seated_event.pista_id, quantity=1, unit_price=Decimal("20"))],
        seats=seat_request(seated_event.event_id, seated_event.loose_seat_ids[:1]).seats,
    ))
    confirmed = await ConfirmationService().confirm_payment(db, purchase.id)

    rows = (await db.execute(select(RedeemableCode))).scalars().all()
    registered = {r.code: (r.unit_type, r.unit_id) for r in rows}
    assert registered == {
        confirmed.seats[0].scan_code: (UNIT_SEAT, confirmed.seats[0].id),
        confirmed.tables[0].scan_code: (UNIT_TABLE, confirmed.tables[0].id),
        confirmed.areas[0].scan_code: (UNIT_AREA, confirmed.areas[0].id),
    }
    assert {r.purchase_id for r in rows} == {purchase.id}


async def test_code_registered_by_another_unit_type_rolls_back_confirmation(db, seated_event, monkeypatch):
    purchases = PurchaseService()
    confirmation = ConfirmationService()
    monkeypatch.setattr("shared.utils.codes.make_scan_code", lambda: "12345")

    seat_purchase = await purchases.create_purchase(
        db, seat_request(seated_event.event_id, seated_event.loose_seat_ids[:1])
    )
    table_purchase = await purchases.create_purchase(db, PurchaseRequest(
        event_id=seated_event.event_id,
        buyer_name="Mesa",
        quantity=1,
        total=Decimal("200"),
        tables=[TableSelection(table_id=seated_event.table_id, price=Decimal("200"))],
    ))
    await confirmation.confirm_payment(db, seat_purchase.id)

    # Una transacción concurrente que aún no ve el código ya registrado (sesión limpia)
    async def unseen(self, code):
        return False

    monkeypatch.setattr(CodeGenerator, "_scan_code_exists", unseen)
    db.expunge_all()

    with pytest.raises(CodeGenerationError):
        await confirmation.confirm_payment(db, table_purchase.id)

    table_detail = await purchases.get_purchase(db, table_purchase.id)
    assert table_detail.state == PURCHASE_PENDING
    assert table_detail.confirmed_at is None
    assert table_detail.tables[0].scan_code is None

    info = await TicketValidationService().lookup_by_code(db, "12345")
    assert info.unit_type == UNIT_SEAT
    assert info.purchase_id == seat_purchase.id
    count = (await db.execute(select(func.count()).select_from(RedeemableCode))).scalar()
    assert count == 1


async def test_issued_count_skips_reservations_that_are_not_reserved(db, seated_event, caplog):
    purchase = await PurchaseService().create_purchase(
        db, seat_request(seated_event.event_id, seated_event.loose_seat_ids)
    )
    # Una de las dos reservas ya no está en RESERVED
    await db.execute(
        update(SeatReservation)
        .where(SeatReservation.seat_id == seated_event.loose_seat_ids[1])
        .values(state=RESERVATION_CANCELLED)
    )
    await db.commit()

    with caplog.at_level(logging.INFO, logger="services.ticket_purchase.services.confirmation_service"):
        confirmed = await ConfirmationService().confirm_payment(db, purchase.id)

    assert [s.scan_code is not None for s in confirmed.seats] == [True, False]
    assert "1 códigos emitidos" in caplog.text
