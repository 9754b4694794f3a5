"""Generación de códigos de compra y de escaneo"""
import re
from uuid import uuid4

import pytest
from sqlalchemy import select

from shared.database.models import RedeemableCode, UNIT_GENERAL
from shared.errors import CodeGenerationError, ConflictError
from shared.utils.codes import CodeGenerator, generate_unique, make_purchase_code, make_scan_code
from services.ticket_purchase.services.purchase_service import PurchaseService
from services.ticket_purchase.services.confirmation_service import ConfirmationService
from conftest import seat_request


def test_purchase_code_format():
    code = make_purchase_code(now_ms=1700000000123)
    assert re.fullmatch(r"ENT-1700000000123-\d{4}", code)


def test_scan_code_is_five_digits_in_range():
    for _ in range(200):
        code = make_scan_code()
        assert re.fullmatch(r"\d{5}", code)
        assert 10000 <= int(code) <= 99999


async def test_generate_unique_skips_existing_codes():
    candidates = iter(["11111", "22222", "33333"])
    existing = {"11111", "22222"}

    async def exists(code):
        return code in existing

    code = await generate_unique(lambda: next(candidates), exists, max_attempts=5)
    assert code == "33333"


async def test_generate_unique_is_bounded():
    calls = []

    def candidate():
        calls.append(1)
        return "12345"

    async def exists(code):
        return True

    with pytest.raises(CodeGenerationError) as exc_info:
        await generate_unique(candidate, exists, max_attempts=7, kind="de escaneo")

    assert len(calls) == 7
    assert isinstance(exc_info.value, ConflictError)
    assert exc_info.value.status_code == 409


async def test_exhausted_scan_code_space_fails_confirmation(db, seated_event, monkeypatch):
    purchase = await PurchaseService().create_purchase(db, seat_request(seated_event.event_id, seated_event.loose_seat_ids[:1]))
    await ConfirmationService().confirm_payment(db, purchase.id)
    taken = (await PurchaseService().get_purchase(db, purchase.id)).seats[0].scan_code

    # Rango de un solo valor, ya ocupado: ningún candidato sirve
    monkeypatch.setattr("shared.utils.codes.make_scan_code", lambda: taken)
    generator = CodeGenerator(db)
    with pytest.raises(CodeGenerationError):
        await generator.scan_code(UNIT_GENERAL, uuid4(), purchase.id)


async def test_codes_issued_in_same_transaction_are_not_repeated(db, seated_event, monkeypatch):
    purchase = await PurchaseService().create_purchase(db, seat_request(seated_event.event_id, seated_event.loose_seat_ids[:1]))
    candidates = iter(["40000", "40000", "40001"])
    monkeypatch.setattr("shared.utils.codes.make_scan_code", lambda: next(candidates))

    generator = CodeGenerator(db)
    first_unit, second_unit = uuid4(), uuid4()
    first = await generator.scan_code(UNIT_GENERAL, first_unit, purchase.id)
    second = await generator.scan_code(UNIT_GENERAL, second_unit, purchase.id)

    assert first == "40000"
    assert second == "40001"

    rows = (await db.execute(select(RedeemableCode).order_by(RedeemableCode.code))).scalars().all()
    assert [(r.code, r.unit_id) for r in rows] == [("40000", first_unit), ("40001", second_unit)]
