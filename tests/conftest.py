"""Fixtures compartidas: SQLite en memoria (aiosqlite), cache falso y layout de eventos"""
import json
import os
from decimal import Decimal
from types import SimpleNamespace

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from sqlalchemy import event as sa_event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shared.database.connection import Base
from shared.database.models import (
    Event, LayoutArea, VenueTable, Seat,
    EVENT_SEATED, EVENT_GENERAL, AREA_STANDING, AREA_SEATS,
)
from services.ticket_purchase.models.purchase import PurchaseRequest, SeatSelection
from services.ticket_purchase.services import inventory_service


class FakeCache:
    """Reemplazo en memoria de Redis (guarda JSON como lo haría el cliente real)"""

    def __init__(self):
        self.store = {}
        self.deleted = []

    async def get(self, key):
        value = self.store.get(key)
        return json.loads(value) if value else None

    async def set(self, key, value, expire=60):
        self.store[key] = json.dumps(value, default=str)

    async def delete(self, key):
        self.deleted.append(key)
        self.store.pop(key, None)


@pytest.fixture
def fake_cache(monkeypatch):
    cache = FakeCache()
    monkeypatch.setattr(inventory_service, "cache_get", cache.get)
    monkeypatch.setattr(inventory_service, "cache_set", cache.set)
    monkeypatch.setattr(inventory_service, "cache_delete", cache.delete)
    return cache


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @sa_event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker, fake_cache):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def seated_event(db):
    """
    Evento con ubicación:
    - mesa M1 con 4 sillas (numeradas 1..4)
    - 2 asientos sueltos (5 y 6)
    - área de pie "Pista" con capacidad 5
    """
    event = Event(title="Concierto de prueba", event_type=EVENT_SEATED)
    db.add(event)
    await db.flush()

    salon = LayoutArea(event_id=event.id, name="Salón", area_type=AREA_SEATS)
    pista = LayoutArea(event_id=event.id, name="Pista", area_type=AREA_STANDING, capacity=5)
    db.add_all([salon, pista])
    await db.flush()

    table = VenueTable(event_id=event.id, area_id=salon.id, table_number=1, seat_count=4, active=True)
    db.add(table)
    await db.flush()

    table_seats = [
        Seat(event_id=event.id, table_id=table.id, area_id=salon.id, seat_number=n) for n in range(1, 5)
    ]
    loose_seats = [Seat(event_id=event.id, area_id=salon.id, seat_number=n) for n in (5, 6)]
    db.add_all(table_seats + loose_seats)
    await db.commit()

    # Solo ids: un rollback en la sesión expira las instancias ORM
    return SimpleNamespace(
        event_id=event.id,
        table_id=table.id,
        table_seat_ids=[s.id for s in table_seats],
        loose_seat_ids=[s.id for s in loose_seats],
        salon_id=salon.id,
        pista_id=pista.id,
    )


@pytest.fixture
async def general_event(db):
    event = Event(title="Fiesta general", event_type=EVENT_GENERAL, ticket_limit=3)
    db.add(event)
    await db.commit()
    return event.id


@pytest.fixture
async def other_event(db):
    event = Event(title="Otro evento", event_type=EVENT_SEATED)
    db.add(event)
    await db.flush()
    seat = Seat(event_id=event.id, seat_number=1)
    db.add(seat)
    await db.commit()
    return SimpleNamespace(event_id=event.id, seat_id=seat.id)


def seat_request(event_id, seat_ids, **overrides):
    """PurchaseRequest para una lista de asientos a 50 cada uno"""
    data = dict(
        event_id=event_id,
        buyer_name="Ana Pérez",
        buyer_email="ana@example.com",
        quantity=len(seat_ids),
        total=Decimal("50") * len(seat_ids),
        seats=[SeatSelection(seat_id=seat_id, price=Decimal("50")) for seat_id in seat_ids],
    )
    data.update(overrides)
    return PurchaseRequest(**data)
