"""Sesiones de base de datos"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from shared.database.connection import get_db


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Unidad de trabajo: commit si el bloque termina bien, rollback completo si no.

    Cubre también cancelaciones (timeout de la request), por eso captura BaseException.
    Nunca hay compensación parcial: el error se propaga después del rollback.
    """
    try:
        yield db
        await db.commit()
    except BaseException:
        await db.rollback()
        raise


__all__ = ["get_db", "atomic"]
