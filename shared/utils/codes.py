"""Generación de códigos: código externo de compra y código de escaneo de 5 dígitos"""
import random
import time
from typing import Awaitable, Callable, Optional, Set
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from shared.database.models import Purchase, RedeemableCode
from shared.errors import CodeGenerationError
import logging

logger = logging.getLogger(__name__)

_rng = random.SystemRandom()


def make_purchase_code(prefix: Optional[str] = None, now_ms: Optional[int] = None) -> str:
    """
    Código externo de compra: ENT-<timestamp ms>-<4 dígitos>

    El timestamp es solo para legibilidad; la unicidad se garantiza consultando la base.
    """
    prefix = prefix or settings.PURCHASE_CODE_PREFIX
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{prefix}-{now_ms}-{_rng.randint(0, 9999):04d}"


def make_scan_code(low: Optional[int] = None, high: Optional[int] = None) -> str:
    """Código de escaneo numérico de ancho fijo (por defecto 10000-99999)"""
    low = settings.SCAN_CODE_MIN if low is None else low
    high = settings.SCAN_CODE_MAX if high is None else high
    return str(_rng.randint(low, high))


async def generate_unique(
    candidate: Callable[[], str],
    exists: Callable[[str], Awaitable[bool]],
    max_attempts: int,
    kind: str = "code",
) -> str:
    """
    Sacar candidatos hasta encontrar uno que no exista.

    Nunca itera más de max_attempts veces; si se agota lanza CodeGenerationError
    (espacio de valores agotado o datastore inaccesible).
    """
    for attempt in range(1, max_attempts + 1):
        value = candidate()
        if not await exists(value):
            if attempt > 1:
                logger.info(f"Código {kind} generado tras {attempt} intentos")
            return value

    logger.error(f"No se pudo generar un código {kind} único después de {max_attempts} intentos")
    raise CodeGenerationError(
        f"No se pudo generar un código {kind} único después de {max_attempts} intentos"
    )


class CodeGenerator:
    """Generador respaldado por la base de datos (reconsulta la unicidad en cada llamada)"""

    def __init__(self, db: AsyncSession):
        self.db = db
        # Códigos emitidos en esta misma transacción
        self._issued: Set[str] = set()

    async def _scan_code_exists(self, code: str) -> bool:
        if code in self._issued:
            return True
        result = await self.db.execute(select(RedeemableCode.code).where(RedeemableCode.code == code))
        return result.first() is not None

    async def _purchase_code_exists(self, code: str) -> bool:
        result = await self.db.execute(select(Purchase.id).where(Purchase.code == code))
        return result.first() is not None

    async def purchase_code(self) -> str:
        return await generate_unique(
            make_purchase_code,
            self._purchase_code_exists,
            settings.PURCHASE_CODE_MAX_ATTEMPTS,
            kind="de compra",
        )

    async def scan_code(self, unit_type: str, unit_id: UUID, purchase_id: UUID) -> str:
        """
        Elegir un código libre y registrarlo para la unidad.

        La fila en redeemable_codes se inserta en el próximo flush; si otra
        transacción registró el mismo código entre la consulta y el insert,
        el flush falla con IntegrityError y la confirmación completa se revierte.
        """
        code = await generate_unique(
            make_scan_code,
            self._scan_code_exists,
            settings.SCAN_CODE_MAX_ATTEMPTS,
            kind="de escaneo",
        )
        self._issued.add(code)
        self.db.add(RedeemableCode(code=code, unit_type=unit_type, unit_id=unit_id, purchase_id=purchase_id))
        return code
