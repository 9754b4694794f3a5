"""Errores de dominio del núcleo de reservas y control de acceso"""
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Error base con código estable, mensaje para el usuario y status HTTP"""

    code = "domain_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(DomainError):
    """Entrada mal formada o incompleta (se detecta antes de tocar la base de datos)"""

    code = "validation_error"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if field:
            details.setdefault("field", field)
        super().__init__(message, details)
        self.field = field


class NotFoundError(DomainError):
    """Recurso inexistente o que no pertenece al padre indicado"""

    code = "not_found"
    status_code = 404


class StateConflictError(DomainError):
    """Operación no permitida desde el estado actual del ciclo de vida"""

    code = "state_conflict"
    status_code = 400

    def __init__(self, message: str, current_state: Optional[str] = None):
        super().__init__(message, {"current_state": current_state} if current_state else None)
        self.current_state = current_state


class ConflictError(DomainError):
    """Inventario ya reclamado, entrada ya usada, etc."""

    code = "conflict"
    status_code = 409


class CodeGenerationError(ConflictError):
    """No se pudo generar un código único dentro del número de intentos"""

    code = "code_generation_failed"


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Handler FastAPI para errores de dominio"""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} en {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} en {request.url.path}: {exc.message}")

    content = {"error": exc.code, "detail": exc.message}
    if exc.details:
        content["fields"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Errores de datastore: la transacción ya hizo rollback, el cliente puede reintentar"""
    logger.error(f"Error interno en {request.url.path}: {type(exc).__name__}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "detail": "Error interno procesando la solicitud. Puede reintentar.",
        },
    )


INTERNAL_ERRORS = (SQLAlchemyError, OSError)
