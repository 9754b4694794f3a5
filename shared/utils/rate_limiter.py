"""
Rate limiting usando slowapi + Redis

Las compras se limitan por cliente para que un solo navegador no acapare
asientos; el escaneo en puerta tiene un límite alto (ráfagas al abrir el acceso).
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request, Response
from starlette.responses import JSONResponse
import hashlib
import os
import logging

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"


def get_real_client_ip(request: Request) -> str:
    """IP real del cliente detrás de nginx/cloudflare"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # client, proxy1, proxy2: la primera es la del cliente
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


def get_user_identifier(request: Request) -> str:
    """IP + hash corto del token (cada lector de la puerta cuenta por separado)"""
    ip = get_real_client_ip(request)

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token_hash = hashlib.sha256(auth_header.encode()).hexdigest()[:8]
        return f"{ip}:{token_hash}"

    return ip


limiter = Limiter(
    key_func=get_user_identifier,
    storage_uri=REDIS_URL,
    strategy="fixed-window",
    headers_enabled=False,  # Compatibilidad con response_model de FastAPI
    enabled=RATE_LIMIT_ENABLED,
)
logger.info(f"Rate limiter con storage {REDIS_URL.split('@')[-1]} (habilitado={RATE_LIMIT_ENABLED})")


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """JSON con el tiempo de espera sugerido"""
    retry_after = exc.detail.split(" ")[-1] if exc.detail else "60"

    logger.warning(
        f"Rate limit exceeded - IP: {get_real_client_ip(request)}, "
        f"Path: {request.url.path}"
    )

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "detail": "Demasiadas solicitudes. Por favor espera antes de intentar nuevamente.",
            "retry_after_seconds": int(retry_after) if retry_after.isdigit() else 60,
        },
        headers={"Retry-After": str(retry_after)},
    )


RATE_LIMITS = {
    "purchase": "10/minute",   # Creación de compras por cliente
    "checkin": "120/minute",   # Lectores de la puerta
    "public": "60/minute",     # Consulta de compra por código, mapa ocupado
    "admin": "120/minute",     # Confirmar, cancelar, eliminar
}
