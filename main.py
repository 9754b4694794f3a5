"""API Gateway principal - Punto de entrada de la aplicación"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import os
import logging
from contextlib import asynccontextmanager

from shared.database import connection
from shared.database.connection import init_db, close_db
from shared.cache.redis_client import init_redis, close_redis, ping as redis_ping
from shared.errors import DomainError, INTERNAL_ERRORS, domain_error_handler, internal_error_handler
from shared.utils.rate_limiter import limiter, rate_limit_exceeded_handler

# Configurar logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events de la aplicación"""
    logger.info("Iniciando aplicación...")
    await init_db()
    await init_redis()
    logger.info("Aplicación iniciada")
    yield
    logger.info("Cerrando aplicación...")
    await close_db()
    await close_redis()
    logger.info("Aplicación cerrada")


app = FastAPI(
    title="Taquilla API",
    description="Reserva, confirmación y control de acceso de entradas para eventos",
    version="1.0.0",
    lifespan=lifespan
)

# En desarrollo se permiten todos los orígenes
if os.getenv("APP_ENV", "development") == "development":
    allow_origins = ["*"]
    allow_credentials = False  # No se puede usar credentials con allow_origins=["*"]
else:
    allow_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
    allow_credentials = True
    logger.info(f"CORS origins configurados: {allow_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Errores de dominio -> {"error", "detail", "fields"}; errores de datastore -> 500
app.add_exception_handler(DomainError, domain_error_handler)
for error_class in INTERNAL_ERRORS:
    app.add_exception_handler(error_class, internal_error_handler)

from services.ticket_purchase.routes.purchase import router as purchase_router
from services.ticket_validation.routes.validation import router as validation_router

app.include_router(purchase_router, prefix="/api/v1/purchases", tags=["purchases"])
app.include_router(validation_router, prefix="/api/v1/tickets", tags=["tickets"])


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "ok", "service": "taquilla-api"}


@app.get("/ready")
async def ready():
    """Ready check endpoint - verifica base de datos y Redis"""
    if connection.async_session_maker is None:
        return JSONResponse(status_code=503, content={"status": "not ready", "error": "database not initialized"})

    try:
        async with connection.async_session_maker() as session:
            await session.execute(text("SELECT 1"))
        redis_ok = await redis_ping()
    except (SQLAlchemyError, RedisError, OSError) as e:
        logger.error(f"Ready check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not ready", "error": str(e)})

    return {"status": "ready", "database": "connected", "redis": "connected" if redis_ok else "degraded"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=os.getenv("APP_DEBUG", "False").lower() == "true"
    )
