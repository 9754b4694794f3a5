"""Service entry point para control de acceso (despliegue separado de la puerta)"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded
from shared.database.connection import init_db, close_db
from shared.errors import DomainError, INTERNAL_ERRORS, domain_error_handler, internal_error_handler
from shared.utils.rate_limiter import limiter, rate_limit_exceeded_handler
from services.ticket_validation.routes.validation import router


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()


app = FastAPI(title="Taquilla - Control de acceso", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(DomainError, domain_error_handler)
for error_class in INTERNAL_ERRORS:
    app.add_exception_handler(error_class, internal_error_handler)
app.include_router(router, prefix="/api/v1/tickets", tags=["tickets"])
