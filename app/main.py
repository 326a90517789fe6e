from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# IMPORTANT:
# This imports ALL models so SQLAlchemy registers tables + FKs correctly
import app.models  # noqa: F401

from app.core.config import settings
from app.core.db import create_all
from app.core.errors import DomainError
from app.core.logging_config import configure_logging

# Routers
from app.routers.auth import router as auth_router

from app.routers.plans import router as plans_router
from app.routers.creator_plans import router as creator_plans_router

from app.routers.coupons import router as coupons_router

from app.routers.checkout import router as checkout_router
from app.routers.orders import router as orders_router

from app.routers.wallet import router as wallet_router
from app.routers.admin_payouts import router as admin_payouts_router

from app.routers.affiliates import router as affiliates_router
from app.routers.connect import router as connect_router

configure_logging()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.DB_AUTO_CREATE:
        await create_all()
    yield


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "reason": exc.reason, "type": type(exc).__name__},
    )


# Auth
app.include_router(auth_router)

# Plans
app.include_router(plans_router)
app.include_router(creator_plans_router)

# Coupons
app.include_router(coupons_router)

# Checkout + settlement webhook
app.include_router(checkout_router)
app.include_router(orders_router)

# Wallet
app.include_router(wallet_router)
app.include_router(admin_payouts_router)

# Affiliates + Connect
app.include_router(affiliates_router)
app.include_router(connect_router)
