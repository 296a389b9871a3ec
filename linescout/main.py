from sqlalchemy import text

from linescout.core.observability import (
    http_exception_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from linescout.core.config import settings
from linescout.db.session import engine
from linescout.routers import (
    audit,
    auth,
    commitments,
    handoffs,
    notifications,
    payment_settings,
    payouts,
    quotes,
    rates,
    user_payouts,
    wallets,
    webhooks,
)

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Backend API for LineScout sourcing quotes and payments.\n\n"
        "Swagger quick test flow:\n"
        "1. Call `POST /auth/register` or `POST /auth/login`.\n"
        "2. Click **Authorize** and use your email/username + password "
        "(OAuth token URL: `/auth/token`).\n"
        "3. Staff endpoints (`/handoffs`, `/quotes`) need an agent or admin account; "
        "customers pay through the public `/quote/{token}` pages."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "auth", "description": "User authentication and token lifecycle."},
        {"name": "users", "description": "Admin user and role management."},
        {"name": "handoffs", "description": "Sourcing requests, agent claims, status history, and manual financials."},
        {"name": "quotes", "description": "Agent quote builder, sending, and payment history."},
        {"name": "public-quote", "description": "Token-addressed quote pages, checkout, and provider verification."},
        {"name": "rates", "description": "Platform defaults, FX rates, shipping types, rates, and companies."},
        {"name": "wallets", "description": "Customer and agent wallets, ledgers, and manual adjustments."},
        {"name": "payouts", "description": "Agent earnings, payout accounts, and payout approval workflow."},
        {"name": "payment-settings", "description": "Default payment provider and per-user overrides."},
        {"name": "webhooks", "description": "Paystack and Providus inbound notifications."},
        {"name": "notifications", "description": "In-app notifications for customers and agents."},
        {"name": "audit", "description": "Audit trail endpoints for sensitive operations."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(auth.users_router)
app.include_router(handoffs.router)
app.include_router(commitments.router)
app.include_router(quotes.router)
app.include_router(quotes.public_router)
app.include_router(rates.router)
app.include_router(wallets.router)
app.include_router(payouts.router)
app.include_router(user_payouts.router)
app.include_router(payment_settings.router)
app.include_router(webhooks.router)
app.include_router(notifications.router)
app.include_router(audit.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        return {"ok": False}
    return {"ok": True}
