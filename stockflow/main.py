from sqlalchemy import text

from stockflow.core.errors import StockflowError
from stockflow.core.observability import (
    domain_exception_handler,
    http_exception_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from stockflow.core.config import settings
from stockflow.db.session import engine
from stockflow.routers import (
    audit,
    auth,
    inbounds,
    items,
    opnames,
    outbounds,
    purchase_requests,
    returns,
    stock,
    stock_adjustments,
)

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Inventory stock ledger and document workflow API.\n\n"
        "Every quantity change is an append-only stock card entry written by an approved document "
        "transition. Item `current_stock` is a cache of the ledger sum.\n\n"
        "Swagger quick test flow:\n"
        "1. Call `POST /auth/login`.\n"
        "2. Click **Authorize** and use your username + password "
        "(OAuth token URL: `/auth/token`).\n"
        "3. Walk a document through its workflow, e.g. `/purchase-requests` then `/inbounds`."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "auth", "description": "User authentication and token lifecycle."},
        {"name": "items", "description": "Items and master data: warehouses, vendors and partners."},
        {"name": "stock", "description": "Stock card entries, item balances and reconciliation."},
        {"name": "purchase-requests", "description": "Purchase request approval chain through PO issue."},
        {"name": "inbounds", "description": "Goods receipt verification and discrepancy resolution."},
        {"name": "outbounds", "description": "Outbound request approval and release."},
        {"name": "stock-adjustments", "description": "Manual and opname-driven stock corrections."},
        {"name": "opnames", "description": "Physical counts with double-blind counting sheets."},
        {"name": "returns", "description": "Vendor returns and vendor reversals."},
        {"name": "audit", "description": "Audit trail of every transition and ledger-affecting action."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(StockflowError, domain_exception_handler)
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
    # Local tooling runs on dynamic localhost ports.
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
app.include_router(items.router)
app.include_router(items.master_router)
app.include_router(stock.router)
app.include_router(purchase_requests.router)
app.include_router(inbounds.router)
app.include_router(outbounds.router)
app.include_router(stock_adjustments.router)
app.include_router(opnames.router)
app.include_router(opnames.sheets_router)
app.include_router(returns.router)
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
