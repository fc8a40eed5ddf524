"""Storefront commerce FastAPI application.

Serves checkout, the payment gateway webhook and the operator endpoints.
Commands are processed synchronously inside each request.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from commerce.domain import commerce
from commerce.utils.logging import add_context, clear_context, configure_logging

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# Initialized at module level so uvicorn workers share it. PROTEAN_ENV selects
# the config overlay from domain.toml.
configure_logging()
commerce.init()


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Storefront Commerce API",
    description="Inventory holds, checkout and payment settlement",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the commerce domain context for every request."""
    with commerce.domain_context():
        add_context(path=request.url.path, method=request.method)
        try:
            return await call_next(request)
        finally:
            clear_context()


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from commerce.api import checkout_router, maintenance_router, order_router, webhook_router  # noqa: E402

app.include_router(checkout_router)
app.include_router(webhook_router)
app.include_router(order_router)
app.include_router(maintenance_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": commerce.name})
