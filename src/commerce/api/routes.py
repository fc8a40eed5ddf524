"""FastAPI routes for the Commerce domain — checkout, webhooks, operations."""

from fastapi import APIRouter, Header, HTTPException, Request
from protean.exceptions import ObjectNotFoundError, ValidationError

from commerce.api.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    PurgeResponse,
    StatusResponse,
    SweepResponse,
    WebhookResponse,
)
from commerce.errors import (
    FAILED_PRECONDITION,
    INVALID_ARGUMENT,
    NOT_FOUND,
    RESOURCE_EXHAUSTED,
    CommerceError,
    InsufficientStockError,
)
from commerce.hold.expiry import sweep_expired_holds
from commerce.order.checkout import checkout
from commerce.order.fulfillment import fulfill_order
from commerce.settlement.ledger import purge_expired_events
from commerce.settlement.webhook import receive_webhook

_STATUS_CODES = {
    INVALID_ARGUMENT: 400,
    NOT_FOUND: 404,
    FAILED_PRECONDITION: 409,
    RESOURCE_EXHAUSTED: 409,
}


def _http_error(exc: CommerceError) -> HTTPException:
    detail = {"code": exc.code, "message": exc.message}
    if isinstance(exc, InsufficientStockError):
        detail["product_id"] = exc.product_id
        detail["shortfall"] = exc.shortfall
    return HTTPException(status_code=_STATUS_CODES.get(exc.code, 500), detail=detail)


# ---------------------------------------------------------------------------
# Checkout Router
# ---------------------------------------------------------------------------
checkout_router = APIRouter(prefix="/checkout", tags=["checkout"])


@checkout_router.post("", status_code=201, response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    x_user_id: str | None = Header(default=None),
) -> CheckoutResponse:
    """Reserve stock, create the payment intent and open a pending order."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="You must be logged in to checkout")

    try:
        result = checkout(
            order_id=body.order_id,
            holder_id=x_user_id,
            items=[item.model_dump() for item in body.items],
            shipping_address=body.shipping_address.model_dump(),
        )
    except CommerceError as exc:
        raise _http_error(exc) from exc
    return CheckoutResponse(**result.to_dict())


# ---------------------------------------------------------------------------
# Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post("/payments", response_model=WebhookResponse)
async def payment_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
) -> WebhookResponse:
    """Receive a signed payment gateway event."""
    body = await request.body()
    try:
        result = receive_webhook(body, stripe_signature)
    except CommerceError as exc:
        raise _http_error(exc) from exc
    return WebhookResponse(**result)


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("/{order_id}/fulfill", response_model=StatusResponse)
async def fulfill(order_id: str) -> StatusResponse:
    """Mark a paid order as fulfilled."""
    try:
        fulfill_order(order_id)
    except ObjectNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Order {order_id} not found") from exc
    except ValidationError as exc:
        raise HTTPException(status_code=409, detail=exc.messages) from exc
    return StatusResponse(status="fulfilled")


# ---------------------------------------------------------------------------
# Maintenance Router
# ---------------------------------------------------------------------------
maintenance_router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@maintenance_router.post("/holds/expire", response_model=SweepResponse)
async def expire_holds() -> SweepResponse:
    """Run one expiry sweep (called by the scheduler)."""
    return SweepResponse(**sweep_expired_holds().to_dict())


@maintenance_router.post("/events/purge", response_model=PurgeResponse)
async def purge_events() -> PurgeResponse:
    """Delete processed-event records past their retention."""
    return PurgeResponse(deleted=purge_expired_events())
