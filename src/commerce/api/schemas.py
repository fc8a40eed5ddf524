"""Pydantic request/response schemas for the Commerce API.

These are external contracts (anti-corruption layer) — separate from
internal Protean commands. Cart quantities are left unconstrained here so
that checkout reports bad quantities with its own invalid-argument error.
"""

from pydantic import BaseModel


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class CartItemSchema(BaseModel):
    product_id: str
    quantity: int


class ShippingAddressSchema(BaseModel):
    name: str = ""
    line1: str = ""
    line2: str | None = None
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------
class CheckoutRequest(BaseModel):
    order_id: str
    items: list[CartItemSchema]
    shipping_address: ShippingAddressSchema

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_id": "ord-001",
                    "items": [{"product_id": "prod-001", "quantity": 2}],
                    "shipping_address": {
                        "name": "Jane Doe",
                        "line1": "1 Market St",
                        "city": "San Francisco",
                        "state": "CA",
                        "postal_code": "94105",
                        "country": "US",
                    },
                }
            ]
        }
    }


class CheckoutResponse(BaseModel):
    order_id: str
    hold_status: str
    expires_at: str
    payment_client_secret: str


# ---------------------------------------------------------------------------
# Webhooks and maintenance
# ---------------------------------------------------------------------------
class WebhookResponse(BaseModel):
    received: bool
    status: str


class SweepResponse(BaseModel):
    processed: int
    expired: int
    skipped: int
    failed: int
    elapsed_seconds: float
    timed_out: bool


class PurgeResponse(BaseModel):
    deleted: int


class StatusResponse(BaseModel):
    status: str
