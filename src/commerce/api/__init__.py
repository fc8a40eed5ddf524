"""Commerce domain API package."""

from commerce.api.routes import checkout_router, maintenance_router, order_router, webhook_router

__all__ = ["checkout_router", "webhook_router", "order_router", "maintenance_router"]
