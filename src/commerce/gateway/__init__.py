"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations:
- FakeGateway for development and testing (``PAYMENT_GATEWAY=fake``)
- StripeGateway for production (``PAYMENT_GATEWAY=stripe``)
"""

from commerce import config
from commerce.errors import GatewayConfigurationError
from commerce.gateway.fake_adapter import FakeGateway
from commerce.gateway.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def _build_gateway() -> PaymentGateway:
    if config.PAYMENT_GATEWAY == "stripe":
        if not config.STRIPE_SECRET_KEY or not config.STRIPE_WEBHOOK_SECRET:
            raise GatewayConfigurationError("Stripe not configured")

        from commerce.gateway.stripe_adapter import StripeGateway

        return StripeGateway(api_key=config.STRIPE_SECRET_KEY, webhook_secret=config.STRIPE_WEBHOOK_SECRET)

    if config.PAYMENT_GATEWAY != "fake":
        raise GatewayConfigurationError(f"Unknown payment gateway: {config.PAYMENT_GATEWAY}")
    return FakeGateway()


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway, building it from configuration on first use."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = _build_gateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to the configured gateway."""
    global _current_gateway
    _current_gateway = None
