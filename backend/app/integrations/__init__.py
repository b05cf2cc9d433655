"""Payment gateway integrations."""

from .stripe_client import StripeGateway

__all__ = ["StripeGateway"]
