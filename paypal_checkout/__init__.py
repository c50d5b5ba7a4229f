"""PayPal checkout integration: order creation, token caching and webhook handling."""

__version__ = "1.0.0"
